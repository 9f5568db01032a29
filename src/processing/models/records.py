from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple


class JobStatus(Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


def utc_now():
    return datetime.now(timezone.utc)


def _serialize(data):
    if isinstance(data, dict):
        return {key: _serialize(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [_serialize(value) for value in data]
    if isinstance(data, datetime):
        return data.isoformat()

    return data


@dataclass
class EmbeddingJob:
    review_id: str
    status: str = JobStatus.QUEUED.value
    attempt_count: int = 0
    last_error: Optional[str] = None
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    def to_dict(self):
        return _serialize(asdict(self))


@dataclass
class ReviewRow:
    id: str
    created_at: datetime
    key: Tuple
    is_flagged: bool = False
    # rating / categorical columns feeding the stats accumulator
    fields: Dict = field(default_factory=dict)

    def to_dict(self):
        return _serialize(asdict(self))


@dataclass
class RollupRecord:
    key: Tuple
    summary_text: str = ""
    last_processed_review_id: Optional[str] = None
    is_dirty: bool = False
    stats: Dict = field(default_factory=dict)
    last_error: Optional[str] = None
    updated_at: Optional[datetime] = None
    dirtied_at: Optional[datetime] = None

    def to_dict(self):
        return _serialize(asdict(self))


@dataclass
class EmbeddingRunResult:
    kind: str
    runner: str
    picked: int = 0
    done: int = 0
    skipped: int = 0
    flagged: int = 0
    failed: int = 0
    elapsed_ms: int = 0
    message: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "ok": True,
            "kind": self.kind,
            "runner": self.runner,
            "message": self.message,
            "elapsed_ms": self.elapsed_ms,
            "counts": {
                "picked": self.picked,
                "done": self.done,
                "skipped": self.skipped,
                "flagged": self.flagged,
                "failed": self.failed
            },
            "errors": list(self.errors)
        }


@dataclass
class RollupOutcome:
    key: Dict
    ok: bool = True
    stats_updated: bool = False
    summary_updated: bool = False
    rollup_embedding_updated: bool = False
    kept_dirty: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self):
        return _serialize(asdict(self))


@dataclass
class RollupRunResult:
    kind: str
    runner: str
    rollups: int = 0
    stats_updated: int = 0
    summaries_updated: int = 0
    rollup_embeddings_updated: int = 0
    kept_dirty: int = 0
    elapsed_ms: int = 0
    message: Optional[str] = None
    outcomes: List[RollupOutcome] = field(default_factory=list)

    def to_dict(self):
        return {
            "ok": True,
            "kind": self.kind,
            "runner": self.runner,
            "message": self.message,
            "elapsed_ms": self.elapsed_ms,
            "counts": {
                "rollups": self.rollups,
                "stats_updated": self.stats_updated,
                "summaries_updated": self.summaries_updated,
                "rollup_embeddings_updated": self.rollup_embeddings_updated,
                "kept_dirty": self.kept_dirty
            },
            "rollups": [outcome.to_dict() for outcome in self.outcomes]
        }


@dataclass
class RebuildResult:
    runner: str
    elapsed_ms: int = 0
    queued_reviews: Dict[str, int] = field(default_factory=dict)
    dirty_rollups: Dict[str, int] = field(default_factory=dict)
    loops: Dict[str, Dict[str, int]] = field(default_factory=dict)
    last_embedding_results: Dict[str, Dict] = field(default_factory=dict)
    last_rollup_results: Dict[str, Dict] = field(default_factory=dict)

    def to_dict(self):
        return {"ok": True, **_serialize(asdict(self))}
