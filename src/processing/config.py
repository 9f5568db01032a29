import os
from dataclasses import dataclass, asdict
from dotenv import load_dotenv
from src.utils import constants
from src.utils.exceptions import ConfigurationError


def _int_env(key, default):
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{value}'")


@dataclass(frozen=True)
class PipelineConfig:
    runner: str = constants.DEFAULT_RUNNER

    # embedding runner
    max_jobs_per_run: int = constants.MAX_JOBS_PER_RUN
    embedding_batch_size: int = constants.EMBEDDING_BATCH_SIZE
    lock_stale_minutes: int = constants.LOCK_STALE_MINUTES
    embedding_provider: str = constants.DEFAULT_EMBEDDING_PROVIDER
    embedding_model: str = constants.DEFAULT_EMBEDDING_MODEL

    # rollup runner
    max_rollups_per_run: int = constants.MAX_ROLLUPS_PER_RUN
    max_reviews_for_stats: int = constants.MAX_REVIEWS_PER_ROLLUP_FOR_STATS
    max_new_reviews_for_summary: int = constants.MAX_NEW_REVIEWS_FOR_SUMMARY
    max_body_chars_for_summary: int = constants.MAX_BODY_CHARS_FOR_SUMMARY
    summary_max_chars: int = constants.SUMMARY_MAX_CHARS
    summary_model: str = constants.DEFAULT_SUMMARY_MODEL
    summary_language: str = constants.DEFAULT_SUMMARY_LANGUAGE
    rollup_embedding_model: str = constants.DEFAULT_EMBEDDING_MODEL

    # full rebuild
    rebuild_page_size: int = constants.REBUILD_PAGE_SIZE
    max_rebuild_loops: int = constants.MAX_REBUILD_LOOPS

    @classmethod
    def from_env(cls):
        load_dotenv()
        embedding_model = os.getenv("EMBEDDING_MODEL", constants.DEFAULT_EMBEDDING_MODEL)

        config = cls(
            runner=os.getenv("BATCH_RUNNER") or constants.DEFAULT_RUNNER,
            max_jobs_per_run=_int_env("MAX_JOBS_PER_RUN", constants.MAX_JOBS_PER_RUN),
            embedding_batch_size=_int_env("EMBEDDING_BATCH_SIZE", constants.EMBEDDING_BATCH_SIZE),
            lock_stale_minutes=_int_env("LOCK_STALE_MINUTES", constants.LOCK_STALE_MINUTES),
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", constants.DEFAULT_EMBEDDING_PROVIDER),
            embedding_model=embedding_model,
            max_rollups_per_run=_int_env("MAX_ROLLUPS_PER_RUN", constants.MAX_ROLLUPS_PER_RUN),
            max_reviews_for_stats=_int_env("MAX_REVIEWS_FOR_STATS", constants.MAX_REVIEWS_PER_ROLLUP_FOR_STATS),
            max_new_reviews_for_summary=_int_env("MAX_NEW_REVIEWS_FOR_SUMMARY", constants.MAX_NEW_REVIEWS_FOR_SUMMARY),
            max_body_chars_for_summary=_int_env("MAX_BODY_CHARS_FOR_SUMMARY", constants.MAX_BODY_CHARS_FOR_SUMMARY),
            summary_max_chars=_int_env("SUMMARY_MAX_CHARS", constants.SUMMARY_MAX_CHARS),
            summary_model=os.getenv("SUMMARY_MODEL", constants.DEFAULT_SUMMARY_MODEL),
            summary_language=os.getenv("SUMMARY_LANGUAGE", constants.DEFAULT_SUMMARY_LANGUAGE),
            rollup_embedding_model=os.getenv("ROLLUP_EMBEDDING_MODEL", embedding_model),
            rebuild_page_size=_int_env("REBUILD_PAGE_SIZE", constants.REBUILD_PAGE_SIZE),
            max_rebuild_loops=_int_env("MAX_REBUILD_LOOPS", constants.MAX_REBUILD_LOOPS)
        )
        config.validate()
        return config

    def validate(self):
        errors = []

        for name in ("max_jobs_per_run", "embedding_batch_size", "lock_stale_minutes",
                     "max_rollups_per_run", "max_reviews_for_stats", "max_new_reviews_for_summary",
                     "max_body_chars_for_summary", "summary_max_chars", "rebuild_page_size",
                     "max_rebuild_loops"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.embedding_provider not in ("litellm", "local"):
            errors.append(f"embedding_provider must be 'litellm' or 'local', got '{self.embedding_provider}'")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def to_dict(self):
        return asdict(self)
