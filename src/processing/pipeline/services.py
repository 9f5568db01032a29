from dataclasses import dataclass
from typing import Any, Dict
from database.connection import SupabaseConnection
from src.utils.logger import get_logger
from src.processing.config import PipelineConfig
from src.processing.models.review_kinds import REVIEW_KINDS, ReviewKind, get_review_kind
from src.processing.nlp.embeddings_generator import build_embeddings_generator
from src.processing.nlp.summarizer import build_summarizer
from src.processing.pipeline.job_store import EmbeddingJobStore
from src.processing.pipeline.rollup_store import RollupStore
from src.processing.pipeline.embedding_runner import EmbeddingRunner
from src.processing.pipeline.rollup_runner import RollupRunner
from src.processing.pipeline.orchestrator import RebuildOrchestrator

logger = get_logger("pipeline services")


@dataclass
class KindPipeline:
    kind: ReviewKind
    job_store: Any
    rollup_store: Any
    embedding_runner: Any
    rollup_runner: Any


def build_embedding_generators(config):
    """Build the review and rollup embedding generators once for every kind.

    A local model loads its weights on construction, so one generator is
    shared when both roles use the same model.
    """
    review_embeddings = build_embeddings_generator(config)
    rollup_model = config.rollup_embedding_model or config.embedding_model
    if rollup_model == config.embedding_model:
        return review_embeddings, review_embeddings
    return review_embeddings, build_embeddings_generator(config, model=rollup_model)


def build_kind_pipeline(db, kind, config, generators, clock=None):
    job_store = EmbeddingJobStore(db, kind)
    rollup_store = RollupStore(db, kind)
    review_embeddings, rollup_embeddings = generators

    return KindPipeline(
        kind=kind,
        job_store=job_store,
        rollup_store=rollup_store,
        embedding_runner=EmbeddingRunner(job_store, review_embeddings, config, clock=clock),
        rollup_runner=RollupRunner(rollup_store, build_summarizer(config, kind), rollup_embeddings, config, clock=clock)
    )


class PipelineServices:
    def __init__(self, config, pipelines: Dict[str, KindPipeline], db=None):
        self.config = config
        self.pipelines = pipelines
        self.db = db

    @classmethod
    def from_env(cls):
        config = PipelineConfig.from_env()
        db = SupabaseConnection()
        generators = build_embedding_generators(config)
        pipelines = {name: build_kind_pipeline(db, kind, config, generators) for name, kind in REVIEW_KINDS.items()}
        logger.info(f"Pipeline services ready for {', '.join(pipelines)} (fallback={db.use_fallback})")
        return cls(config, pipelines, db=db)

    def pipeline(self, kind_name):
        kind = get_review_kind(kind_name)
        return self.pipelines[kind.name]

    def rebuild_orchestrator(self, show_progress=False):
        return RebuildOrchestrator(self.pipelines, self.config, show_progress=show_progress)
