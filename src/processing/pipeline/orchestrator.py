import time
from tqdm import tqdm
from src.utils.logger import get_logger
from src.processing.models.records import RebuildResult, utc_now


class RebuildOrchestrator:
    def __init__(self, pipelines, config, show_progress=False, clock=None):
        # pipelines: kind name -> KindPipeline
        self.pipelines = pipelines
        self.config = config
        self.show_progress = show_progress
        self.clock = clock or utc_now
        self.logger = get_logger("orchestrator")

    def requeue_reviews(self, pipeline):
        queued = 0
        pages = pipeline.job_store.iter_review_ids(self.config.rebuild_page_size)
        for page in tqdm(pages, desc=f"requeue {pipeline.kind.name} reviews", unit="page",
                         disable=not self.show_progress):
            queued += pipeline.job_store.enqueue(page, self.clock())

        self.logger.info(f"Requeued {queued} {pipeline.kind.name} reviews")
        return queued

    def mark_rollups_dirty(self, pipeline):
        dirty = 0
        pages = pipeline.rollup_store.iter_keys(self.config.rebuild_page_size)
        for page in tqdm(pages, desc=f"dirty {pipeline.kind.name} rollups", unit="page",
                         disable=not self.show_progress):
            dirty += pipeline.rollup_store.mark_dirty(page, self.clock())

        self.logger.info(f"Marked {dirty} {pipeline.kind.name} rollups dirty")
        return dirty

    def _loop(self, label, run_once, is_idle):
        loops, last = 0, None
        while loops < self.config.max_rebuild_loops:
            last = run_once()
            loops += 1
            if is_idle(last):
                break
        else:
            self.logger.warning(f"{label} stopped at the loop ceiling of {self.config.max_rebuild_loops}")

        return loops, last

    def run(self, runner=None):
        runner = runner or self.config.runner
        started = time.monotonic()
        result = RebuildResult(runner=runner)
        self.logger.info(f"Starting full rebuild for {', '.join(self.pipelines)} by {runner}")

        # 1. requeue everything
        for name, pipeline in self.pipelines.items():
            result.queued_reviews[name] = self.requeue_reviews(pipeline)
            result.dirty_rollups[name] = self.mark_rollups_dirty(pipeline)

        # 2. embeddings to quiescence, then rollups
        for name, pipeline in self.pipelines.items():
            embedding_loops, last_embedding = self._loop(
                f"{name} embeddings",
                lambda: pipeline.embedding_runner.run(runner),
                lambda run: run.picked == 0
            )
            rollup_loops, last_rollup = self._loop(
                f"{name} rollups",
                lambda: pipeline.rollup_runner.run(runner),
                lambda run: run.rollups == 0
            )

            result.loops[name] = {"embeddings": embedding_loops, "rollups": rollup_loops}
            result.last_embedding_results[name] = last_embedding.to_dict() if last_embedding else None
            result.last_rollup_results[name] = last_rollup.to_dict() if last_rollup else None

        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(f"Full rebuild finished in {result.elapsed_ms}ms: loops={result.loops}")
        return result
