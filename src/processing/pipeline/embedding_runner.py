import time
from datetime import timedelta
from src.utils.constants import AI_FLAGGED
from src.utils.exceptions import EmbeddingProviderError
from src.utils.logger import get_logger
from src.utils.text import content_hash, chunked
from src.processing.models.records import EmbeddingRunResult, utc_now


class EmbeddingRunner:
    def __init__(self, job_store, embeddings, config, clock=None):
        self.job_store = job_store
        self.kind = job_store.kind
        self.embeddings = embeddings
        self.config = config
        self.clock = clock or utc_now
        self.logger = get_logger(f"{self.kind.name} embedding runner")

    def run(self, runner=None):
        runner = runner or self.config.runner
        started = time.monotonic()
        result = EmbeddingRunResult(kind=self.kind.name, runner=runner)

        now = self.clock()
        stale_before = now - timedelta(minutes=self.config.lock_stale_minutes)

        # 1. lease acquisition
        jobs = self.job_store.claim_jobs(runner, self.config.max_jobs_per_run, stale_before, now)
        result.picked = len(jobs)
        if not jobs:
            result.message = "no embedding jobs"
            return self._finish(result, started)

        # 2. flagged reviews are never embedded
        flagged = self.job_store.fetch_flagged_ids([job.review_id for job in jobs])
        if flagged:
            flagged_ids = [job.review_id for job in jobs if job.review_id in flagged]
            self.job_store.delete_embeddings(flagged_ids)
            self.job_store.mark_done(flagged_ids, runner, self.clock(), last_error=AI_FLAGGED)
            result.flagged = len(flagged_ids)

        active = [job for job in jobs if job.review_id not in flagged]
        if not active:
            result.message = "no embedding jobs (all flagged)"
            return self._finish(result, started)

        # 3. partition by body presence and content hash
        active_ids = [job.review_id for job in active]
        bodies = self.job_store.fetch_bodies(active_ids)
        hashes = self.job_store.fetch_embedding_hashes(active_ids)

        pending, unchanged, missing_body = [], [], {}
        for job in active:
            body = bodies.get(job.review_id)
            if not body or not body.strip():
                missing_body[job.review_id] = job.attempt_count + 1
                continue

            body_hash = content_hash(body)
            if hashes.get(job.review_id) == body_hash:
                unchanged.append(job.review_id)
                continue

            pending.append((job, body, body_hash))

        if unchanged:
            self.job_store.mark_done(unchanged, runner, self.clock())
            result.skipped = len(unchanged)

        if missing_body:
            self.job_store.mark_failed(
                missing_body, f"missing body_main in {self.kind.reviews_table}", runner, self.clock()
            )
            result.failed += len(missing_body)

        # 4. provider batches, failure isolated per batch
        for batch in chunked(pending, self.config.embedding_batch_size):
            self._embed_batch(batch, runner, result)

        return self._finish(result, started)

    def _embed_batch(self, batch, runner, result):
        now = self.clock()
        attempt_counts = {job.review_id: job.attempt_count + 1 for job, _, _ in batch}

        try:
            vectors = self.embeddings.embed([body for _, body, _ in batch])
            if len(vectors) != len(batch):
                raise EmbeddingProviderError(
                    f"embedding response mismatch: got {len(vectors)}, expected {len(batch)}"
                )

            self.job_store.upsert_embeddings([
                {"review_id": job.review_id, "embedding": vector, "content_hash": body_hash}
                for (job, _, body_hash), vector in zip(batch, vectors)
            ], self.embeddings.model, now)
            self.job_store.mark_done(list(attempt_counts), runner, now, attempt_counts=attempt_counts)
            result.done += len(batch)

        except Exception as e:
            message = str(e) or "embedding batch failed"
            self.logger.error(f"Embedding batch of {len(batch)} failed: {message}")
            self.job_store.mark_failed(attempt_counts, message, runner, now)
            result.failed += len(batch)
            result.errors.append(message)

    def _finish(self, result, started):
        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            f"{self.kind.name} embeddings run by {result.runner}: picked={result.picked} done={result.done} "
            f"skipped={result.skipped} flagged={result.flagged} failed={result.failed} ({result.elapsed_ms}ms)"
        )
        return result
