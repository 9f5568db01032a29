import time
from src.utils.exceptions import EmbeddingProviderError, StorageError
from src.utils.logger import get_logger
from src.utils.text import content_hash, normalize_body_for_summary, normalize_summary_for_embedding
from src.processing.models.records import RollupOutcome, RollupRunResult, utc_now


class RollupRunner:
    def __init__(self, rollup_store, summarizer, embeddings, config, clock=None):
        self.rollup_store = rollup_store
        self.kind = rollup_store.kind
        self.summarizer = summarizer
        self.embeddings = embeddings
        self.config = config
        self.clock = clock or utc_now
        self.logger = get_logger(f"{self.kind.name} rollup runner")

    def run(self, runner=None):
        runner = runner or self.config.runner
        started = time.monotonic()
        result = RollupRunResult(kind=self.kind.name, runner=runner)

        rollups = self.rollup_store.fetch_dirty(self.config.max_rollups_per_run)
        result.rollups = len(rollups)
        if not rollups:
            result.message = "no dirty rollups"
            return self._finish(result, started)

        for rollup in rollups:
            result.outcomes.append(self._process_key(rollup))

        result.stats_updated = sum(outcome.stats_updated for outcome in result.outcomes)
        result.summaries_updated = sum(outcome.summary_updated for outcome in result.outcomes)
        result.rollup_embeddings_updated = sum(outcome.rollup_embedding_updated for outcome in result.outcomes)
        result.kept_dirty = sum(outcome.kept_dirty for outcome in result.outcomes)
        return self._finish(result, started)

    def _process_key(self, rollup):
        outcome = RollupOutcome(key=self.kind.key_to_dict(rollup.key))
        try:
            self._refresh(rollup, outcome)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            self.logger.error(f"Rollup {self.kind.describe_key(rollup.key)} kept dirty: {message}")
            outcome.ok = False
            outcome.kept_dirty = True
            outcome.errors.append(message)
            try:
                self.rollup_store.mark_dirty([rollup.key], self.clock(), error=message)
            except StorageError as storage_error:
                # row still carries is_dirty from before the pass
                self.logger.error(f"Could not record error for {self.kind.describe_key(rollup.key)}: {storage_error}")
                outcome.errors.append(str(storage_error))

        return outcome

    def _refresh(self, rollup, outcome):
        key = rollup.key

        # 1. stats, always a full recompute over unflagged rows
        rows = self.rollup_store.fetch_review_rows_for_stats(key, self.config.max_reviews_for_stats)
        if not rows:
            self.rollup_store.update_rollup(key, {
                **self.kind.empty_stats(),
                "summary_text": "",
                "last_processed_review_id": None
            }, self.clock())
            outcome.stats_updated = True
            outcome.summary_updated = True
            summary = ""
        else:
            self.rollup_store.update_rollup(key, self.kind.accumulate([row.fields for row in rows]), self.clock())
            outcome.stats_updated = True

            # 2. summary, extended from the cursor
            summary = self._refresh_summary(rollup, rows, outcome)

        # 3. rollup embedding, gated by the summary hash
        self._refresh_embedding(key, summary, outcome)

        # 4. clean only once every step went through, and only if no review arrived meanwhile
        if not self.rollup_store.clear_dirty(key, rollup.dirtied_at, self.clock()):
            self.logger.info(f"Rollup {self.kind.describe_key(key)} was marked dirty during the pass, kept for next run")
            outcome.kept_dirty = True

    def _new_review_ids(self, cursor, ids):
        if cursor and cursor in ids:
            new_ids = ids[ids.index(cursor) + 1:]
        else:
            new_ids = ids

        limit = self.config.max_new_reviews_for_summary
        return new_ids[-limit:] if len(new_ids) > limit else new_ids

    def _refresh_summary(self, rollup, rows, outcome):
        ids = [row.id for row in rows]
        new_ids = self._new_review_ids(rollup.last_processed_review_id, ids)
        latest_id = ids[-1]
        previous = (rollup.summary_text or "").strip()

        bodies = self.rollup_store.fetch_bodies(new_ids) if new_ids else {}
        new_bodies = [
            normalize_body_for_summary(bodies[review_id], self.config.max_body_chars_for_summary)
            for review_id in new_ids
            if bodies.get(review_id) and bodies[review_id].strip()
        ]

        if not new_bodies:
            self.rollup_store.update_rollup(rollup.key, {"last_processed_review_id": latest_id}, self.clock())
            return previous

        summary = self.summarizer.summarize(previous, new_bodies).strip()[:self.config.summary_max_chars]
        self.rollup_store.update_rollup(rollup.key, {
            "summary_text": summary,
            "last_processed_review_id": latest_id
        }, self.clock())
        outcome.summary_updated = True
        return summary

    def _refresh_embedding(self, key, summary, outcome):
        normalized = normalize_summary_for_embedding(summary)
        summary_hash = content_hash(normalized)

        if self.rollup_store.fetch_embedding_hash(key) == summary_hash:
            return

        vector = None
        if normalized:
            vectors = self.embeddings.embed([normalized])
            if len(vectors) != 1:
                raise EmbeddingProviderError(f"embedding response mismatch: got {len(vectors)}, expected 1")
            vector = vectors[0]

        self.rollup_store.upsert_embedding(key, vector, self.embeddings.model, summary_hash, self.clock())
        outcome.rollup_embedding_updated = True

    def _finish(self, result, started):
        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            f"{self.kind.name} rollups run by {result.runner}: rollups={result.rollups} "
            f"stats={result.stats_updated} summaries={result.summaries_updated} "
            f"embeddings={result.rollup_embeddings_updated} kept_dirty={result.kept_dirty} ({result.elapsed_ms}ms)"
        )
        return result
