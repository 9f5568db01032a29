import numpy as np
from src.processing.models.records import EmbeddingJob, JobStatus
from src.processing.pipeline.base_store import BaseStore, to_iso, to_datetime

JOB_COLUMNS = "review_id, status, attempt_count, last_error, locked_at, locked_by, updated_at"


def _job_from_row(row):
    return EmbeddingJob(
        review_id=str(row["review_id"]),
        status=row["status"],
        attempt_count=row.get("attempt_count") or 0,
        last_error=row.get("last_error"),
        locked_at=to_datetime(row.get("locked_at")),
        locked_by=row.get("locked_by"),
        updated_at=to_datetime(row.get("updated_at"))
    )


class EmbeddingJobStore:
    def __init__(self, db, kind):
        self.kind = kind
        self.store = BaseStore(db, kind, "job store")
        self.logger = self.store.logger
        self.use_fallback = self.store.use_fallback

    def claim_jobs(self, runner, limit, stale_before, now):
        jobs_table = self.kind.jobs_table

        with self.store.operation(f"claim {jobs_table}"):
            if self.use_fallback:
                lease_filter = f"locked_at.is.null,locked_at.lt.{to_iso(stale_before)}"
                candidates = (
                    self.store.table(jobs_table)
                    .select("review_id")
                    .neq("status", JobStatus.DONE.value)
                    .or_(lease_filter)
                    .order("updated_at", desc=False)
                    .limit(limit)
                    .execute()
                ).data or []
                if not candidates:
                    return []

                # conditional update re-applies the pickup predicate
                claimed = (
                    self.store.table(jobs_table)
                    .update({
                        "status": JobStatus.PROCESSING.value,
                        "locked_at": to_iso(now),
                        "locked_by": runner,
                        "updated_at": to_iso(now)
                    })
                    .in_("review_id", [row["review_id"] for row in candidates])
                    .neq("status", JobStatus.DONE.value)
                    .or_(lease_filter)
                    .execute()
                ).data or []
            else:
                claimed = self.store.query(f"""
                    UPDATE {jobs_table} AS j
                    SET status = %s, locked_at = %s, locked_by = %s, updated_at = %s
                    WHERE j.review_id IN (
                        SELECT review_id FROM {jobs_table}
                        WHERE status <> %s
                          AND (locked_at IS NULL OR locked_at < %s)
                        ORDER BY updated_at ASC
                        LIMIT %s
                        FOR UPDATE SKIP LOCKED
                    )
                    RETURNING {JOB_COLUMNS}
                """, (JobStatus.PROCESSING.value, now, runner, now,
                      JobStatus.DONE.value, stale_before, limit))

        jobs = [_job_from_row(row) for row in claimed]
        self.logger.info(f"Claimed {len(jobs)} jobs from {jobs_table} for {runner}")
        return jobs

    def fetch_flagged_ids(self, ids):
        flagged = set()
        with self.store.operation(f"fetch {self.kind.flags_table}"):
            for chunk in self.store.lookup_chunks(ids):
                if self.use_fallback:
                    rows = (
                        self.store.table(self.kind.flags_table)
                        .select("review_id,ai_flagged")
                        .in_("review_id", chunk)
                        .eq("ai_flagged", True)
                        .execute()
                    ).data or []
                else:
                    rows = self.store.query(f"""
                        SELECT review_id FROM {self.kind.flags_table}
                        WHERE ai_flagged AND review_id = ANY(%s::uuid[])
                    """, (chunk,))
                flagged.update(str(row["review_id"]) for row in rows)

        return flagged

    def fetch_bodies(self, ids):
        bodies = {}
        with self.store.operation(f"fetch {self.kind.reviews_table} bodies"):
            for chunk in self.store.lookup_chunks(ids):
                if self.use_fallback:
                    rows = (
                        self.store.table(self.kind.reviews_table)
                        .select("id,body_main")
                        .in_("id", chunk)
                        .execute()
                    ).data or []
                else:
                    rows = self.store.query(f"""
                        SELECT id, body_main FROM {self.kind.reviews_table}
                        WHERE id = ANY(%s::uuid[])
                    """, (chunk,))
                bodies.update({str(row["id"]): row["body_main"] for row in rows})

        return bodies

    def fetch_embedding_hashes(self, ids):
        hashes = {}
        with self.store.operation(f"fetch {self.kind.review_embeddings_table} meta"):
            for chunk in self.store.lookup_chunks(ids):
                if self.use_fallback:
                    rows = (
                        self.store.table(self.kind.review_embeddings_table)
                        .select("review_id,content_hash")
                        .in_("review_id", chunk)
                        .execute()
                    ).data or []
                else:
                    rows = self.store.query(f"""
                        SELECT review_id, content_hash FROM {self.kind.review_embeddings_table}
                        WHERE review_id = ANY(%s::uuid[])
                    """, (chunk,))
                hashes.update({str(row["review_id"]): row.get("content_hash") for row in rows})

        return hashes

    def delete_embeddings(self, ids):
        ids = list(ids)
        if not ids:
            return

        with self.store.operation(f"delete {self.kind.review_embeddings_table}"):
            if self.use_fallback:
                self.store.table(self.kind.review_embeddings_table).delete().in_("review_id", ids).execute()
            else:
                self.store.execute(f"""
                    DELETE FROM {self.kind.review_embeddings_table}
                    WHERE review_id = ANY(%s::uuid[])
                """, (ids,))

        self.logger.info(f"Deleted embeddings for {len(ids)} flagged reviews")

    def upsert_embeddings(self, rows, model, now):
        if not rows:
            return

        with self.store.operation(f"upsert {self.kind.review_embeddings_table}"):
            if self.use_fallback:
                formatted = [{
                    "review_id": row["review_id"],
                    "embedding": [float(x) for x in row["embedding"]],
                    "model": model,
                    "content_hash": row["content_hash"],
                    "updated_at": to_iso(now)
                } for row in rows]
                self.store.table(self.kind.review_embeddings_table).upsert(
                    formatted, on_conflict="review_id"
                ).execute()
            else:
                values = [(
                    row["review_id"],
                    np.asarray(row["embedding"], dtype=np.float32),
                    model,
                    row["content_hash"],
                    now
                ) for row in rows]
                self.store.execute_values(f"""
                    INSERT INTO {self.kind.review_embeddings_table}
                        (review_id, embedding, model, content_hash, updated_at)
                    VALUES %s
                    ON CONFLICT (review_id) DO UPDATE SET
                        embedding = EXCLUDED.embedding,
                        model = EXCLUDED.model,
                        content_hash = EXCLUDED.content_hash,
                        updated_at = EXCLUDED.updated_at
                """, values, template="(%s::uuid, %s, %s, %s, %s)")

    def mark_done(self, ids, runner, now, last_error=None, attempt_counts=None):
        ids = list(ids)
        if not ids:
            return

        if attempt_counts is not None:
            self._write_job_rows(ids, JobStatus.DONE, attempt_counts, last_error, runner, now)
            return

        with self.store.operation(f"mark {self.kind.jobs_table} done"):
            if self.use_fallback:
                self.store.table(self.kind.jobs_table).update({
                    "status": JobStatus.DONE.value,
                    "last_error": last_error,
                    "locked_at": None,
                    "locked_by": runner,
                    "updated_at": to_iso(now)
                }).in_("review_id", ids).execute()
            else:
                self.store.execute(f"""
                    UPDATE {self.kind.jobs_table}
                    SET status = %s, last_error = %s, locked_at = NULL, locked_by = %s, updated_at = %s
                    WHERE review_id = ANY(%s::uuid[])
                """, (JobStatus.DONE.value, last_error, runner, now, ids))

    def mark_failed(self, attempt_counts, error, runner, now):
        if not attempt_counts:
            return
        self._write_job_rows(list(attempt_counts), JobStatus.FAILED, attempt_counts, error, runner, now)

    def _write_job_rows(self, ids, status, attempt_counts, last_error, runner, now):
        with self.store.operation(f"mark {self.kind.jobs_table} {status.value}"):
            if self.use_fallback:
                rows = [{
                    "review_id": review_id,
                    "status": status.value,
                    "attempt_count": attempt_counts[review_id],
                    "last_error": last_error,
                    "locked_at": None,
                    "locked_by": runner,
                    "updated_at": to_iso(now)
                } for review_id in ids]
                self.store.table(self.kind.jobs_table).upsert(rows, on_conflict="review_id").execute()
            else:
                values = [
                    (review_id, status.value, attempt_counts[review_id], last_error, runner, now)
                    for review_id in ids
                ]
                self.store.execute_values(f"""
                    UPDATE {self.kind.jobs_table} AS j
                    SET status = v.status,
                        attempt_count = v.attempt_count,
                        last_error = v.last_error,
                        locked_at = NULL,
                        locked_by = v.locked_by,
                        updated_at = v.updated_at
                    FROM (VALUES %s) AS v(review_id, status, attempt_count, last_error, locked_by, updated_at)
                    WHERE j.review_id = v.review_id
                """, values, template="(%s::uuid, %s::text, %s::integer, %s::text, %s::text, %s::timestamptz)")

    def enqueue(self, review_ids, now):
        review_ids = list(review_ids)
        if not review_ids:
            return 0

        with self.store.operation(f"enqueue {self.kind.jobs_table}"):
            if self.use_fallback:
                rows = [{
                    "review_id": review_id,
                    "status": JobStatus.QUEUED.value,
                    "attempt_count": 0,
                    "last_error": None,
                    "locked_at": None,
                    "locked_by": None,
                    "updated_at": to_iso(now)
                } for review_id in review_ids]
                self.store.table(self.kind.jobs_table).upsert(rows, on_conflict="review_id").execute()
            else:
                self.store.execute_values(f"""
                    INSERT INTO {self.kind.jobs_table}
                        (review_id, status, attempt_count, last_error, locked_at, locked_by, updated_at)
                    VALUES %s
                    ON CONFLICT (review_id) DO UPDATE SET
                        status = EXCLUDED.status,
                        attempt_count = 0,
                        last_error = NULL,
                        locked_at = NULL,
                        locked_by = NULL,
                        updated_at = EXCLUDED.updated_at
                """, [(review_id, JobStatus.QUEUED.value, 0, None, None, None, now) for review_id in review_ids],
                    template="(%s::uuid, %s, %s, %s, %s, %s, %s)")

        return len(review_ids)

    def iter_review_ids(self, page_size):
        last_id = None
        while True:
            with self.store.operation(f"page {self.kind.reviews_table}"):
                if self.use_fallback:
                    request = self.store.table(self.kind.reviews_table).select("id").order("id", desc=False)
                    if last_id is not None:
                        request = request.gt("id", last_id)
                    rows = request.limit(page_size).execute().data or []
                elif last_id is None:
                    rows = self.store.query(
                        f"SELECT id FROM {self.kind.reviews_table} ORDER BY id LIMIT %s", (page_size,)
                    )
                else:
                    rows = self.store.query(
                        f"SELECT id FROM {self.kind.reviews_table} WHERE id > %s::uuid ORDER BY id LIMIT %s",
                        (last_id, page_size)
                    )

            if not rows:
                return

            page = [str(row["id"]) for row in rows]
            yield page
            last_id = page[-1]
            if len(page) < page_size:
                return
