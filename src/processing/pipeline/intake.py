from src.utils.logger import get_logger
from src.processing.models.records import utc_now

logger = get_logger("review intake")


def register_submitted_review(job_store, rollup_store, review_id, key, now=None):
    """Queue a freshly submitted review for embedding and mark its rollup stale.

    Submission never blocks on the pipeline: stats and summaries are left to
    the next rollup run.
    """
    now = now or utc_now()
    key = tuple(key)

    job_store.enqueue([review_id], now)
    rollup_store.mark_dirty([key], now)

    logger.info(f"Registered {job_store.kind.name} review {review_id} under {job_store.kind.describe_key(key)}")
    return {"review_id": review_id, "key": job_store.kind.key_to_dict(key)}
