"""
Tests for record serialization.
"""

from datetime import datetime, timezone

from src.processing.models.records import EmbeddingJob, JobStatus, ReviewRow, RollupRecord

NOW = datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)


class TestRecords:
    def test_job_defaults_to_queued(self):
        job = EmbeddingJob(review_id="r1", updated_at=NOW)

        assert job.status == JobStatus.QUEUED.value
        assert job.to_dict() == {
            "review_id": "r1", "status": "queued", "attempt_count": 0, "last_error": None,
            "locked_at": None, "locked_by": None, "updated_at": "2025-04-01T09:00:00+00:00"
        }

    def test_rollup_key_serializes_as_list(self):
        rollup = RollupRecord(key=("u1", "Law", "c1"), stats={"review_count": 2}, is_dirty=True)

        data = rollup.to_dict()

        assert data["key"] == ["u1", "Law", "c1"]
        assert data["stats"] == {"review_count": 2}
        assert data["updated_at"] is None

    def test_review_row(self):
        row = ReviewRow(id="r1", created_at=NOW, key=("s1",), fields={"satisfaction": 4})

        assert row.to_dict()["created_at"] == "2025-04-01T09:00:00+00:00"
        assert row.to_dict()["is_flagged"] is False
