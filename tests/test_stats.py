"""
Tests for reading rollup statistics: precomputed columns versus re-derivation.
"""

import pytest

from src.processing.models.review_kinds import COURSE, COMPANY
from src.processing.models.records import RollupRecord
from src.processing.pipeline.stats import (
    PrecomputedStatsStrategy, RederivedStatsStrategy, select_stats_strategy, read_rollup_stats
)
from tests.fakes import FakeRollupStore, SUBJECT, COMPANY_KEY, course_fields


class TestStrategySelection:
    def test_full_row_uses_precomputed(self):
        rollup = RollupRecord(key=SUBJECT, stats=COURSE.empty_stats())
        assert isinstance(select_stats_strategy(COURSE, rollup), PrecomputedStatsStrategy)

    def test_missing_row_rederives(self):
        assert isinstance(select_stats_strategy(COMPANY, None), RederivedStatsStrategy)

    def test_missing_column_rederives(self):
        stats = COURSE.empty_stats()
        del stats["count_credit_high"]
        rollup = RollupRecord(key=SUBJECT, stats=stats)

        assert isinstance(select_stats_strategy(COURSE, rollup), RederivedStatsStrategy)


class TestReadRollupStats:
    def test_precomputed_values_are_served(self, course_data, rollup_store, rollup_runner, clock):
        course_data.add_review(SUBJECT, "Good course, fair workload.", **course_fields(score=4))
        rollup_store.mark_dirty([SUBJECT], clock())
        rollup_runner.run()

        data = read_rollup_stats(rollup_store, SUBJECT)

        assert data["source"] == "precomputed"
        assert data["key"] == {"subject_id": SUBJECT[0]}
        assert data["stats"]["review_count"] == 1
        assert data["stats"]["avg_satisfaction"] == pytest.approx(4.0)
        assert data["summary"] == "Good course, fair workload."
        assert data["is_dirty"] is False

    def test_rederived_when_rollup_missing(self, company_data):
        store = FakeRollupStore(company_data)
        company_data.add_review(COMPANY_KEY, "offer story", outcome="offer")
        company_data.add_review(COMPANY_KEY, "flagged story", outcome="rejected", flagged=True)

        data = read_rollup_stats(store, COMPANY_KEY)

        assert data["source"] == "rederived"
        assert data["stats"] == {"review_count": 1, "count_offer": 1, "count_rejected": 0, "count_other": 0}
        assert data["summary"] == ""
        assert data["is_dirty"] is None

    def test_rederived_when_row_lacks_columns(self, course_data, rollup_store, clock):
        course_data.add_review(SUBJECT, "R1", **course_fields(performance_self=4))
        course_data.rollups[SUBJECT] = RollupRecord(
            key=SUBJECT, stats={"review_count": 7}, summary_text="old", updated_at=clock()
        )

        data = read_rollup_stats(rollup_store, SUBJECT)

        assert data["source"] == "rederived"
        assert data["stats"]["review_count"] == 1
        assert data["stats"]["count_credit_high"] == 1
        assert data["summary"] == "old"
