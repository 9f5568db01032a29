"""
Tests for the rollup runner: stats recompute, cursor-based summaries,
rollup embeddings and per-key failure containment.
"""

from dataclasses import replace

import pytest

from src.utils.text import content_hash
from src.processing.pipeline.intake import register_submitted_review
from src.processing.pipeline.rollup_runner import RollupRunner
from tests.fakes import FakeEmbeddings, FakeRollupStore, FakeSummarizer, SUBJECT, COMPANY_KEY, course_fields


def add_course_reviews(data, key, bodies, performance=None):
    ids = []
    for i, body in enumerate(bodies):
        perf = performance[i] if performance else 3
        ids.append(data.add_review(key, body, **course_fields(performance_self=perf, score=i % 5 + 1)))
    return ids


class TestStatsRecompute:
    def test_flagged_reviews_are_excluded_exactly(self, course_data, rollup_store, rollup_runner, clock):
        ids = add_course_reviews(course_data, SUBJECT, [f"R{i}" for i in range(1, 6)], performance=[1, 2, 3, 4, 4])
        rollup_store.mark_dirty([SUBJECT], clock())
        rollup_runner.run()

        course_data.flags[ids[1]] = True
        course_data.flags[ids[3]] = True
        rollup_store.mark_dirty([SUBJECT], clock())
        result = rollup_runner.run()

        stats = course_data.rollups[SUBJECT].stats
        assert result.stats_updated == 1
        assert stats["review_count"] == 3
        assert stats["count_performance_unknown"] == 1
        assert stats["count_no_credit"] == 0
        assert stats["count_credit_normal"] == 1
        assert stats["count_credit_high"] == 1
        # scores of the unflagged rows: 1, 3, 5
        assert stats["avg_satisfaction"] == pytest.approx(3.0)

    def test_company_outcome_counts(self, company_data, clock, summarizer, embeddings, config):
        store = FakeRollupStore(company_data)
        for outcome in ("offer", "offer", "rejected", "other"):
            company_data.add_review(COMPANY_KEY, f"{outcome} story", outcome=outcome)
        store.mark_dirty([COMPANY_KEY], clock())

        result = RollupRunner(store, summarizer, embeddings, config, clock=clock).run()

        rollup = company_data.rollups[COMPANY_KEY]
        assert rollup.stats == {"review_count": 4, "count_offer": 2, "count_rejected": 1, "count_other": 1}
        assert rollup.is_dirty is False
        assert result.outcomes[0].key == {
            "university_id": COMPANY_KEY[0], "faculty": COMPANY_KEY[1], "company_id": COMPANY_KEY[2]
        }


class TestSummaryCursor:
    def test_only_reviews_after_cursor_are_new(self, course_data, rollup_store, rollup_runner, summarizer, clock):
        ids = add_course_reviews(course_data, SUBJECT, ["R1", "R2", "R3", "R4", "R5"])
        rollup_store.mark_dirty([SUBJECT], clock())
        rollup = course_data.rollups[SUBJECT]
        rollup.summary_text = "previous"
        rollup.last_processed_review_id = ids[2]

        result = rollup_runner.run()

        assert summarizer.calls == [("previous", ["R4", "R5"])]
        assert rollup.last_processed_review_id == ids[4]
        assert rollup.summary_text == "previous / R4 / R5"
        assert result.summaries_updated == 1

    def test_no_new_reviews_leaves_summary_untouched(self, course_data, rollup_store, rollup_runner, summarizer, clock):
        ids = add_course_reviews(course_data, SUBJECT, ["R1", "R2"])
        rollup_store.mark_dirty([SUBJECT], clock())
        rollup_runner.run()
        summary = course_data.rollups[SUBJECT].summary_text

        rollup_store.mark_dirty([SUBJECT], clock())
        result = rollup_runner.run()

        assert len(summarizer.calls) == 1
        assert result.summaries_updated == 0
        assert course_data.rollups[SUBJECT].summary_text == summary
        assert course_data.rollups[SUBJECT].last_processed_review_id == ids[-1]
        assert course_data.rollups[SUBJECT].is_dirty is False

    def test_unknown_cursor_treats_all_rows_as_new(self, course_data, rollup_store, rollup_runner, summarizer, clock):
        add_course_reviews(course_data, SUBJECT, ["R1", "R2"])
        rollup_store.mark_dirty([SUBJECT], clock())
        course_data.rollups[SUBJECT].last_processed_review_id = "deleted-review"

        rollup_runner.run()

        assert summarizer.calls == [("", ["R1", "R2"])]

    def test_new_reviews_capped_to_most_recent(self, course_data, rollup_store, rollup_runner, summarizer, clock):
        ids = add_course_reviews(course_data, SUBJECT, [f"R{i}" for i in range(35)])
        rollup_store.mark_dirty([SUBJECT], clock())

        rollup_runner.run()

        _, bodies = summarizer.calls[0]
        assert bodies == [f"R{i}" for i in range(5, 35)]
        assert course_data.rollups[SUBJECT].last_processed_review_id == ids[-1]

    def test_bodies_are_normalized_and_capped(self, course_data, rollup_store, rollup_runner, summarizer, clock):
        add_course_reviews(course_data, SUBJECT, ["  spaced \n out  ", "z" * 1500])
        rollup_store.mark_dirty([SUBJECT], clock())

        rollup_runner.run()

        _, bodies = summarizer.calls[0]
        assert bodies[0] == "spaced out"
        assert bodies[1] == "z" * 1200 + "…"

    def test_summary_capped_to_max_chars(self, course_data, rollup_store, embeddings, config, clock):
        class VerboseSummarizer:
            def summarize(self, previous_summary, new_items):
                return "y" * 1500

        add_course_reviews(course_data, SUBJECT, ["R1"])
        rollup_store.mark_dirty([SUBJECT], clock())

        RollupRunner(rollup_store, VerboseSummarizer(), embeddings, config, clock=clock).run()

        assert len(course_data.rollups[SUBJECT].summary_text) == 1000


class TestEmptyKey:
    def test_all_reviews_flagged_resets_rollup(self, course_data, rollup_store, rollup_runner, clock):
        ids = add_course_reviews(course_data, SUBJECT, ["R1", "R2"])
        rollup_store.mark_dirty([SUBJECT], clock())
        rollup_runner.run()
        for review_id in ids:
            course_data.flags[review_id] = True

        rollup_store.mark_dirty([SUBJECT], clock())
        rollup_runner.run()

        rollup = course_data.rollups[SUBJECT]
        assert rollup.stats["review_count"] == 0
        assert rollup.stats["count_credit_normal"] == 0
        assert rollup.stats["avg_satisfaction"] is None
        assert rollup.summary_text == ""
        assert rollup.last_processed_review_id is None
        assert rollup.is_dirty is False
        embedding = course_data.rollup_embeddings[SUBJECT]
        assert embedding["embedding"] is None
        assert embedding["content_hash"] == content_hash("")


class TestRollupEmbedding:
    def test_embedding_matches_summary_hash(self, course_data, rollup_store, rollup_runner, embeddings, clock):
        add_course_reviews(course_data, SUBJECT, ["Good course, fair workload."])
        rollup_store.mark_dirty([SUBJECT], clock())

        result = rollup_runner.run()

        summary = course_data.rollups[SUBJECT].summary_text
        assert result.rollup_embeddings_updated == 1
        assert course_data.rollup_embeddings[SUBJECT]["content_hash"] == content_hash(summary)
        assert embeddings.calls[-1] == [summary]

    def test_unchanged_summary_skips_embedding(self, course_data, rollup_store, rollup_runner, embeddings, clock):
        add_course_reviews(course_data, SUBJECT, ["R1"])
        rollup_store.mark_dirty([SUBJECT], clock())
        rollup_runner.run()
        calls = len(embeddings.calls)

        rollup_store.mark_dirty([SUBJECT], clock())
        result = rollup_runner.run()

        assert result.rollup_embeddings_updated == 0
        assert len(embeddings.calls) == calls


class TestFailureContainment:
    def test_one_failing_key_stays_dirty(self, course_data, rollup_store, embeddings, config, clock):
        keys = [("subject-a",), ("subject-b",), ("subject-c",)]
        add_course_reviews(course_data, keys[0], ["fine", "also fine"])
        add_course_reviews(course_data, keys[1], ["boom", "x", "y"])
        add_course_reviews(course_data, keys[2], ["ok"])
        rollup_store.mark_dirty(keys, clock())
        summarizer = FakeSummarizer(fail_when=lambda items: "boom" in items)

        result = RollupRunner(rollup_store, summarizer, embeddings, config, clock=clock).run()

        failing = course_data.rollups[keys[1]]
        assert failing.is_dirty is True
        assert failing.stats["review_count"] == 3
        assert "rate limited" in failing.last_error
        for key in (keys[0], keys[2]):
            assert course_data.rollups[key].is_dirty is False
            assert course_data.rollups[key].last_error is None
        assert result.kept_dirty == 1
        assert result.stats_updated == 3
        outcome = next(o for o in result.outcomes if o.key == {"subject_id": "subject-b"})
        assert outcome.ok is False
        assert outcome.stats_updated is True
        assert outcome.summary_updated is False

    def test_failing_key_recovers_on_next_run(self, course_data, rollup_store, embeddings, config, clock):
        add_course_reviews(course_data, SUBJECT, ["R1"])
        rollup_store.mark_dirty([SUBJECT], clock())
        RollupRunner(rollup_store, FakeSummarizer(fail_when=lambda items: True), embeddings, config,
                     clock=clock).run()

        result = RollupRunner(rollup_store, FakeSummarizer(), embeddings, config, clock=clock).run()

        rollup = course_data.rollups[SUBJECT]
        assert result.kept_dirty == 0
        assert rollup.is_dirty is False
        assert rollup.last_error is None
        assert rollup.summary_text == "R1"

    def test_embedding_failure_keeps_key_dirty(self, course_data, rollup_store, summarizer, config, clock):
        add_course_reviews(course_data, SUBJECT, ["R1"])
        rollup_store.mark_dirty([SUBJECT], clock())
        broken = FakeEmbeddings(fail_when=lambda texts: True)

        result = RollupRunner(rollup_store, summarizer, broken, config, clock=clock).run()

        assert result.kept_dirty == 1
        assert course_data.rollups[SUBJECT].is_dirty is True
        assert SUBJECT not in course_data.rollup_embeddings


class TestSubmissionDuringRun:
    def test_review_submitted_mid_run_keeps_key_dirty(self, course_data, job_store, rollup_store, embeddings,
                                                      config, clock):
        add_course_reviews(course_data, SUBJECT, ["R1"])
        rollup_store.mark_dirty([SUBJECT], clock())
        inner = FakeSummarizer()

        class SubmittingSummarizer:
            def summarize(self, previous_summary, new_items):
                if not inner.calls:
                    review_id = course_data.add_review(SUBJECT, "R2", **course_fields())
                    register_submitted_review(job_store, rollup_store, review_id, SUBJECT, clock())
                return inner.summarize(previous_summary, new_items)

        runner = RollupRunner(rollup_store, SubmittingSummarizer(), embeddings, config, clock=clock)
        result = runner.run()

        rollup = course_data.rollups[SUBJECT]
        assert rollup.is_dirty is True
        assert rollup.stats["review_count"] == 1
        assert result.kept_dirty == 1
        assert result.outcomes[0].ok is True

        result = runner.run()

        assert result.kept_dirty == 0
        assert rollup.is_dirty is False
        assert rollup.stats["review_count"] == 2
        assert inner.calls == [("", ["R1"]), ("R1", ["R2"])]

    def test_mark_after_read_is_not_cleared(self, course_data, rollup_store, clock):
        rollup_store.mark_dirty([SUBJECT], clock())
        seen = rollup_store.fetch_dirty(10)[0]
        rollup_store.mark_dirty([SUBJECT], clock())

        assert rollup_store.clear_dirty(SUBJECT, seen.dirtied_at, clock()) is False
        assert course_data.rollups[SUBJECT].is_dirty is True


class TestRunBounds:
    def test_no_dirty_rollups(self, rollup_runner):
        result = rollup_runner.run()

        assert result.rollups == 0
        assert result.message == "no dirty rollups"

    def test_rollup_ceiling(self, course_data, rollup_store, summarizer, embeddings, config, clock):
        keys = [(f"subject-{i}",) for i in range(4)]
        for key in keys:
            add_course_reviews(course_data, key, ["R"])
        rollup_store.mark_dirty(keys, clock())

        runner = RollupRunner(rollup_store, summarizer, embeddings, replace(config, max_rollups_per_run=3),
                              clock=clock)
        result = runner.run()

        assert result.rollups == 3
        assert sum(1 for rollup in course_data.rollups.values() if rollup.is_dirty) == 1

    def test_result_serialization(self, course_data, rollup_store, rollup_runner, clock):
        add_course_reviews(course_data, SUBJECT, ["R1"])
        rollup_store.mark_dirty([SUBJECT], clock())

        data = rollup_runner.run().to_dict()

        assert data["counts"]["rollups"] == 1
        assert data["rollups"][0]["key"] == {"subject_id": SUBJECT[0]}
