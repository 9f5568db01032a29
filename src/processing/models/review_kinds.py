from dataclasses import dataclass
from typing import Callable, Tuple

# rollup column -> review column
COURSE_AVERAGE_COLUMNS = {
    "avg_credit_ease": "credit_ease",
    "avg_class_difficulty": "class_difficulty",
    "avg_assignment_load": "assignment_load",
    "avg_attendance_strictness": "attendance_strictness",
    "avg_satisfaction": "satisfaction",
    "avg_recommendation": "recommendation"
}

# performance_self value -> rollup column
PERFORMANCE_BUCKETS = {
    1: "count_performance_unknown",
    2: "count_no_credit",
    3: "count_credit_normal",
    4: "count_credit_high"
}

COMPANY_OUTCOME_BUCKETS = {
    "offer": "count_offer",
    "rejected": "count_rejected"
}


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def accumulate_course_stats(rows):
    stats = {"review_count": len(rows)}

    for avg_column, source in COURSE_AVERAGE_COLUMNS.items():
        values = [row.get(source) for row in rows if _is_number(row.get(source))]
        stats[avg_column] = sum(values) / len(values) if values else None

    for column in PERFORMANCE_BUCKETS.values():
        stats[column] = 0
    for row in rows:
        column = PERFORMANCE_BUCKETS.get(row.get("performance_self"))
        if column:
            stats[column] += 1

    return stats


def accumulate_company_stats(rows):
    stats = {"review_count": len(rows), "count_offer": 0, "count_rejected": 0, "count_other": 0}

    for row in rows:
        stats[COMPANY_OUTCOME_BUCKETS.get(row.get("outcome"), "count_other")] += 1

    return stats


@dataclass(frozen=True)
class ReviewKind:
    name: str
    label: str
    reviews_table: str
    flags_table: str
    jobs_table: str
    review_embeddings_table: str
    rollups_table: str
    rollup_embeddings_table: str
    key_columns: Tuple[str, ...]
    key_source_table: str
    key_source_columns: Tuple[str, ...]
    stat_input_columns: Tuple[str, ...]
    stat_columns: Tuple[str, ...]
    accumulate: Callable

    def key_from_row(self, row, columns=None):
        return tuple(row[column] for column in (columns or self.key_columns))

    def key_to_dict(self, key):
        return dict(zip(self.key_columns, key))

    def empty_stats(self):
        return self.accumulate([])

    def describe_key(self, key):
        return "/".join(str(part) for part in key)


COURSE = ReviewKind(
    name="course",
    label="course",
    reviews_table="course_reviews",
    flags_table="course_review_ai_flags",
    jobs_table="embedding_jobs",
    review_embeddings_table="course_review_embeddings",
    rollups_table="subject_rollups",
    rollup_embeddings_table="subject_rollup_embeddings",
    key_columns=("subject_id",),
    key_source_table="subjects",
    key_source_columns=("id",),
    stat_input_columns=tuple(COURSE_AVERAGE_COLUMNS.values()) + ("performance_self",),
    stat_columns=("review_count",) + tuple(COURSE_AVERAGE_COLUMNS) + tuple(PERFORMANCE_BUCKETS.values()),
    accumulate=accumulate_course_stats
)

COMPANY = ReviewKind(
    name="company",
    label="company recruiting",
    reviews_table="company_reviews",
    flags_table="company_review_ai_flags",
    jobs_table="company_embedding_jobs",
    review_embeddings_table="company_review_embeddings",
    rollups_table="company_rollups",
    rollup_embeddings_table="company_rollup_embeddings",
    key_columns=("university_id", "faculty", "company_id"),
    key_source_table="company_rollups",
    key_source_columns=("university_id", "faculty", "company_id"),
    stat_input_columns=("outcome",),
    stat_columns=("review_count", "count_offer", "count_rejected", "count_other"),
    accumulate=accumulate_company_stats
)

REVIEW_KINDS = {kind.name: kind for kind in (COURSE, COMPANY)}


def get_review_kind(name):
    try:
        return REVIEW_KINDS[name]
    except KeyError:
        raise ValueError(f"Unknown review kind '{name}', expected one of {sorted(REVIEW_KINDS)}")
