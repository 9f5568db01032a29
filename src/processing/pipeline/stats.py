from src.utils.constants import MAX_REVIEWS_PER_ROLLUP_FOR_STATS
from src.utils.logger import get_logger

logger = get_logger("rollup stats")


class PrecomputedStatsStrategy:
    """Serves the statistics the rollup runner already wrote to the rollup row."""

    name = "precomputed"

    def read(self, store, key, rollup):
        return {column: rollup.stats[column] for column in store.kind.stat_columns}


class RederivedStatsStrategy:
    """Rebuilds statistics from the unflagged review rows of the key.

    Used when the rollup row is missing or does not carry every managed stat
    column (older deployments, rollups never processed).
    """

    name = "rederived"

    def __init__(self, limit=MAX_REVIEWS_PER_ROLLUP_FOR_STATS):
        self.limit = limit

    def read(self, store, key, rollup):
        rows = store.fetch_review_rows_for_stats(key, self.limit)
        return store.kind.accumulate([row.fields for row in rows])


def select_stats_strategy(kind, rollup):
    if rollup is not None and all(column in rollup.stats for column in kind.stat_columns):
        return PrecomputedStatsStrategy()
    return RederivedStatsStrategy()


def read_rollup_stats(store, key):
    key = tuple(key)
    rollup = store.fetch_rollup(key)
    strategy = select_stats_strategy(store.kind, rollup)
    logger.debug(f"Reading {store.kind.describe_key(key)} stats via {strategy.name}")

    return {
        "key": store.kind.key_to_dict(key),
        "source": strategy.name,
        "stats": strategy.read(store, key, rollup),
        "summary": rollup.summary_text if rollup is not None else "",
        "is_dirty": rollup.is_dirty if rollup is not None else None
    }
