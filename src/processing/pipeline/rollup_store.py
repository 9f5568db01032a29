import numpy as np
from decimal import Decimal
from src.processing.models.records import ReviewRow, RollupRecord
from src.processing.pipeline.base_store import BaseStore, to_iso, to_datetime

SUMMARY_COLUMN = "summary_1000"

# record field -> rollup column
FIELD_COLUMNS = {
    "summary_text": SUMMARY_COLUMN,
    "last_processed_review_id": "last_processed_review_id",
    "is_dirty": "is_dirty",
    "last_error": "last_error"
}


def _plain(value):
    return float(value) if isinstance(value, Decimal) else value


def _is_flagged(row):
    flags = row.get("is_flagged")
    if flags is None:
        return False
    if isinstance(flags, bool):
        return flags
    # embedded flag rows from the REST client: object or list of objects
    if isinstance(flags, dict):
        flags = [flags]
    return any(flag.get("ai_flagged") for flag in flags)


def _quoted(value):
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def _after_key_filter(columns, key):
    """PostgREST `or` filter for rows ordered strictly after `key`.

    Expands the row comparison (a, b, c) > (x, y, z) into
    a > x, or a = x and b > y, or a = x and b = y and c > z.
    """
    clauses = []
    for i, column in enumerate(columns):
        tests = [f"{prefix}.eq.{_quoted(value)}" for prefix, value in zip(columns[:i], key[:i])]
        tests.append(f"{column}.gt.{_quoted(key[i])}")
        clauses.append(tests[0] if len(tests) == 1 else f"and({','.join(tests)})")
    return ",".join(clauses)


class RollupStore:
    def __init__(self, db, kind):
        self.kind = kind
        self.store = BaseStore(db, kind, "rollup store")
        self.logger = self.store.logger
        self.use_fallback = self.store.use_fallback

    def _key_filter(self, request, key):
        for column, value in zip(self.kind.key_columns, key):
            request = request.eq(column, value)
        return request

    def _key_where(self, alias=""):
        prefix = f"{alias}." if alias else ""
        return " AND ".join(f"{prefix}{column} = %s" for column in self.kind.key_columns)

    def _record_from_row(self, row):
        return RollupRecord(
            key=tuple(str(part) for part in self.kind.key_from_row(row)),
            summary_text=row.get(SUMMARY_COLUMN) or "",
            last_processed_review_id=str(row["last_processed_review_id"]) if row.get("last_processed_review_id") else None,
            is_dirty=bool(row.get("is_dirty")),
            stats={column: _plain(row[column]) for column in self.kind.stat_columns if column in row},
            last_error=row.get("last_error"),
            updated_at=to_datetime(row.get("updated_at")),
            dirtied_at=to_datetime(row.get("dirtied_at"))
        )

    def _rollup_columns(self):
        return list(self.kind.key_columns) + [SUMMARY_COLUMN, "last_processed_review_id", "is_dirty",
                                              "last_error", "updated_at", "dirtied_at"] + list(self.kind.stat_columns)

    def fetch_dirty(self, limit):
        columns = self._rollup_columns()
        with self.store.operation(f"fetch dirty {self.kind.rollups_table}"):
            if self.use_fallback:
                rows = (
                    self.store.table(self.kind.rollups_table)
                    .select(",".join(columns))
                    .eq("is_dirty", True)
                    .order("updated_at", desc=False)
                    .limit(limit)
                    .execute()
                ).data or []
            else:
                rows = self.store.query(f"""
                    SELECT {", ".join(columns)} FROM {self.kind.rollups_table}
                    WHERE is_dirty
                    ORDER BY updated_at ASC
                    LIMIT %s
                """, (limit,))

        return [self._record_from_row(row) for row in rows]

    def fetch_rollup(self, key):
        # whole row: the stats reader checks which managed columns exist
        with self.store.operation(f"fetch {self.kind.rollups_table}"):
            if self.use_fallback:
                request = self.store.table(self.kind.rollups_table).select("*")
                rows = self._key_filter(request, key).limit(1).execute().data or []
            else:
                rows = self.store.query(f"""
                    SELECT * FROM {self.kind.rollups_table}
                    WHERE {self._key_where()}
                """, tuple(key))

        return self._record_from_row(rows[0]) if rows else None

    def fetch_key_reviews(self, key, limit):
        input_columns = list(self.kind.key_columns) + list(self.kind.stat_input_columns)

        with self.store.operation(f"fetch {self.kind.reviews_table} for {self.kind.describe_key(key)}"):
            if self.use_fallback:
                select = ",".join(["id", "created_at"] + input_columns + [f"is_flagged:{self.kind.flags_table}(ai_flagged)"])
                request = self.store.table(self.kind.reviews_table).select(select)
                rows = (
                    self._key_filter(request, key)
                    .order("created_at", desc=False)
                    .order("id", desc=False)
                    .limit(limit)
                    .execute()
                ).data or []
            else:
                rows = self.store.query(f"""
                    SELECT r.id, r.created_at, {", ".join(f"r.{column}" for column in input_columns)},
                           COALESCE(f.ai_flagged, false) AS is_flagged
                    FROM {self.kind.reviews_table} r
                    LEFT JOIN {self.kind.flags_table} f ON f.review_id = r.id
                    WHERE {self._key_where("r")}
                    ORDER BY r.created_at ASC, r.id ASC
                    LIMIT %s
                """, tuple(key) + (limit,))

        return [
            ReviewRow(
                id=str(row["id"]),
                created_at=to_datetime(row["created_at"]),
                key=tuple(str(part) for part in self.kind.key_from_row(row)),
                is_flagged=_is_flagged(row),
                fields={column: _plain(row.get(column)) for column in self.kind.stat_input_columns}
            )
            for row in rows
        ]

    def fetch_review_rows_for_stats(self, key, limit):
        return [row for row in self.fetch_key_reviews(key, limit) if not row.is_flagged]

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

    def _columns_for(self, fields):
        columns = {}
        for name, value in fields.items():
            if name in FIELD_COLUMNS:
                columns[FIELD_COLUMNS[name]] = value
            elif name in self.kind.stat_columns:
                columns[name] = value
            else:
                raise ValueError(f"{name} is not a {self.kind.rollups_table} field")
        return columns

    def update_rollup(self, key, fields, now):
        columns = self._columns_for(fields)
        columns["updated_at"] = now

        with self.store.operation(f"update {self.kind.rollups_table} {self.kind.describe_key(key)}"):
            if self.use_fallback:
                payload = {column: to_iso(value) for column, value in columns.items()}
                request = self.store.table(self.kind.rollups_table).update(payload)
                self._key_filter(request, key).execute()
            else:
                assignments = ", ".join(f"{column} = %s" for column in columns)
                self.store.execute(f"""
                    UPDATE {self.kind.rollups_table}
                    SET {assignments}
                    WHERE {self._key_where()}
                """, tuple(columns.values()) + tuple(key))

    def mark_dirty(self, keys, now, error=None):
        keys = list(keys)
        if not keys:
            return 0

        key_columns = list(self.kind.key_columns)
        with self.store.operation(f"mark {self.kind.rollups_table} dirty"):
            if self.use_fallback:
                rows = []
                for key in keys:
                    row = dict(zip(key_columns, key))
                    row.update({"is_dirty": True, "updated_at": to_iso(now), "dirtied_at": to_iso(now)})
                    if error is not None:
                        row["last_error"] = error
                    rows.append(row)
                self.store.table(self.kind.rollups_table).upsert(
                    rows, on_conflict=",".join(key_columns)
                ).execute()
            else:
                template = "(" + ", ".join(["%s"] * len(key_columns)) + ", true, %s, %s, %s)"
                self.store.execute_values(f"""
                    INSERT INTO {self.kind.rollups_table} AS t
                        ({", ".join(key_columns)}, is_dirty, last_error, updated_at, dirtied_at)
                    VALUES %s
                    ON CONFLICT ({", ".join(key_columns)}) DO UPDATE SET
                        is_dirty = true,
                        last_error = COALESCE(EXCLUDED.last_error, t.last_error),
                        updated_at = EXCLUDED.updated_at,
                        dirtied_at = EXCLUDED.dirtied_at
                """, [tuple(key) + (error, now, now) for key in keys], template=template)

        return len(keys)

    def clear_dirty(self, key, dirtied_at, now):
        """
        Clear the dirty flag only if the rollup was not marked dirty again
        after `dirtied_at` was read. Returns False when a newer mark won.
        """
        with self.store.operation(f"clear {self.kind.rollups_table} {self.kind.describe_key(key)}"):
            if self.use_fallback:
                request = self.store.table(self.kind.rollups_table).update({
                    "is_dirty": False,
                    "last_error": None,
                    "updated_at": to_iso(now)
                })
                request = self._key_filter(request, key)
                if dirtied_at is None:
                    request = request.is_("dirtied_at", "null")
                else:
                    request = request.eq("dirtied_at", to_iso(dirtied_at))
                return bool(request.execute().data)

            cleared = self.store.execute(f"""
                UPDATE {self.kind.rollups_table}
                SET is_dirty = false, last_error = NULL, updated_at = %s
                WHERE {self._key_where()} AND dirtied_at IS NOT DISTINCT FROM %s
            """, (now,) + tuple(key) + (dirtied_at,))
            return cleared == 1

    def fetch_embedding_hash(self, key):
        with self.store.operation(f"fetch {self.kind.rollup_embeddings_table}"):
            if self.use_fallback:
                request = self.store.table(self.kind.rollup_embeddings_table).select("content_hash")
                rows = self._key_filter(request, key).limit(1).execute().data or []
            else:
                rows = self.store.query(f"""
                    SELECT content_hash FROM {self.kind.rollup_embeddings_table}
                    WHERE {self._key_where()}
                """, tuple(key))

        return rows[0]["content_hash"] if rows else None

    def upsert_embedding(self, key, vector, model, content_hash, now):
        key_columns = list(self.kind.key_columns)

        with self.store.operation(f"upsert {self.kind.rollup_embeddings_table}"):
            if self.use_fallback:
                row = dict(zip(key_columns, key))
                row.update({
                    "embedding": [float(x) for x in vector] if vector is not None else None,
                    "model": model,
                    "content_hash": content_hash,
                    "updated_at": to_iso(now)
                })
                self.store.table(self.kind.rollup_embeddings_table).upsert(
                    row, on_conflict=",".join(key_columns)
                ).execute()
            else:
                embedding = np.asarray(vector, dtype=np.float32) if vector is not None else None
                self.store.execute(f"""
                    INSERT INTO {self.kind.rollup_embeddings_table}
                        ({", ".join(key_columns)}, embedding, model, content_hash, updated_at)
                    VALUES ({", ".join(["%s"] * len(key_columns))}, %s, %s, %s, %s)
                    ON CONFLICT ({", ".join(key_columns)}) DO UPDATE SET
                        embedding = EXCLUDED.embedding,
                        model = EXCLUDED.model,
                        content_hash = EXCLUDED.content_hash,
                        updated_at = EXCLUDED.updated_at
                """, tuple(key) + (embedding, model, content_hash, now))

    def iter_keys(self, page_size):
        source = self.kind.key_source_table
        columns = list(self.kind.key_source_columns)
        order = ", ".join(columns)
        last_key = None

        while True:
            with self.store.operation(f"page {source}"):
                if self.use_fallback:
                    request = self.store.table(source).select(",".join(columns))
                    if last_key is not None and len(columns) == 1:
                        request = request.gt(columns[0], last_key[0])
                    elif last_key is not None:
                        request = request.or_(_after_key_filter(columns, last_key))
                    for column in columns:
                        request = request.order(column, desc=False)
                    rows = request.limit(page_size).execute().data or []
                elif last_key is None:
                    rows = self.store.query(
                        f"SELECT {order} FROM {source} ORDER BY {order} LIMIT %s", (page_size,)
                    )
                else:
                    # row comparison keeps the composite key order stable
                    placeholders = ", ".join(["%s"] * len(columns))
                    rows = self.store.query(
                        f"SELECT {order} FROM {source} WHERE ({order}) > ({placeholders}) ORDER BY {order} LIMIT %s",
                        tuple(last_key) + (page_size,)
                    )

            if not rows:
                return

            page = [tuple(str(part) for part in self.kind.key_from_row(row, columns)) for row in rows]
            yield page
            last_key = page[-1]
            if len(page) < page_size:
                return
