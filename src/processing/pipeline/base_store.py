from datetime import datetime
from contextlib import contextmanager
from psycopg2.extras import execute_values
from src.utils.constants import ID_LOOKUP_CHUNK_SIZE
from src.utils.exceptions import StorageError
from src.utils.logger import get_logger
from src.utils.text import chunked


def to_iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


def to_datetime(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


class BaseStore:
    def __init__(self, db, kind, name):
        self.db = db
        self.kind = kind
        self.logger = get_logger(f"{kind.name} {name}")
        self.use_fallback = db.use_fallback
        if self.use_fallback:
            self.logger.info(f"{name} operating in Supabase client fallback mode")

    def table(self, name):
        return self.db.client.table(name)

    @contextmanager
    def operation(self, name):
        try:
            yield
        except StorageError:
            raise
        except Exception as e:
            self.logger.error(f"Error {e} on {name}")
            raise StorageError(f"{name} failed: {e}", operation=name) from e

    def query(self, sql, params=None):
        with self.db.cursor() as cur:
            cur.execute(sql, params)
            return [dict(row) for row in cur.fetchall()] if cur.description else []

    def execute(self, sql, params=None):
        with self.db.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def execute_values(self, sql, values, template=None):
        if not values:
            return
        with self.db.cursor() as cur:
            execute_values(cur, sql, values, template=template)

    def lookup_chunks(self, ids):
        return chunked(list(dict.fromkeys(ids)), ID_LOOKUP_CHUNK_SIZE)
