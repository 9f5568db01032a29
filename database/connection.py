import os
import psycopg2
from dotenv import load_dotenv
from database.schema import SCHEMA_SQL
from supabase import create_client
from psycopg2.pool import ThreadedConnectionPool
from psycopg2.extras import RealDictCursor
from pgvector.psycopg2 import register_vector
from contextlib import contextmanager
from src.utils.constants import DB_POOL_MIN, DB_POOL_MAX, DB_CONNECT_TIMEOUT
from src.utils.exceptions import ConfigurationError, StorageError
from src.utils.logger import get_logger
from urllib.parse import urlparse


def resolve_env(key):
    # TEST_ variables point the pipeline at the test project when set
    return os.getenv(f"TEST_{key}") or os.getenv(key)


class SupabaseConnection:
    def __init__(self, database_url=None, supabase_url=None, supabase_key=None):
        load_dotenv()
        self.supabase_url = supabase_url or resolve_env("SUPABASE_URL")
        self.supabase_key = supabase_key or resolve_env("SUPABASE_SERVICE_ROLE_KEY")
        self.logger = get_logger("database")
        self.client = None
        self.pool = None
        self.use_fallback = False

        if self.supabase_url and self.supabase_key:
            self.client = create_client(self.supabase_url, self.supabase_key)

        db_url = database_url or resolve_env("DATABASE_URL")
        try:
            if not db_url:
                raise ConfigurationError("DATABASE_URL is not set")

            parsed = urlparse(db_url)
            sslmode = os.getenv("DB_SSLMODE", "require")
            connection_attempts = [
                {
                    "host": parsed.hostname,
                    "database": parsed.path[1:],
                    "user": parsed.username,
                    "password": parsed.password,
                    "port": parsed.port or 5432,
                    "connect_timeout": DB_CONNECT_TIMEOUT,
                    "sslmode": sslmode
                },
                # pooler endpoints only accept the full dsn
                {
                    "dsn": db_url,
                    "connect_timeout": DB_CONNECT_TIMEOUT,
                    "sslmode": sslmode
                }
            ]

            for i, conn_params in enumerate(connection_attempts):
                try:
                    self.logger.info(f"Trying connection method {i+1}")
                    # request threads share one pool
                    self.pool = ThreadedConnectionPool(DB_POOL_MIN, DB_POOL_MAX, **conn_params)
                    self.logger.info("PostgreSQL connection established successfully")
                    break
                except psycopg2.Error as e:
                    self.logger.warning(f"Connection method {i+1} failed: {e}")
                    continue

            if self.pool is None:
                raise StorageError("All PostgreSQL connection methods failed", operation="connect")

        except (ConfigurationError, StorageError) as e:
            if self.client is None:
                raise ConfigurationError(
                    f"{e}; and SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not set for the fallback client"
                )
            self.logger.warning(f"PostgreSQL connection failed: {e}")
            self.logger.info("Using Supabase client as fallback - this may be slower")
            self.use_fallback = True

    @contextmanager
    def get_db_connection(self):
        if self.use_fallback:
            raise NotImplementedError("Direct SQL not available in fallback mode. Use Supabase client methods.")

        conn = self.pool.getconn()
        try:
            register_vector(conn)
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    @contextmanager
    def cursor(self):
        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()

    def initialize_schema(self):
        if self.use_fallback:
            self.logger.warning("Schema initialization skipped in fallback mode")
            return False

        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA_SQL)
                    conn.commit()
        except psycopg2.Error as e:
            self.logger.error(f"{e}: on running schema")
            raise StorageError(f"schema initialization failed: {e}", operation="initialize_schema") from e

        self.logger.info("Schema initialized")
        return True

    def close(self):
        if self.pool is not None:
            self.pool.closeall()
            self.pool = None
