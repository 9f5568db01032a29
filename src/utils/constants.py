from dotenv import load_dotenv
from pathlib import Path
import os

load_dotenv()

# Embedding job runner
MAX_JOBS_PER_RUN = 50
EMBEDDING_BATCH_SIZE = 16
LOCK_STALE_MINUTES = 15
ID_LOOKUP_CHUNK_SIZE = 200

# Rollup runner
MAX_ROLLUPS_PER_RUN = 15
MAX_REVIEWS_PER_ROLLUP_FOR_STATS = 5000
MAX_NEW_REVIEWS_FOR_SUMMARY = 30
MAX_BODY_CHARS_FOR_SUMMARY = 1200
SUMMARY_MAX_CHARS = 1000

# Full rebuild
REBUILD_PAGE_SIZE = 500
MAX_REBUILD_LOOPS = 10000

# Models
DEFAULT_EMBEDDING_PROVIDER = "litellm"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_LOCAL_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_SUMMARY_MODEL = "gpt-4.1-nano"
DEFAULT_SUMMARY_LANGUAGE = "Japanese"
SUMMARY_TEMPERATURE = 0.2
PROVIDER_TIMEOUT = 60

# Job / flag sentinels
AI_FLAGGED = "ai_flagged"
DEFAULT_RUNNER = "unknown-runner"

# Database
DB_POOL_MIN = 1
DB_POOL_MAX = 20
DB_CONNECT_TIMEOUT = 10

# API
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8080"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE_PATH = Path(os.getenv("LOG_FILE_PATH", "./logs/pipeline.log"))
LOG_MAX_SIZE = 10485760
LOG_BACKUP_COUNT = 5
