import os
from decimal import Decimal

# Database
DATABASE_URL = os.environ.get("DATABASE_URL", "postgresql://localhost/holder_ledger")

# Store backend: "postgres" or "memory"
STORE_BACKEND = os.environ.get("STORE_BACKEND", "postgres").lower()

DB_POOL_MIN_SIZE = int(os.environ.get("DB_POOL_MIN_SIZE", "1"))
DB_POOL_MAX_SIZE = int(os.environ.get("DB_POOL_MAX_SIZE", "10"))
DB_CONNECT_TIMEOUT = float(os.environ.get("DB_CONNECT_TIMEOUT", "10"))

# Webhook auth
FEED_WEBHOOK_SECRET = os.environ.get("FEED_WEBHOOK_SECRET", "")

# Tokens we care about (comma-separated env var). Empty means all tokens.
TRACKED_TOKENS = {
    t.strip() for t in os.environ.get("TRACKED_TOKENS", "").split(",") if t.strip()
}

def is_tracked(token_address):
    return not TRACKED_TOKENS or token_address in TRACKED_TOKENS


# Ingestion control
INGESTION_ENABLED = os.environ.get("INGESTION_ENABLED", "1") == "1"

# Historical backfill source
HISTORY_API_URL = os.environ.get("HISTORY_API_URL", "https://data.solanatracker.io")
HISTORY_API_KEY = os.environ.get("HISTORY_API_KEY", "")
HISTORY_PAGE_LIMIT = int(os.environ.get("HISTORY_PAGE_LIMIT", "1000"))

# Analytics defaults
BREAK_EVEN_TOLERANCE = Decimal(os.environ.get("BREAK_EVEN_TOLERANCE", "0.01"))
PRICE_BAND_PERCENT = Decimal(os.environ.get("PRICE_BAND_PERCENT", "5"))
TOP_PRICE_LEVELS = 10

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
