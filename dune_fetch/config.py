"""Configuration and constants."""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent
SQL_DIR = Path(os.getenv("DUNE_SQL_DIR", BASE_DIR / "sql"))

DUNE_USER = os.getenv("DUNE_USER")
DUNE_PASSWORD = os.getenv("DUNE_PASSWORD")

# Polling / retry
POLL_INTERVAL_SECONDS = float(os.getenv("DUNE_POLL_INTERVAL", "10"))
MAX_RETRIES = int(os.getenv("DUNE_MAX_RETRIES", "2"))
MAX_POLLS = int(os.environ["DUNE_MAX_POLLS"]) if os.getenv("DUNE_MAX_POLLS") else None
QUERY_PAUSE_SECONDS = float(os.getenv("DUNE_QUERY_PAUSE", "1"))

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))

# Cache TTL
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "3600"))

# Snapshot blocks per network, supplied by the scheduler
CUTOFF_BLOCKS = {
    "mainnet": os.getenv("CUTOFF_BLOCK_MAINNET"),
    "polygon": os.getenv("CUTOFF_BLOCK_POLYGON"),
}
