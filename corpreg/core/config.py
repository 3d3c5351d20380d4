"""
Environment-driven configuration for the registration core.

Values are read from the process environment (optionally seeded from a .env
file). Anything tests need to flip at runtime is exposed through an accessor
function that re-reads the environment.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/registrations.db")

DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Opaque blob storage root for uploaded receipts and documents
BLOB_DIR = os.getenv("BLOB_DIR", "./data/uploads")

# Secretary period length used when staff do not pass an explicit extension
DEFAULT_EXPIRE_DAYS = int(os.getenv("DEFAULT_EXPIRE_DAYS", "365"))

# Expiry sweep (background job, default disabled)
EXPIRY_SWEEP_ENABLED = os.getenv("EXPIRY_SWEEP_ENABLED", "false").lower() == "true"
EXPIRY_SWEEP_INTERVAL_SEC = int(os.getenv("EXPIRY_SWEEP_INTERVAL_SEC", "3600"))

# Views never poll the record store unless this is explicitly switched on
REFRESH_POLLING_ENABLED = os.getenv("REFRESH_POLLING_ENABLED", "false").lower() == "true"
REFRESH_POLL_INTERVAL_SEC = int(os.getenv("REFRESH_POLL_INTERVAL_SEC", "60"))

# Stale read fallback used when the record store is unreachable
STALE_CACHE_MAX_ENTRIES = int(os.getenv("STALE_CACHE_MAX_ENTRIES", "256"))

VERSION = "1.0.0"


def get_db_path() -> str:
    """Database path, re-read so tests can point at a temporary file."""
    return os.getenv("DB_PATH", DB_PATH)


def get_blob_dir() -> str:
    return os.getenv("BLOB_DIR", BLOB_DIR)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def is_sweep_enabled():
    return os.getenv("EXPIRY_SWEEP_ENABLED", "false").lower() == "true"


def get_sweep_interval():
    """Get expiry sweep interval in seconds."""
    return int(os.getenv("EXPIRY_SWEEP_INTERVAL_SEC", str(EXPIRY_SWEEP_INTERVAL_SEC)))


def is_refresh_polling_enabled():
    return os.getenv("REFRESH_POLLING_ENABLED", "false").lower() == "true"


def get_refresh_poll_interval():
    return int(os.getenv("REFRESH_POLL_INTERVAL_SEC", str(REFRESH_POLL_INTERVAL_SEC)))


def get_default_expire_days():
    return int(os.getenv("DEFAULT_EXPIRE_DAYS", str(DEFAULT_EXPIRE_DAYS)))


def validate_sweep_config():
    """Validate expiry sweep configuration and return any issues."""
    issues = []

    if get_sweep_interval() < 1:
        issues.append("EXPIRY_SWEEP_INTERVAL_SEC must be >= 1")

    if get_default_expire_days() < 1:
        issues.append("DEFAULT_EXPIRE_DAYS must be >= 1")

    if is_refresh_polling_enabled() and get_refresh_poll_interval() < 1:
        issues.append("REFRESH_POLL_INTERVAL_SEC must be >= 1 when polling is enabled")

    return issues
