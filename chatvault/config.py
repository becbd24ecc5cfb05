"""Runtime configuration read from the environment (and a local .env via python-dotenv)."""

import os
from pathlib import Path

# Per-user application data. Only meant to be overridden for development and tests.
DATA_DIR = Path(os.getenv("CHATVAULT_DATA_DIR", str(Path.home() / ".chatvault"))).expanduser()
DB_PATH = Path(os.getenv("CHATVAULT_DB_PATH", str(DATA_DIR / "conversations.sqlite3"))).expanduser()

LOG_LEVEL = os.getenv("CHATVAULT_LOG_LEVEL", "INFO").upper()

# Outer-surface guard for the HTTP import endpoint
MAX_UPLOAD_MB = int(os.getenv("CHATVAULT_MAX_UPLOAD_MB", "512"))
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024

RECENT_LIMIT = int(os.getenv("CHATVAULT_RECENT_LIMIT", "3"))

PORT = int(os.getenv("CHATVAULT_PORT", "8088"))


def ensure_directories_exist():
    """Create the data directory and the database's parent directory if missing."""
    for directory in (DATA_DIR, DB_PATH.parent):
        directory.mkdir(parents=True, exist_ok=True)


def get_config_summary() -> dict:
    """Get current configuration for debugging/logging."""
    return {
        "data_dir": str(DATA_DIR),
        "db_path": str(DB_PATH),
        "log_level": LOG_LEVEL,
        "max_upload_mb": MAX_UPLOAD_MB,
        "recent_limit": RECENT_LIMIT,
        "port": PORT,
    }
