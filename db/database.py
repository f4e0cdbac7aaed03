"""SQLite database connection manager and schema initialization."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from config.settings import DB_PATH

# ---------------------------------------------------------------------------
# Schema DDL — executed once on first run via init_db()
# ---------------------------------------------------------------------------

_SCHEMA = """
-- =========================================================================
-- Usage ledger (one row per completed request)
-- =========================================================================

CREATE TABLE IF NOT EXISTS usage_records (
    seq                 INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id           TEXT NOT NULL,
    period              TEXT NOT NULL,
    timestamp           TEXT NOT NULL,
    request_id          TEXT NOT NULL,
    category            TEXT DEFAULT NULL,
    processing_time_ms  INTEGER NOT NULL DEFAULT 0,
    billable_amount     TEXT NOT NULL DEFAULT '0',
    status              TEXT NOT NULL,
    api_version         TEXT NOT NULL DEFAULT '1.0',
    risk_label          TEXT DEFAULT NULL,
    risk_score          REAL DEFAULT NULL,
    confidence          REAL DEFAULT NULL,
    pdf_size_kb         INTEGER DEFAULT NULL
);
CREATE INDEX IF NOT EXISTS idx_usage_partition ON usage_records(client_id, period);
"""


def _ensure_db_dir(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def get_connection(db_path: Path = None) -> sqlite3.Connection:
    """Return a new SQLite connection with WAL mode enabled."""
    db_path = Path(db_path or DB_PATH)
    _ensure_db_dir(db_path)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def get_db(db_path: Path = None):
    """Context manager that yields a connection and commits on success."""
    conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: Path = None) -> None:
    """Create all tables if they do not exist. Safe to call multiple times."""
    with get_db(db_path) as conn:
        conn.executescript(_SCHEMA)
