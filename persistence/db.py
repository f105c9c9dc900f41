"""
SQLite database connection and schema management.

Uses a file-based SQLite database for users and teams.
Stripe objects are stored as JSON text columns.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

_logger = logging.getLogger(__name__)

# Database file location (configurable via env var)
DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "billing.db"
DB_PATH = Path(os.environ.get("BILLING_DB_PATH", str(DEFAULT_DB_PATH)))

# Connection pool (one connection per thread)
_local = threading.local()
_init_lock = threading.Lock()
_initialized = False


def _get_connection() -> sqlite3.Connection:
    """Get thread-local database connection, reopening if DB_PATH changed."""
    conn = getattr(_local, "connection", None)
    if conn is not None and getattr(_local, "path", None) != DB_PATH:
        conn.close()
        conn = None

    if conn is None:
        # Ensure directory exists
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(DB_PATH),
            timeout=30.0,
            check_same_thread=False,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        # Return rows as dicts
        conn.row_factory = sqlite3.Row
        _local.connection = conn
        _local.path = DB_PATH

    return conn


@contextmanager
def get_db():
    """
    Get database connection context manager.

    Usage:
        with get_db() as conn:
            cursor = conn.execute("SELECT ...")
    """
    conn = _get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema.

    Creates tables if they don't exist.
    Safe to call multiple times (idempotent).
    """
    global _initialized

    with _init_lock:
        if _initialized:
            return

        with get_db() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    display_name TEXT,
                    stripe_customer TEXT,
                    stripe_card TEXT,
                    has_card_information INTEGER NOT NULL DEFAULT 0,
                    stripe_list_of_invoices TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS teams (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    team_leader_id TEXT NOT NULL,
                    is_subscription_active INTEGER NOT NULL DEFAULT 0,
                    stripe_subscription TEXT,
                    is_payment_failed INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (team_leader_id) REFERENCES users(id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_teams_leader
                ON teams(team_leader_id)
            """)

            _logger.info(f"Database initialized at {DB_PATH}")
            _initialized = True


def close_db() -> None:
    """Close thread-local database connection."""
    if getattr(_local, "connection", None) is not None:
        _local.connection.close()
        _local.connection = None


def reset_db() -> None:
    """Reset database (for testing). Drops all tables."""
    global _initialized

    with _init_lock:
        with get_db() as conn:
            conn.execute("DROP TABLE IF EXISTS teams")
            conn.execute("DROP TABLE IF EXISTS users")
        _initialized = False


def get_db_path() -> Path:
    """Get the database file path."""
    return DB_PATH


def dump_json(value: Any) -> Optional[str]:
    """Serialize a Stripe object (or plain dict) for a JSON column."""
    if value is None:
        return None
    # StripeObject.to_dict() gives plain dicts all the way down
    to_dict = getattr(value, "to_dict", None) or getattr(value, "to_dict_recursive", None)
    if callable(to_dict):
        value = to_dict()
    return json.dumps(value)


def load_json(raw: Optional[str]) -> Optional[Any]:
    """Parse a JSON column."""
    if raw is None:
        return None
    return json.loads(raw)
