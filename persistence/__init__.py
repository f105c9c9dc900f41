"""
Persistence layer.

Provides SQLite-backed storage for users and teams.
"""

from persistence.db import get_db, init_db, close_db

__all__ = [
    "get_db",
    "init_db",
    "close_db",
]
