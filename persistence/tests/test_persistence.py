# persistence/tests/test_persistence.py
"""Tests for persistence layer."""

import json

import pytest

from persistence.db import close_db, dump_json, get_db, get_db_path, init_db, load_json, reset_db


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_tables(self, fresh_database):
        with get_db() as conn:
            tables = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
            table_names = [t["name"] for t in tables]

        assert "users" in table_names
        assert "teams" in table_names

    def test_init_is_idempotent(self, fresh_database):
        init_db()
        init_db()  # Should not raise

    def test_db_path_follows_override(self, fresh_database):
        assert get_db_path() == fresh_database
        assert fresh_database.exists()

    def test_reset_drops_tables(self, fresh_database):
        reset_db()
        with get_db() as conn:
            tables = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()

        assert tables == []


class TestTransactions:

    def test_rollback_on_error(self, fresh_database):
        with pytest.raises(RuntimeError):
            with get_db() as conn:
                conn.execute(
                    "INSERT INTO users (id, email, created_at) VALUES (?, ?, ?)",
                    ("u1", "a@example.com", "2024-01-01T00:00:00"),
                )
                raise RuntimeError("boom")

        with get_db() as conn:
            count = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]

        assert count == 0

    def test_team_leader_must_exist(self, fresh_database):
        import sqlite3

        with pytest.raises(sqlite3.IntegrityError):
            with get_db() as conn:
                conn.execute(
                    """
                    INSERT INTO teams (id, name, slug, team_leader_id, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    ("t1", "Acme", "acme", "missing", "2024-01-01T00:00:00"),
                )

    def test_reconnects_after_close(self, fresh_database):
        close_db()
        with get_db() as conn:
            assert conn.execute("SELECT 1 AS one").fetchone()["one"] == 1


class TestJsonColumns:

    def test_none_passthrough(self):
        assert dump_json(None) is None
        assert load_json(None) is None

    def test_plain_dict(self):
        raw = dump_json({"id": "sub_123", "items": [1, 2]})
        assert json.loads(raw) == {"id": "sub_123", "items": [1, 2]}
        assert load_json(raw) == {"id": "sub_123", "items": [1, 2]}

    def test_stripe_object(self):
        import stripe

        customer = stripe.Customer.construct_from(
            {"id": "cus_123", "object": "customer", "email": "a@example.com"},
            "sk_test_0123456789abcdef",
        )

        assert load_json(dump_json(customer)) == {
            "id": "cus_123",
            "object": "customer",
            "email": "a@example.com",
        }
