"""
Unit tests for the catalog database schema and connection manager.
"""

import sqlite3

import pytest

from catalog_sync.storage.database_manager import (
    DatabaseConnectionManager,
    DatabaseSchema,
    next_revision,
)


@pytest.fixture
def manager(tmp_path):
    db_path = str(tmp_path / "nested" / "catalog.db")
    DatabaseSchema(db_path).initialize_database()
    manager = DatabaseConnectionManager(db_path)
    yield manager
    manager.close_all()


class TestSchema:
    def test_initialize_is_idempotent(self, tmp_path):
        db_path = str(tmp_path / "catalog.db")
        DatabaseSchema(db_path).initialize_database()
        DatabaseSchema(db_path).initialize_database()

        conn = sqlite3.connect(db_path)
        try:
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        finally:
            conn.close()
        assert {"repositories", "stored_objects", "revision_counter"} <= tables


class TestExecuteAtomic:
    """Transactions commit on success and roll back on error."""

    def test_revisions_increase_monotonically(self, manager):
        first = manager.execute_atomic(next_revision)
        second = manager.execute_atomic(next_revision)

        assert int(second) == int(first) + 1

    def test_error_rolls_back(self, manager):
        before = manager.execute_atomic(next_revision)

        def failing(conn):
            next_revision(conn)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            manager.execute_atomic(failing)

        assert int(manager.execute_atomic(next_revision)) == int(before) + 1

    def test_reconnects_after_close_all(self, manager):
        manager.execute_atomic(next_revision)
        manager.close_all()

        assert manager.execute_atomic(next_revision)

    def test_same_thread_reuses_connection(self, manager):
        assert manager.get_connection() is manager.get_connection()
