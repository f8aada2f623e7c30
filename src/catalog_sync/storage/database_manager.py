"""
Database connection pooling and schema management for SQLite storage.

Provides:
- DatabaseSchema: Creates the tables for repository resources and the
  storage objects they own
- DatabaseConnectionManager: Thread-local connections with atomic transactions
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Dict, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class DatabaseSchema:
    """
    Manages SQLite database schema creation and initialization.

    Repository resources and their generated objects live in one database so
    that owner-scoped applies and cascading deletes are single transactions.
    """

    CREATE_REPOSITORIES_TABLE = """
        CREATE TABLE IF NOT EXISTS repositories (
            name TEXT PRIMARY KEY,
            namespace TEXT NOT NULL DEFAULT '',
            uid TEXT NOT NULL UNIQUE,
            generation INTEGER NOT NULL DEFAULT 1,
            resource_version TEXT NOT NULL,
            spec TEXT NOT NULL,
            status TEXT NOT NULL
        )
    """

    CREATE_STORED_OBJECTS_TABLE = """
        CREATE TABLE IF NOT EXISTS stored_objects (
            namespace TEXT NOT NULL,
            name TEXT NOT NULL,
            owner_uid TEXT NOT NULL,
            owner_references TEXT NOT NULL,
            annotations TEXT NOT NULL,
            binary_data TEXT NOT NULL,
            resource_version TEXT NOT NULL,
            PRIMARY KEY (namespace, name)
        )
    """

    CREATE_STORED_OBJECTS_OWNER_INDEX = """
        CREATE INDEX IF NOT EXISTS idx_stored_objects_owner
        ON stored_objects (owner_uid)
    """

    # Single-row counter backing monotonically increasing revision tokens
    CREATE_REVISION_COUNTER_TABLE = """
        CREATE TABLE IF NOT EXISTS revision_counter (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            last_revision INTEGER NOT NULL
        )
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def initialize_database(self) -> None:
        """
        Create the database file and all tables if they do not exist.

        Safe to call multiple times.
        """
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(self.CREATE_REPOSITORIES_TABLE)
            conn.execute(self.CREATE_STORED_OBJECTS_TABLE)
            conn.execute(self.CREATE_STORED_OBJECTS_OWNER_INDEX)
            conn.execute(self.CREATE_REVISION_COUNTER_TABLE)
            conn.execute(
                "INSERT OR IGNORE INTO revision_counter (id, last_revision) VALUES (1, 0)"
            )
            conn.commit()
            logger.debug(f"Initialized catalog database at {self.db_path}")
        finally:
            conn.close()


def next_revision(conn: sqlite3.Connection) -> str:
    """Allocate the next revision token inside the caller's transaction."""
    conn.execute("UPDATE revision_counter SET last_revision = last_revision + 1 WHERE id = 1")
    row = conn.execute("SELECT last_revision FROM revision_counter WHERE id = 1").fetchone()
    return str(row[0])


class DatabaseConnectionManager:
    """
    Thread-local connection pooling with atomic transaction support.

    Each thread gets its own SQLite connection, enabling concurrent reads
    while maintaining proper isolation for writes.
    """

    def __init__(self, db_path: str) -> None:
        """
        Initialize connection manager.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = db_path
        self._local = threading.local()
        self._connections: Dict[int, sqlite3.Connection] = {}
        self._lock = threading.Lock()

    def get_connection(self) -> sqlite3.Connection:
        """
        Get thread-local database connection.

        Returns the same connection for repeated calls from the same thread.
        """
        thread_id = threading.get_ident()

        conn = getattr(self._local, "connection", None)
        with self._lock:
            # close_all() may have closed this thread's connection
            registered = conn is not None and self._connections.get(thread_id) is conn

        if not registered:
            # Autocommit mode; transactions are opened explicitly by execute_atomic
            conn = sqlite3.connect(self.db_path, isolation_level=None)
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.connection = conn

            with self._lock:
                self._connections[thread_id] = conn

        connection: sqlite3.Connection = self._local.connection
        return connection

    def execute_atomic(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        """
        Execute operation atomically with exclusive transaction.

        Uses BEGIN EXCLUSIVE to prevent concurrent writes. Commits on success,
        rolls back on any exception.

        Args:
            operation: Callable that takes a connection and performs database
                      operations. Return value is passed through.

        Returns:
            The return value from the operation callable.

        Raises:
            Any exception raised by the operation (after rollback).
        """
        conn = self.get_connection()
        conn.execute("BEGIN EXCLUSIVE")
        try:
            result = operation(conn)
            conn.execute("COMMIT")
            return result
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def close_all(self) -> None:
        """
        Close all thread-local connections.

        Should be called during shutdown to release resources.
        """
        with self._lock:
            for conn in self._connections.values():
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Ignoring error while closing connection: {e}")
            self._connections.clear()

        if hasattr(self._local, "connection"):
            self._local.connection = None
