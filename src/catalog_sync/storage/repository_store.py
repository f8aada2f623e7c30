"""
SQLite backend for repository resources.

Stores each repository's metadata, declared spec and controller status.
Spec updates bump the generation; deleting a repository cascades to every
storage object it owns.
"""

import base64
import json
import logging
import sqlite3
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..logging_utils import sanitize_for_logging
from ..models import (
    Condition,
    GitLocation,
    HttpLocation,
    Repository,
    RepositoryDescriptor,
    RepositoryStatus,
    ResourceMetadata,
    SecretReference,
)
from .database_manager import (
    DatabaseConnectionManager,
    DatabaseSchema,
    next_revision,
)

logger = logging.getLogger(__name__)


class RepositoryNotFoundError(Exception):
    """Raised when a repository resource does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Repository '{name}' not found")
        self.name = name


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def descriptor_to_dict(spec: RepositoryDescriptor) -> Dict[str, Any]:
    location: Optional[Dict[str, str]] = None
    if isinstance(spec.location, GitLocation):
        location = {"kind": "git", "url": spec.location.url, "branch": spec.location.branch}
    elif isinstance(spec.location, HttpLocation):
        location = {"kind": "http", "url": spec.location.url}

    return {
        "location": location,
        "insecure_skip_tls_verify": spec.insecure_skip_tls_verify,
        "ca_bundle": (
            base64.b64encode(spec.ca_bundle).decode("ascii") if spec.ca_bundle else None
        ),
        "disable_same_origin_check": spec.disable_same_origin_check,
        "force_update": _dt_to_str(spec.force_update),
        "client_secret": asdict(spec.client_secret) if spec.client_secret else None,
    }


def descriptor_from_dict(data: Dict[str, Any]) -> RepositoryDescriptor:
    location_data = data.get("location")
    location = None
    if location_data and location_data.get("kind") == "git":
        location = GitLocation(url=location_data["url"], branch=location_data["branch"])
    elif location_data and location_data.get("kind") == "http":
        location = HttpLocation(url=location_data["url"])

    ca_bundle = data.get("ca_bundle")
    client_secret = data.get("client_secret")
    return RepositoryDescriptor(
        location=location,
        insecure_skip_tls_verify=data.get("insecure_skip_tls_verify", False),
        ca_bundle=base64.b64decode(ca_bundle) if ca_bundle else None,
        disable_same_origin_check=data.get("disable_same_origin_check", False),
        force_update=_dt_from_str(data.get("force_update")),
        client_secret=SecretReference(**client_secret) if client_secret else None,
    )


def status_to_dict(status: RepositoryStatus) -> Dict[str, Any]:
    data = asdict(status)
    data["download_time"] = _dt_to_str(status.download_time)
    data["conditions"] = [
        {**asdict(c), "last_update_time": _dt_to_str(c.last_update_time)}
        for c in status.conditions
    ]
    return data


def status_from_dict(data: Dict[str, Any]) -> RepositoryStatus:
    values = dict(data)
    values["download_time"] = _dt_from_str(values.get("download_time"))
    values["conditions"] = [
        Condition(
            **{**c, "last_update_time": _dt_from_str(c.get("last_update_time"))}
        )
        for c in values.get("conditions", [])
    ]
    return RepositoryStatus(**values)


class SqliteRepositoryStore:
    """
    SQLite backend for repository resource management.

    Provides atomic CRUD operations on the repositories table.
    """

    def __init__(self, db_path: str) -> None:
        """
        Initialize the backend.

        Args:
            db_path: Path to SQLite database file.
        """
        DatabaseSchema(db_path).initialize_database()
        self._conn_manager = DatabaseConnectionManager(db_path)

    def _row_to_repository(self, row) -> Repository:
        return Repository(
            metadata=ResourceMetadata(
                name=row[0],
                namespace=row[1],
                uid=row[2],
                generation=row[3],
                resource_version=row[4],
            ),
            spec=descriptor_from_dict(json.loads(row[5])),
            status=status_from_dict(json.loads(row[6])),
        )

    def create_repository(
        self, name: str, spec: RepositoryDescriptor, namespace: str = ""
    ) -> Repository:
        """
        Create a new repository resource with a fresh uid.

        Raises:
            sqlite3.IntegrityError: If a repository with this name exists.
        """
        uid = str(uuid.uuid4())
        spec_dict = descriptor_to_dict(spec)

        def operation(conn: sqlite3.Connection) -> str:
            resource_version = next_revision(conn)
            conn.execute(
                """INSERT INTO repositories
                   (name, namespace, uid, generation, resource_version, spec, status)
                   VALUES (?, ?, ?, 1, ?, ?, ?)""",
                (
                    name,
                    namespace,
                    uid,
                    resource_version,
                    json.dumps(spec_dict),
                    json.dumps(status_to_dict(RepositoryStatus())),
                ),
            )
            return resource_version

        self._conn_manager.execute_atomic(operation)
        logger.info(f"Created repository {name} (uid={uid})")
        logger.debug(f"Repository {name} spec: {sanitize_for_logging(spec_dict)}")
        return self.get_repository(name)

    def get_repository(self, name: str) -> Repository:
        """
        Get a repository by name.

        Raises:
            RepositoryNotFoundError: If the repository does not exist.
        """
        conn = self._conn_manager.get_connection()
        row = conn.execute(
            """SELECT name, namespace, uid, generation, resource_version, spec, status
               FROM repositories WHERE name = ?""",
            (name,),
        ).fetchone()
        if row is None:
            raise RepositoryNotFoundError(name)
        return self._row_to_repository(row)

    def list_repositories(self) -> List[Repository]:
        conn = self._conn_manager.get_connection()
        cursor = conn.execute(
            """SELECT name, namespace, uid, generation, resource_version, spec, status
               FROM repositories ORDER BY name"""
        )
        return [self._row_to_repository(row) for row in cursor.fetchall()]

    def update_spec(self, name: str, spec: RepositoryDescriptor) -> Repository:
        """Replace the declared spec and bump the generation."""

        def operation(conn: sqlite3.Connection) -> None:
            resource_version = next_revision(conn)
            cursor = conn.execute(
                """UPDATE repositories
                   SET spec = ?, generation = generation + 1, resource_version = ?
                   WHERE name = ?""",
                (json.dumps(descriptor_to_dict(spec)), resource_version, name),
            )
            if cursor.rowcount == 0:
                raise RepositoryNotFoundError(name)

        self._conn_manager.execute_atomic(operation)
        return self.get_repository(name)

    def update_status(self, name: str, status: RepositoryStatus) -> Repository:
        """Persist controller-owned status. Generation is left unchanged."""

        def operation(conn: sqlite3.Connection) -> None:
            resource_version = next_revision(conn)
            cursor = conn.execute(
                """UPDATE repositories SET status = ?, resource_version = ?
                   WHERE name = ?""",
                (json.dumps(status_to_dict(status)), resource_version, name),
            )
            if cursor.rowcount == 0:
                raise RepositoryNotFoundError(name)

        self._conn_manager.execute_atomic(operation)
        return self.get_repository(name)

    def delete_repository(self, name: str) -> int:
        """
        Delete a repository and every storage object it owns.

        Returns:
            Number of owned objects removed.

        Raises:
            RepositoryNotFoundError: If the repository does not exist.
        """

        def operation(conn: sqlite3.Connection) -> int:
            row = conn.execute(
                "SELECT uid FROM repositories WHERE name = ?", (name,)
            ).fetchone()
            if row is None:
                raise RepositoryNotFoundError(name)
            deleted = conn.execute(
                "DELETE FROM stored_objects WHERE owner_uid = ?", (row[0],)
            ).rowcount
            conn.execute("DELETE FROM repositories WHERE name = ?", (name,))
            return deleted

        removed = self._conn_manager.execute_atomic(operation)
        logger.info(f"Deleted repository {name} and {removed} owned object(s)")
        return removed

    def close(self) -> None:
        self._conn_manager.close_all()
