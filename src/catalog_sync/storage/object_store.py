"""
Owner-scoped object storage for generated index chunks.

Objects are identified by (namespace, name) and carry an owner reference.
``apply_objects`` writes a complete owner-scoped set atomically: objects are
created or updated, and objects previously applied for the same owner that are
absent from the new set are deleted. Revision tokens change only when an
object's content changes.
"""

import base64
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence

from ..models import OwnerReference
from .database_manager import (
    DatabaseConnectionManager,
    DatabaseSchema,
    next_revision,
)

logger = logging.getLogger(__name__)


class ObjectNotFoundError(Exception):
    """Raised when a stored object does not exist."""

    def __init__(self, namespace: str, name: str):
        super().__init__(f"Object {namespace}/{name} not found")
        self.namespace = namespace
        self.name = name


class ObjectConflictError(Exception):
    """Raised when an apply would take over an object owned by someone else."""

    pass


@dataclass
class StoredObject:
    """A named, owned storage object holding binary data and annotations."""

    name: str
    namespace: str
    owner_references: List[OwnerReference] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    binary_data: Dict[str, bytes] = field(default_factory=dict)
    resource_version: str = ""


class ObjectStore(Protocol):
    """Storage contract consumed by the index chunker and the handler."""

    def get_object(self, namespace: str, name: str) -> StoredObject:
        ...

    def apply_objects(
        self, owner: OwnerReference, objects: Sequence[StoredObject]
    ) -> List[StoredObject]:
        ...


def _encode_binary(data: Dict[str, bytes]) -> str:
    return json.dumps(
        {key: base64.b64encode(value).decode("ascii") for key, value in data.items()},
        sort_keys=True,
    )


def _decode_binary(raw: str) -> Dict[str, bytes]:
    return {key: base64.b64decode(value) for key, value in json.loads(raw).items()}


def _encode_owners(owners: Sequence[OwnerReference]) -> str:
    return json.dumps(
        [
            {
                "api_version": o.api_version,
                "kind": o.kind,
                "name": o.name,
                "uid": o.uid,
            }
            for o in owners
        ],
        sort_keys=True,
    )


def _decode_owners(raw: str) -> List[OwnerReference]:
    return [OwnerReference(**entry) for entry in json.loads(raw)]


class SqliteObjectStore:
    """
    SQLite-backed ObjectStore.

    Shares its database with SqliteRepositoryStore so that deleting a
    repository can cascade to the objects it owns.
    """

    def __init__(self, db_path: str) -> None:
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file.
        """
        DatabaseSchema(db_path).initialize_database()
        self._conn_manager = DatabaseConnectionManager(db_path)

    def _row_to_object(self, row) -> StoredObject:
        return StoredObject(
            namespace=row[0],
            name=row[1],
            owner_references=_decode_owners(row[2]),
            annotations=json.loads(row[3]),
            binary_data=_decode_binary(row[4]),
            resource_version=row[5],
        )

    def get_object(self, namespace: str, name: str) -> StoredObject:
        """
        Get an object by namespace and name.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """
        conn = self._conn_manager.get_connection()
        row = conn.execute(
            """SELECT namespace, name, owner_references, annotations, binary_data,
                      resource_version
               FROM stored_objects WHERE namespace = ? AND name = ?""",
            (namespace, name),
        ).fetchone()

        if row is None:
            raise ObjectNotFoundError(namespace, name)
        return self._row_to_object(row)

    def list_owned_objects(self, owner_uid: str) -> List[StoredObject]:
        """List all objects owned by the given owner uid, ordered by name."""
        conn = self._conn_manager.get_connection()
        cursor = conn.execute(
            """SELECT namespace, name, owner_references, annotations, binary_data,
                      resource_version
               FROM stored_objects WHERE owner_uid = ?
               ORDER BY namespace, name""",
            (owner_uid,),
        )
        return [self._row_to_object(row) for row in cursor.fetchall()]

    def apply_objects(
        self, owner: OwnerReference, objects: Sequence[StoredObject]
    ) -> List[StoredObject]:
        """
        Atomically apply the full set of objects for an owner.

        Args:
            owner: Owner whose object set is being replaced.
            objects: Desired objects; each must list ``owner`` as an owner.

        Returns:
            The applied objects, in input order, with revision tokens set.

        Raises:
            ObjectConflictError: If an object name is held by another owner.
        """

        def operation(conn: sqlite3.Connection) -> List[StoredObject]:
            applied: List[StoredObject] = []
            keep = set()

            for obj in objects:
                owners_json = _encode_owners(obj.owner_references)
                annotations_json = json.dumps(obj.annotations, sort_keys=True)
                binary_json = _encode_binary(obj.binary_data)

                existing = conn.execute(
                    """SELECT owner_uid, owner_references, annotations, binary_data,
                              resource_version
                       FROM stored_objects WHERE namespace = ? AND name = ?""",
                    (obj.namespace, obj.name),
                ).fetchone()

                if existing is not None and existing[0] != owner.uid:
                    raise ObjectConflictError(
                        f"Object {obj.namespace}/{obj.name} is owned by uid "
                        f"{existing[0]}, not {owner.uid}"
                    )

                if existing is not None and (
                    existing[1] == owners_json
                    and existing[2] == annotations_json
                    and existing[3] == binary_json
                ):
                    resource_version = existing[4]
                else:
                    resource_version = next_revision(conn)
                    conn.execute(
                        """INSERT OR REPLACE INTO stored_objects
                           (namespace, name, owner_uid, owner_references, annotations,
                            binary_data, resource_version)
                           VALUES (?, ?, ?, ?, ?, ?, ?)""",
                        (
                            obj.namespace,
                            obj.name,
                            owner.uid,
                            owners_json,
                            annotations_json,
                            binary_json,
                            resource_version,
                        ),
                    )

                keep.add((obj.namespace, obj.name))
                applied.append(
                    StoredObject(
                        name=obj.name,
                        namespace=obj.namespace,
                        owner_references=list(obj.owner_references),
                        annotations=dict(obj.annotations),
                        binary_data=dict(obj.binary_data),
                        resource_version=resource_version,
                    )
                )

            stale = [
                (namespace, name)
                for namespace, name in conn.execute(
                    "SELECT namespace, name FROM stored_objects WHERE owner_uid = ?",
                    (owner.uid,),
                ).fetchall()
                if (namespace, name) not in keep
            ]
            for namespace, name in stale:
                conn.execute(
                    "DELETE FROM stored_objects WHERE namespace = ? AND name = ?",
                    (namespace, name),
                )
            if stale:
                logger.info(
                    f"Removed {len(stale)} superseded object(s) owned by "
                    f"{owner.kind}/{owner.name}"
                )
            return applied

        return self._conn_manager.execute_atomic(operation)

    def close(self) -> None:
        self._conn_manager.close_all()

