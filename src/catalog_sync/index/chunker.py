"""Index chunker: publishes an IndexDocument as a chain of size-bounded objects.

Algorithm:
1. Sort the document deterministically
2. Encode as JSON and gzip it into one in-memory payload (mtime pinned to 0)
3. Cut the payload into slices of at most ``max_chunk_size`` bytes
4. Name chunk i after (owner name, i, owner uid); chunk 0 is the root
5. Annotate each chunk with the next chunk's name ("" on the last) and the
   total payload length, identical on every chunk of the chain
6. Apply the whole chain as one owner-scoped write

The size annotation makes the root object change whenever the payload grows
or shrinks, even if the root's own bytes are identical.
"""

import gzip
import io
import logging
from typing import List, Optional

from ..config import DEFAULT_MAX_CHUNK_SIZE, DEFAULT_SYSTEM_NAMESPACE
from ..models import ObjectIdentity, OwnerReference
from ..storage.object_store import ObjectStore, StoredObject
from .document import IndexDocument, IndexParseError
from .names import safe_concat_name

logger = logging.getLogger(__name__)

NEXT_ANNOTATION = "catalog.cattle.io/next"
SIZE_ANNOTATION = "catalog.cattle.io/size"
CONTENT_KEY = "content"


class ChunkChainError(Exception):
    """Raised when a stored chunk chain is broken or inconsistent."""

    pass


def encode_index(document: IndexDocument) -> bytes:
    """Serialize a document to gzip-compressed JSON."""
    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode="wb", mtime=0) as gz:
        gz.write(document.to_json_bytes())
    return buf.getvalue()


def decode_index(payload: bytes) -> IndexDocument:
    try:
        raw = gzip.decompress(payload)
    except (OSError, EOFError) as e:
        raise IndexParseError(f"Invalid gzip index payload: {e}")
    return IndexDocument.from_json_bytes(raw)


def split_payload(payload: bytes, max_size: int) -> List[bytes]:
    """
    Split a payload into consecutive slices of at most ``max_size`` bytes.

    A payload at or under the limit yields exactly one slice; an empty
    payload yields one empty slice so the chain always has a root.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be greater than 0, got {max_size}")
    if not payload:
        return [b""]
    return [payload[start : start + max_size] for start in range(0, len(payload), max_size)]


def chunk_name(owner: OwnerReference, index: int) -> str:
    return safe_concat_name(owner.name, str(index), owner.uid)


def build_chunks(
    payload: bytes,
    namespace: str,
    owner: OwnerReference,
    max_size: int = DEFAULT_MAX_CHUNK_SIZE,
) -> List[StoredObject]:
    """Build the linked chunk objects for a payload, root first."""
    slices = split_payload(payload, max_size)
    size = str(len(payload))

    chunks = []
    for i, data in enumerate(slices):
        next_name = chunk_name(owner, i + 1) if i + 1 < len(slices) else ""
        chunks.append(
            StoredObject(
                name=chunk_name(owner, i),
                namespace=namespace,
                owner_references=[owner],
                annotations={
                    NEXT_ANNOTATION: next_name,
                    SIZE_ANNOTATION: size,
                },
                binary_data={CONTENT_KEY: data},
            )
        )
    return chunks


class IndexChunker:
    """Publishes index documents as owned chunk chains in an ObjectStore."""

    def __init__(
        self,
        store: ObjectStore,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        system_namespace: str = DEFAULT_SYSTEM_NAMESPACE,
    ):
        self.store = store
        self.max_chunk_size = max_chunk_size
        self.system_namespace = system_namespace

    def publish(
        self, namespace: str, document: IndexDocument, owner: OwnerReference
    ) -> ObjectIdentity:
        """
        Encode, split and write a document as one chunk chain.

        Args:
            namespace: Target namespace; empty selects the system namespace
            document: Index to publish (sorted in place)
            owner: Repository that owns every chunk

        Returns:
            Identity of the root chunk, with its storage revision token

        Raises:
            Any encoding or storage error; nothing is reported as published
        """
        document.sort_entries()
        payload = encode_index(document)

        if not namespace:
            namespace = self.system_namespace

        chunks = build_chunks(payload, namespace, owner, self.max_chunk_size)
        applied = self.store.apply_objects(owner, chunks)
        root = applied[0]

        logger.info(
            f"Published index for {owner.kind}/{owner.name} as {len(applied)} chunk(s) "
            f"({len(payload)} bytes) rooted at {root.namespace}/{root.name}"
        )
        return ObjectIdentity(
            name=root.name,
            namespace=root.namespace,
            resource_version=root.resource_version,
        )


def read_chain_payload(store: ObjectStore, namespace: str, root_name: str) -> bytes:
    """
    Follow a chunk chain from its root and reassemble the payload.

    Raises:
        ObjectNotFoundError: If the root or a linked chunk is missing
        ChunkChainError: If the chain loops or disagrees with its size annotation
    """
    parts: List[bytes] = []
    seen = set()
    expected_size: Optional[str] = None
    name = root_name

    while name:
        if name in seen:
            raise ChunkChainError(f"Chunk chain rooted at {root_name} loops at {name}")
        seen.add(name)

        chunk = store.get_object(namespace, name)
        size = chunk.annotations.get(SIZE_ANNOTATION, "")
        if expected_size is None:
            expected_size = size
        elif size != expected_size:
            raise ChunkChainError(
                f"Chunk {name} has size annotation {size!r}, root has {expected_size!r}"
            )

        parts.append(chunk.binary_data.get(CONTENT_KEY, b""))
        name = chunk.annotations.get(NEXT_ANNOTATION, "")

    payload = b"".join(parts)
    if expected_size != str(len(payload)):
        raise ChunkChainError(
            f"Chunk chain rooted at {root_name} holds {len(payload)} bytes, "
            f"annotated size is {expected_size}"
        )
    return payload


def read_chain(store: ObjectStore, namespace: str, root_name: str) -> IndexDocument:
    """Reassemble, decompress and decode the document stored under a chain root."""
    return decode_index(read_chain_payload(store, namespace, root_name))
