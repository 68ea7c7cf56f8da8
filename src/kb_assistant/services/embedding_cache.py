"""Bounded in-memory LRU cache of chunk embeddings."""

import threading
from collections import OrderedDict
from typing import Dict, Optional, Set, Tuple

import numpy as np

from kb_assistant.database.session import SessionFactory
from kb_assistant.repositories.chunk_repository import ChunkRepository
from kb_assistant.utils.logging import get_logger

logger = get_logger("embedding_cache")

DEFAULT_MAX_ENTRIES = 50000
# Deleted document ids remembered so late inserts for them are refused
DEFAULT_MAX_TOMBSTONES = 10000


def vector_from_bytes(raw: bytes) -> np.ndarray:
    """Decode a stored embedding (little-endian float32) into a read-only array."""
    vector = np.frombuffer(raw, dtype="<f4").astype(np.float32)
    vector.setflags(write=False)
    return vector


def vector_to_bytes(vector) -> bytes:
    """Encode an embedding for storage as little-endian float32."""
    return np.asarray(vector, dtype="<f4").tobytes()


def as_vector(values) -> np.ndarray:
    """Copy ``values`` into a read-only float32 array."""
    vector = np.array(values, dtype=np.float32)
    vector.setflags(write=False)
    return vector


class EmbeddingCache:
    """
    Strict LRU map of chunk id -> embedding vector.

    The cache is never the source of truth: every entry mirrors a persisted
    chunk embedding, and a miss is served by reading the store. Get-and-promote
    and set-and-evict each run under one lock, so the cache can be shared by
    the ingestion worker and concurrent chat turns.

    Writers read from the store and insert after an await, so a document can
    be deleted in between. ``remove_document`` leaves a tombstone and any
    later ``set`` for that document is dropped.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        session_factory: Optional[SessionFactory] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._session_factory = session_factory
        self._entries: "OrderedDict[str, Tuple[np.ndarray, Optional[str]]]" = OrderedDict()
        self._by_document: Dict[str, Set[str]] = {}
        self._removed_documents: "OrderedDict[str, None]" = OrderedDict()
        self.max_tombstones = DEFAULT_MAX_TOMBSTONES
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, chunk_id: str) -> bool:
        """Membership test that does not change recency."""
        with self._lock:
            return chunk_id in self._entries

    def get(self, chunk_id: str) -> Optional[np.ndarray]:
        """Return the vector and mark it most recently used, or None on a miss."""
        with self._lock:
            entry = self._entries.get(chunk_id)
            if entry is None:
                self.misses += 1
                return None
            self._entries.move_to_end(chunk_id)
            self.hits += 1
            return entry[0]

    def set(self, chunk_id: str, vector, document_id: Optional[str] = None) -> bool:
        """
        Insert or overwrite; evicts the least recently used entry when full and the key is new.

        Returns False when the owning document has been removed.
        """
        value = vector if _is_frozen_vector(vector) else as_vector(vector)
        with self._lock:
            if document_id is not None and document_id in self._removed_documents:
                return False
            if chunk_id in self._entries:
                _, old_document_id = self._entries[chunk_id]
                self._unindex(chunk_id, old_document_id)
                self._entries.move_to_end(chunk_id)
            elif len(self._entries) >= self.max_entries:
                evicted_id, (_, evicted_document_id) = self._entries.popitem(last=False)
                self._unindex(evicted_id, evicted_document_id)
                self.evictions += 1
            self._entries[chunk_id] = (value, document_id)
            if document_id is not None:
                self._by_document.setdefault(document_id, set()).add(chunk_id)
            return True

    def delete(self, chunk_id: str) -> bool:
        with self._lock:
            entry = self._entries.pop(chunk_id, None)
            if entry is None:
                return False
            self._unindex(chunk_id, entry[1])
            return True

    def invalidate(self, document_id: str) -> int:
        """Drop every cached entry belonging to a document. Returns the number removed."""
        with self._lock:
            chunk_ids = self._by_document.pop(document_id, set())
            for chunk_id in chunk_ids:
                self._entries.pop(chunk_id, None)
        if chunk_ids:
            logger.info(f"Invalidated {len(chunk_ids)} cached embeddings for document {document_id}")
        return len(chunk_ids)

    def remove_document(self, document_id: str) -> int:
        """Invalidate a deleted document and refuse further inserts for it."""
        with self._lock:
            self._removed_documents[document_id] = None
            self._removed_documents.move_to_end(document_id)
            while len(self._removed_documents) > self.max_tombstones:
                self._removed_documents.popitem(last=False)
        return self.invalidate(document_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_document.clear()
            self._removed_documents.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }

    async def bulk_load(self, batch_size: int = 1000) -> int:
        """
        Populate the cache from every persisted chunk with an embedding.

        Stops once the cache is full. Returns the number of entries loaded.
        """
        if self._session_factory is None:
            logger.warning("Embedding cache has no session factory; skipping bulk load")
            return 0

        loaded = 0
        async with self._session_factory() as session:
            repo = ChunkRepository(session)
            async for rows in repo.iter_embeddings(batch_size=batch_size):
                for chunk_id, document_id, raw in rows:
                    if loaded >= self.max_entries:
                        break
                    self.set(chunk_id, vector_from_bytes(raw), document_id)
                    loaded += 1
                if loaded >= self.max_entries:
                    break

        logger.info(f"Embedding cache loaded: entries={loaded}, capacity={self.max_entries}")
        return loaded

    def _unindex(self, chunk_id: str, document_id: Optional[str]) -> None:
        if document_id is None:
            return
        members = self._by_document.get(document_id)
        if members is None:
            return
        members.discard(chunk_id)
        if not members:
            del self._by_document[document_id]


def _is_frozen_vector(value) -> bool:
    return (
        isinstance(value, np.ndarray)
        and value.dtype == np.float32
        and value.ndim == 1
        and not value.flags.writeable
    )
