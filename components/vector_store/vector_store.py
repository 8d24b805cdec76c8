"""Vector store management for chunk embeddings and exact nearest-neighbor search."""

import heapq
import itertools
import logging
from pathlib import Path
from typing import Collection, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ValidationError

from shared.kv_store import KeyValueDatabase

logger = logging.getLogger(__name__)

VECTORS_TABLE = "vectors"


class VectorEntry(BaseModel):
    """One embedded chunk, keyed by ``"{file_path}:{chunk_index}"``."""

    file_path: str
    chunk_index: int
    embedding: List[float]
    text: str
    context: str
    start_line: int
    end_line: int

    @property
    def chunk_id(self) -> str:
        return make_chunk_id(self.file_path, self.chunk_index)


def make_chunk_id(file_path: str, chunk_index: int) -> str:
    return f"{file_path}:{chunk_index}"


def file_path_from_chunk_id(chunk_id: str) -> str:
    """Strip the trailing ``:<chunk_index>``; file paths may themselves contain colons."""
    return chunk_id.rsplit(":", 1)[0]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 for vectors of different length, empty vectors and zero-norm
    vectors instead of raising.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0
    return float(np.dot(va, vb) / norm)


class VectorStore:
    """Persistent chunk embeddings with brute-force top-K cosine search."""

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """Open (creating if needed) the vector database.

        Args:
            db_path: Path of the sqlite file holding the vectors
            read_only: Open without the writer lock, for searching only

        Raises:
            StoreLockedError: Another process holds the store open for writing
            ConfigError: ``read_only`` was requested and no store exists yet
        """
        self.db_path = Path(db_path)
        self.db = KeyValueDatabase(
            self.db_path,
            tables=(VECTORS_TABLE,),
            label="vector store",
            read_only=read_only,
        )
        logger.debug(f"Opened vector store at {self.db_path} (read_only={read_only})")

    def __enter__(self) -> "VectorStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.db.close()

    def insert(self, entry: VectorEntry) -> None:
        """Insert or replace a single entry."""
        self.insert_many([entry])

    def insert_many(self, entries: Iterable[VectorEntry]) -> None:
        """Insert or replace entries in a single transaction."""
        items = [(entry.chunk_id, entry.model_dump_json()) for entry in entries]
        if not items:
            return
        self.db.put_many(VECTORS_TABLE, items)
        logger.debug(f"Stored {len(items)} vectors")

    def get(self, chunk_id: str) -> Optional[VectorEntry]:
        raw = self.db.get(VECTORS_TABLE, chunk_id)
        return self._deserialize(chunk_id, raw) if raw is not None else None

    def remove_file(self, file_path: str) -> int:
        """Delete every chunk of ``file_path``.

        Only keys are inspected, so entries that no longer deserialize are
        removed too. Chunks of a file named ``"{file_path}:..."`` are kept.

        Returns:
            Number of entries deleted
        """
        keys = [
            key
            for key in self.db.keys(VECTORS_TABLE, prefix=f"{file_path}:")
            if file_path_from_chunk_id(key) == file_path
        ]
        removed = self.db.delete_many(VECTORS_TABLE, keys)
        if removed:
            logger.debug(f"Removed {removed} vectors for {file_path}")
        return removed

    def get_file_vectors(self, file_path: str) -> List[VectorEntry]:
        """Return the entries of one file ordered by chunk index."""
        entries = []
        for key, raw in self.db.iter_items(VECTORS_TABLE, prefix=f"{file_path}:"):
            # Prefix "a:" also matches keys of a file named "a:b".
            if file_path_from_chunk_id(key) != file_path:
                continue
            entry = self._deserialize(key, raw)
            if entry is not None:
                entries.append(entry)
        return sorted(entries, key=lambda e: e.chunk_index)

    def get_file_paths(self) -> List[str]:
        """Distinct file paths with at least one stored chunk, read from keys only."""
        return sorted({file_path_from_chunk_id(key) for key in self.db.keys(VECTORS_TABLE)})

    def get_file_count(self) -> int:
        return len(self.get_file_paths())

    def get_chunk_count(self) -> int:
        return self.db.count(VECTORS_TABLE)

    def clear(self) -> None:
        self.db.clear()
        logger.info("Cleared vector store")

    def search(
        self, query_vector: Sequence[float], k: int
    ) -> List[Tuple[VectorEntry, float]]:
        """Return the ``k`` most similar entries, most similar first."""
        return self._top_k(query_vector, k, allowed=None)

    def search_scoped(
        self, query_vector: Sequence[float], k: int, allowed: Collection[str]
    ) -> List[Tuple[VectorEntry, float]]:
        """Like ``search``, restricted to entries whose file path is in ``allowed``.

        The file path is read from the key, so entries of other files are never
        deserialized.
        """
        return self._top_k(query_vector, k, allowed=set(allowed))

    def _top_k(
        self,
        query_vector: Sequence[float],
        k: int,
        allowed: Optional[Collection[str]],
    ) -> List[Tuple[VectorEntry, float]]:
        if k <= 0:
            return []

        # Min-heap of (similarity, tiebreak, entry); never more than k+1 items.
        heap: List[Tuple[float, int, VectorEntry]] = []
        counter = itertools.count()
        for key, raw in self.db.iter_items(VECTORS_TABLE):
            if allowed is not None and file_path_from_chunk_id(key) not in allowed:
                continue
            entry = self._deserialize(key, raw)
            if entry is None:
                continue
            similarity = cosine_similarity(query_vector, entry.embedding)
            heapq.heappush(heap, (similarity, next(counter), entry))
            if len(heap) > k:
                heapq.heappop(heap)

        heap.sort(key=lambda item: (-item[0], item[1]))
        return [(entry, similarity) for similarity, _, entry in heap]

    def _deserialize(self, key: str, raw: str) -> Optional[VectorEntry]:
        try:
            return VectorEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Skipping unreadable vector entry {key}: {e}")
            return None
