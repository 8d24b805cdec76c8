"""
Per-file indexing shared by full directory passes and the file watcher.

A FileIndexer is built once per session (or watcher batch) around already
opened stores and an embedding model, then driven one file at a time.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from components.document_processing import parse_markdown_file
from components.embedding_system import EmbeddingModel
from components.vector_store.vector_store import VectorEntry, VectorStore
from shared.config import IndexingConfig
from shared.state_tracker import StateStore, get_file_modified_time, hash_file_content

logger = logging.getLogger(__name__)


class FileIndexer:
    """Keeps the vector store and the state ledger in step for single files."""

    def __init__(
        self,
        state_store: StateStore,
        vector_store: VectorStore,
        embedding_model: EmbeddingModel,
        indexing_config: Optional[IndexingConfig] = None,
    ):
        self.state_store = state_store
        self.vector_store = vector_store
        self.embedding_model = embedding_model
        self.indexing_config = indexing_config or IndexingConfig()

    def index_file(
        self, path: Union[str, Path], relative_path: str, force: bool = False
    ) -> Optional[int]:
        """
        Bring one file's vectors up to date.

        The state is updated only after the new vectors are stored, so a failure
        at any step leaves the file marked as changed for the next pass.

        Args:
            path: Absolute path of the file on disk.
            relative_path: The stable identifier used as the store key.
            force: Reindex even when mtime and hash match the ledger.

        Returns:
            The number of chunks stored, or None when the file was unchanged.

        Raises:
            ParseError, ModelError, StorageError, OSError: the file was not indexed.
        """
        path = Path(path)
        last_modified = get_file_modified_time(path)
        content_hash = hash_file_content(path)

        if not force and not self.state_store.has_changed(
            relative_path, last_modified, content_hash
        ):
            logger.debug(f"Unchanged, skipping: {relative_path}")
            return None

        document = parse_markdown_file(path)
        chunks = document.chunks
        if self.indexing_config.embed_context:
            texts = [
                f"{chunk.context}\n\n{chunk.text}" if chunk.context else chunk.text
                for chunk in chunks
            ]
        else:
            texts = [chunk.text for chunk in chunks]
        embeddings = self.embedding_model.embed_passages(texts)

        entries = [
            VectorEntry(
                file_path=relative_path,
                chunk_index=chunk.chunk_index,
                embedding=embedding,
                text=chunk.text,
                context=chunk.context,
                start_line=chunk.start_line,
                end_line=chunk.end_line,
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

        removed = self.vector_store.remove_file(relative_path)
        self.vector_store.insert_many(entries)
        self.state_store.update_state(relative_path, last_modified, content_hash)

        logger.info(
            f"Indexed {relative_path}: {len(entries)} chunks"
            + (f" (replaced {removed})" if removed else "")
        )
        return len(entries)

    def remove_file(self, relative_path: str) -> int:
        """Drop a file's vectors and its ledger entry; returns the vectors removed."""
        removed = self.vector_store.remove_file(relative_path)
        self.state_store.remove(relative_path)
        logger.info(f"Removed {relative_path} from index ({removed} chunks)")
        return removed
