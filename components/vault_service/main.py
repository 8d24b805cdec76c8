"""
This service encapsulates the business logic for building and querying the
notes index. It is decoupled from the command line and serves as the single
entry point for every index operation.

Responsibilities:
- Full indexing passes over a directory, with model-change invalidation.
- Searching the index.
- Reporting index status.
- Running the file watcher after an initial pass.
"""

import logging
from pathlib import Path
from typing import Any, Collection, Dict, List, Optional, Union

from components.document_processing import discover_files
from components.embedding_system import EmbeddingModel, create_embedding_model
from components.file_watcher.file_watcher import VaultWatcher
from components.indexer import FileIndexer
from components.search_engine import SearchResult, perform_search
from components.vector_store.vector_store import VectorStore
from shared.config import Config
from shared.errors import ConfigError, ModelError
from shared.state_tracker import StateStore

from .models import IndexReport

logger = logging.getLogger(__name__)


class VaultService:
    """The central service for all index-related business logic."""

    def __init__(self, config: Config, embedding_model: Optional[EmbeddingModel] = None):
        """
        Initializes the VaultService.

        Args:
            config: The application's configuration object.
            embedding_model: A ready model to use instead of building one from
                the configuration on first use.
        """
        self.config = config
        self._embedding_model = embedding_model

    @property
    def model_identity(self) -> str:
        return self.config.embedding_model.identity()

    def get_embedding_model(self) -> EmbeddingModel:
        """
        Return the embedding model, creating it on first use.

        Raises:
            ConfigError: The embedding settings name an unknown provider, lack
                endpoint settings or point at a wrapper class that cannot load.
            ModelError: The provider backend is not installed or the model
                failed to load.
        """
        if self._embedding_model is None:
            logger.info(f"Loading embedding model {self.model_identity}")
            try:
                self._embedding_model = create_embedding_model(
                    self.config.embedding_model, self.config.get_models_dir()
                )
            except ValueError as e:
                raise ConfigError(f"Invalid embedding model settings: {e}") from e
            except Exception as e:
                raise ModelError(
                    f"Could not load embedding model {self.model_identity}: {e}"
                ) from e
        return self._embedding_model

    def index_directory(
        self, root: Union[str, Path], force: bool = False
    ) -> IndexReport:
        """
        Index every note under ``root``, skipping files unchanged since the last pass.

        When the index was built by a different embedding model, both stores
        are cleared before anything is written. Files indexed earlier that are
        no longer found under ``root`` lose their vectors and state.

        Args:
            root: Directory to index.
            force: Reindex every file regardless of the ledger.

        Returns:
            Counters describing the pass.

        Raises:
            ConfigError: The data directory is not initialized or root is invalid.
            StoreLockedError: Another process is writing to the index.
        """
        self.config.require_initialized()
        files = discover_files(
            root,
            self.config.indexing.extensions,
            respect_gitignore=self.config.indexing.respect_gitignore,
        )
        model = self.get_embedding_model()
        report = IndexReport()

        with StateStore(self.config.get_state_db_path()) as state_store, VectorStore(
            self.config.get_vector_db_path()
        ) as vector_store:
            stored_identity = state_store.get_model_marker()
            if stored_identity != self.model_identity:
                if stored_identity is not None:
                    logger.warning(
                        f"Embedding model changed from {stored_identity} to "
                        f"{self.model_identity}; rebuilding the index."
                    )
                vector_store.clear()
                state_store.clear()
                report.model_reset = stored_identity is not None

            indexer = FileIndexer(state_store, vector_store, model, self.config.indexing)
            discovered_paths = {discovered.relative_path for discovered in files}
            stale = (
                set(state_store.file_paths()) | set(vector_store.get_file_paths())
            ) - discovered_paths
            for relative_path in sorted(stale):
                indexer.remove_file(relative_path)
                report.removed += 1

            for discovered in files:
                try:
                    chunks = indexer.index_file(
                        discovered.path, discovered.relative_path, force=force
                    )
                except Exception as e:
                    logger.error(f"Failed to index {discovered.relative_path}: {e}")
                    report.failed += 1
                    report.failed_files.append(discovered.relative_path)
                    continue
                if chunks is None:
                    report.skipped += 1
                else:
                    report.processed += 1
                    report.chunks_indexed += chunks

            state_store.set_model_marker(self.model_identity)

        logger.info(
            f"Indexing finished: {report.processed} indexed, {report.skipped} "
            f"unchanged, {report.removed} removed, {report.failed} failed, "
            f"{report.chunks_indexed} chunks"
        )
        return report

    def search(
        self, query: str, scope: Optional[Collection[str]] = None
    ) -> List[SearchResult]:
        """
        Run a query against the index without taking the writer lock.

        Args:
            query: Raw query text, optionally with a ``file:<name>`` filter.
            scope: Relative paths to restrict the search to.

        Returns:
            ``(entry, score)`` pairs, best first.
        """
        self.config.require_initialized()
        with VectorStore(self.config.get_vector_db_path(), read_only=True) as vector_store:
            return perform_search(
                query,
                self.get_embedding_model(),
                vector_store,
                scope=scope,
                config=self.config.search,
            )

    def status(self) -> Dict[str, Any]:
        """Summarize what is indexed and where it lives."""
        status: Dict[str, Any] = {
            "initialized": self.config.is_initialized(),
            "base_dir": str(self.config.get_base_dir()),
            "configured_model": self.model_identity,
            "indexed_model": None,
            "files": 0,
            "chunks": 0,
        }
        if not status["initialized"]:
            return status

        if self.config.get_vector_db_path().exists():
            with VectorStore(
                self.config.get_vector_db_path(), read_only=True
            ) as vector_store:
                status["files"] = vector_store.get_file_count()
                status["chunks"] = vector_store.get_chunk_count()
        if self.config.get_state_db_path().exists():
            with StateStore(self.config.get_state_db_path(), read_only=True) as state_store:
                status["indexed_model"] = state_store.get_model_marker()
        return status

    def watch(self, root: Union[str, Path]) -> VaultWatcher:
        """
        Bring the index up to date, then follow changes under ``root`` until stopped.

        Returns:
            The watcher, already stopped.
        """
        self.index_directory(root)
        watcher = VaultWatcher(
            self.config, root, embedding_model_factory=self.get_embedding_model
        )
        watcher.watch()
        return watcher
