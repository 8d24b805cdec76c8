"""File watcher for incremental index updates."""

import logging
import os
import queue
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from components.document_processing import is_notes_file
from components.embedding_system import EmbeddingModel, create_embedding_model
from components.indexer import FileIndexer
from components.vault_service.models import BatchReport
from components.vector_store.vector_store import VectorStore
from shared.config import Config
from shared.errors import ConfigError
from shared.state_tracker import StateStore
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

Batch = Optional[List[str]]


class VaultEventHandler(FileSystemEventHandler):
    """Collects file system events and hands out debounced batches of paths.

    Every path is held back until it has been quiet for ``debounce_seconds``;
    all paths that became quiet together are put on ``batches`` as one list.
    ``stop()`` puts ``None`` on the queue to close it.
    """

    def __init__(
        self,
        batches: "queue.Queue[Batch]",
        extensions: Iterable[str],
        debounce_seconds: float = 2.0,
        poll_interval: float = 0.5,
    ):
        super().__init__()
        self.batches = batches
        self.extensions = list(extensions)
        self.debounce_seconds = debounce_seconds
        self.poll_interval = poll_interval

        # path -> time of the most recent event
        self._pending_operations: Dict[str, float] = {}
        self._operation_lock = threading.Lock()

        self._stop_debounce = threading.Event()
        self._debounce_thread = threading.Thread(
            target=self._debounce_worker, daemon=True
        )
        self._debounce_thread.start()

    def on_created(self, event: Any) -> None:
        """A new note is indexed after its quiet period."""
        self._schedule_event_path(event, event.src_path)

    def on_modified(self, event: Any) -> None:
        """Editors fire several of these per save; they collapse into one change."""
        self._schedule_event_path(event, event.src_path)

    def on_deleted(self, event: Any) -> None:
        """The path is removed from the index once the batch sees it missing."""
        self._schedule_event_path(event, event.src_path)

    def on_moved(self, event: Any) -> None:
        """A rename is a deletion of the old path and a creation of the new one."""
        self._schedule_event_path(event, event.src_path)
        self._schedule_event_path(event, event.dest_path)

    def _schedule_event_path(self, event: Any, raw_path: Union[str, bytes]) -> None:
        if event.is_directory:
            return
        file_path = os.fsdecode(raw_path)
        if is_notes_file(file_path, self.extensions):
            self.schedule(file_path)

    def schedule(self, file_path: str) -> None:
        """Record a change; a later change to the same path restarts its quiet period."""
        with self._operation_lock:
            self._pending_operations[file_path] = time.time()

    def _take_ready_paths(self) -> List[str]:
        current_time = time.time()
        with self._operation_lock:
            ready = [
                path
                for path, timestamp in self._pending_operations.items()
                if current_time - timestamp >= self.debounce_seconds
            ]
            for path in ready:
                del self._pending_operations[path]
        return sorted(ready)

    def _debounce_worker(self) -> None:
        """Worker thread that delivers debounced batches."""
        while not self._stop_debounce.is_set():
            try:
                ready = self._take_ready_paths()
                if ready:
                    logger.debug(f"Debounced batch of {len(ready)} changed files")
                    self.batches.put(ready)
            except Exception as e:
                logger.error(f"Error in debounce worker: {e}")
            self._stop_debounce.wait(self.poll_interval)

    def stop(self) -> None:
        """Stop the debounce worker thread and close the batch queue."""
        self._stop_debounce.set()
        if self._debounce_thread.is_alive():
            self._debounce_thread.join(timeout=5)
        self.batches.put(None)


class VaultWatcher:
    """Watches a notes directory and keeps the index current as files change."""

    def __init__(
        self,
        config: Config,
        root: Union[str, Path],
        embedding_model_factory: Optional[Callable[[], EmbeddingModel]] = None,
    ):
        self.config = config
        self.root = Path(root).expanduser().resolve()
        self.embedding_model_factory = embedding_model_factory or (
            lambda: create_embedding_model(
                config.embedding_model, config.get_models_dir()
            )
        )

        self.batches: "queue.Queue[Batch]" = queue.Queue()
        self.observer: Any = None
        self.event_handler: Optional[VaultEventHandler] = None

    def start(self) -> None:
        """Start watching the directory for changes.

        Raises:
            ConfigError: The directory does not exist.
            OSError: The OS-level watch could not be created.
        """
        if not self.root.is_dir():
            raise ConfigError(f"Directory does not exist: {self.root}")

        logger.info(f"Starting file watcher for: {self.root}")

        self.event_handler = VaultEventHandler(
            self.batches,
            self.config.indexing.extensions,
            debounce_seconds=self.config.watcher.debounce_seconds,
        )

        observer = Observer()
        observer.schedule(self.event_handler, str(self.root), recursive=True)
        observer.start()
        self.observer = observer

        logger.info(f"Watching {self.root} for changes")

    def watch(self) -> None:
        """Process batches until the watcher is stopped.

        Blocks the calling thread. The observer is always stopped on exit,
        including on KeyboardInterrupt.
        """
        if not self.config.watcher.enabled:
            logger.info("File watching is disabled in configuration")
            return

        try:
            self.start()
            while True:
                batch = self.batches.get()
                if batch is None:
                    break
                report = self.process_batch(batch)
                logger.info(
                    f"Batch done: {report.indexed} indexed, {report.removed} removed, "
                    f"{report.skipped} skipped, {report.failed} failed"
                )
        finally:
            self.stop()

    def process_batch(self, paths: Iterable[Union[str, Path]]) -> BatchReport:
        """Apply one batch of changed paths to the stores.

        The stores and the embedding model are opened once for the whole batch.
        A failure on one file is logged and counted; it never stops the batch.

        Raises:
            StoreLockedError, StorageError: A store could not be opened.
        """
        report = BatchReport()
        with StateStore(self.config.get_state_db_path()) as state_store, VectorStore(
            self.config.get_vector_db_path()
        ) as vector_store:
            try:
                model = self.embedding_model_factory()
            except Exception as e:
                logger.error(
                    f"Failed to initialize embedding model: {e}. "
                    "Skipping file indexing in this batch."
                )
                return report

            indexer = FileIndexer(
                state_store, vector_store, model, self.config.indexing
            )
            for raw_path in paths:
                self._process_path(Path(raw_path), indexer, report)
        return report

    def _process_path(
        self, path: Path, indexer: FileIndexer, report: BatchReport
    ) -> None:
        if not is_notes_file(path, self.config.indexing.extensions):
            report.skipped += 1
            return
        try:
            relative_path = path.absolute().relative_to(self.root).as_posix()
        except ValueError:
            logger.warning(f"Ignoring change outside {self.root}: {path}")
            report.skipped += 1
            return

        try:
            if not path.exists():
                indexer.remove_file(relative_path)
                report.removed += 1
            elif indexer.index_file(path, relative_path) is None:
                report.skipped += 1
            else:
                report.indexed += 1
        except Exception as e:
            logger.error(f"Error processing {relative_path}: {e}")
            report.failed += 1

    def stop(self) -> None:
        """Stop watching the directory."""
        if self.observer:
            logger.info("Stopping file watcher")
            self.observer.stop()
            self.observer.join()
            self.observer = None

        if self.event_handler:
            self.event_handler.stop()
            self.event_handler = None

        logger.info("File watcher stopped")

    def is_running(self) -> bool:
        """True while the observer thread is alive."""
        return self.observer is not None and self.observer.is_alive()
