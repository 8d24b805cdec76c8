"""
This module defines the StateStore class, the persistent change-detection
ledger. For every indexed file it remembers the modification time and content
hash seen at the last successful index, so an indexing pass can skip files
whose content has not changed. It also records which embedding model built
the index.
"""

import hashlib
import logging
import os
import time
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ValidationError

from shared.kv_store import KeyValueDatabase

logger = logging.getLogger(__name__)

FILE_STATE_TABLE = "file_state"
METADATA_TABLE = "metadata"
MODEL_MARKER_KEY = "model"


class FileState(BaseModel):
    """What the ledger knows about one file at its last successful index."""

    last_modified: int
    content_hash: str
    indexed_at: int


def hash_file_content(file_path: Union[str, Path]) -> str:
    """Hashes the content of a single file."""
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        while chunk := f.read(8192):
            sha256.update(chunk)
    return sha256.hexdigest()


def get_file_modified_time(file_path: Union[str, Path]) -> int:
    """Return the file's modification time in whole unix seconds."""
    return int(os.stat(file_path).st_mtime)


class StateStore:
    """
    Persistent map from relative file path to FileState, plus the model marker.

    The marker lives in its own table so no file path can ever shadow it.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Opens (creating if needed) the state database.

        Args:
            db_path: Path of the sqlite file holding the ledger.
            read_only: Open without the writer lock; mutations raise StorageError.

        Raises:
            StoreLockedError: Another process holds the store open for writing.
            StorageError: The database cannot be opened.
        """
        self.db = KeyValueDatabase(
            Path(db_path),
            tables=(FILE_STATE_TABLE, METADATA_TABLE),
            label="state store",
            read_only=read_only,
        )
        logger.debug(f"Opened state store at {db_path} (read_only={read_only})")

    def __enter__(self) -> "StateStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.db.close()

    def get_state(self, path: str) -> Optional[FileState]:
        raw = self.db.get(FILE_STATE_TABLE, path)
        if raw is None:
            return None
        try:
            return FileState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable state for {path}: {e}")
            return None

    def update_state(self, path: str, last_modified: int, content_hash: str) -> None:
        """Record a successful index of ``path``, stamping ``indexed_at`` with now."""
        state = FileState(
            last_modified=int(last_modified),
            content_hash=content_hash,
            indexed_at=int(time.time()),
        )
        self.db.put(FILE_STATE_TABLE, path, state.model_dump_json())

    def remove(self, path: str) -> None:
        self.db.delete(FILE_STATE_TABLE, path)

    def has_changed(self, path: str, last_modified: int, content_hash: str) -> bool:
        """
        Decide whether a file needs (re)indexing.

        A file with no recorded state is always changed. Otherwise it is changed
        when either the modification time or the content hash differs.
        """
        state = self.get_state(path)
        if state is None:
            return True
        return state.last_modified != int(last_modified) or state.content_hash != content_hash

    def get_model_marker(self) -> Optional[str]:
        return self.db.get(METADATA_TABLE, MODEL_MARKER_KEY)

    def set_model_marker(self, identity: str) -> None:
        self.db.put(METADATA_TABLE, MODEL_MARKER_KEY, identity)

    def clear(self) -> None:
        """Forget every file state and the model marker in one transaction."""
        self.db.clear()
        logger.info("Cleared state store")

    def file_paths(self) -> List[str]:
        """Relative paths of every file with a recorded state."""
        return self.db.keys(FILE_STATE_TABLE)

    def count(self) -> int:
        return self.db.count(FILE_STATE_TABLE)
