"""
Embedded key/value tables backed by a single SQLite file.

Both persistent stores (file state and vectors) are string-keyed tables whose
values are serialized records. This module owns the parts they share:
create-if-missing, the single-writer lock, transactions, prefix range scans
on the raw key and translation of sqlite errors into the storage errors of
``shared.errors``.
"""

import contextlib
import fcntl
import logging
import sqlite3
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Optional, Sequence, Tuple

from shared.errors import ConfigError, StorageError, StoreLockedError

logger = logging.getLogger(__name__)


def prefix_upper_bound(prefix: str) -> str:
    """Smallest string greater than every string starting with ``prefix``."""
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class KeyValueDatabase:
    """A SQLite file holding one or more ``(key TEXT PRIMARY KEY, value TEXT)`` tables.

    A writable database takes an exclusive, non-blocking ``flock`` on a sidecar
    ``<file>.lock`` for its whole lifetime, so a second writer fails fast with
    ``StoreLockedError``. Read-only handles skip the lock and see committed
    data through SQLite's WAL isolation.
    """

    def __init__(
        self,
        db_path: Path,
        tables: Sequence[str],
        label: str,
        read_only: bool = False,
    ):
        self.db_path = Path(db_path)
        self.tables = tuple(tables)
        self.label = label
        self.read_only = read_only
        self._lock_file: Optional[IO[str]] = None
        self._conn: Optional[sqlite3.Connection] = None

        if read_only:
            if not self.db_path.exists():
                raise ConfigError(
                    f"No {label} found at {self.db_path}. "
                    "Index a directory first with 'vault-search index'."
                )
            self._conn = self._connect(f"{self.db_path.resolve().as_uri()}?mode=ro")
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._acquire_writer_lock()
        try:
            self._conn = self._connect(str(self.db_path))
            with self._translate_errors("initialize tables"):
                self._conn.execute("PRAGMA journal_mode=WAL")
                with self._conn:
                    for table in self.tables:
                        self._conn.execute(
                            f"CREATE TABLE IF NOT EXISTS {table} "
                            "(key TEXT PRIMARY KEY, value TEXT NOT NULL)"
                        )
        except Exception:
            self.close()
            raise

    def _connect(self, target: str) -> sqlite3.Connection:
        try:
            return sqlite3.connect(target, timeout=5.0, uri=self.read_only)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open {self.label} at {self.db_path}: {e}") from e

    def _acquire_writer_lock(self) -> None:
        lock_path = self.db_path.with_name(self.db_path.name + ".lock")
        lock_file = open(lock_path, "a", encoding="utf-8")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            raise StoreLockedError(self._locked_message()) from None
        self._lock_file = lock_file

    def _locked_message(self) -> str:
        return (
            f"The {self.label} at {self.db_path} is locked. Another vault-search "
            "process may be running. Close other instances and try again."
        )

    @contextlib.contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.OperationalError as e:
            if "locked" in str(e).lower() or "busy" in str(e).lower():
                raise StoreLockedError(self._locked_message()) from e
            raise StorageError(f"Failed to {action} in {self.label}: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Failed to {action} in {self.label}: {e}") from e

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"The {self.label} at {self.db_path} is closed.")
        return self._conn

    def _check_writable(self) -> None:
        if self.read_only:
            raise StorageError(f"The {self.label} was opened read-only.")

    def get(self, table: str, key: str) -> Optional[str]:
        with self._translate_errors(f"read key {key!r}"):
            row = self.connection.execute(
                f"SELECT value FROM {table} WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def put_many(self, table: str, items: Iterable[Tuple[str, str]]) -> None:
        """Upsert all items in one transaction."""
        self._check_writable()
        with self._translate_errors("write entries"):
            with self.connection:
                self.connection.executemany(
                    f"INSERT OR REPLACE INTO {table} (key, value) VALUES (?, ?)",
                    list(items),
                )

    def put(self, table: str, key: str, value: str) -> None:
        self.put_many(table, [(key, value)])

    def delete(self, table: str, key: str) -> None:
        self._check_writable()
        with self._translate_errors(f"delete key {key!r}"):
            with self.connection:
                self.connection.execute(f"DELETE FROM {table} WHERE key = ?", (key,))

    def delete_many(self, table: str, keys: Iterable[str]) -> int:
        """Delete the given keys in one transaction; returns how many existed."""
        self._check_writable()
        removed = 0
        with self._translate_errors(f"delete keys from {table}"):
            with self.connection:
                for key in keys:
                    cursor = self.connection.execute(
                        f"DELETE FROM {table} WHERE key = ?", (key,)
                    )
                    removed += cursor.rowcount
        return removed

    def clear(self, tables: Optional[Sequence[str]] = None) -> None:
        """Delete every row of the given tables (all tables by default) atomically."""
        self._check_writable()
        with self._translate_errors("clear tables"):
            with self.connection:
                for table in tables or self.tables:
                    self.connection.execute(f"DELETE FROM {table}")

    def iter_items(
        self, table: str, prefix: Optional[str] = None
    ) -> Iterator[Tuple[str, str]]:
        """Yield ``(key, value)`` pairs in key order, optionally limited to a key prefix."""
        if prefix:
            query = f"SELECT key, value FROM {table} WHERE key >= ? AND key < ? ORDER BY key"
            params: Tuple[str, ...] = (prefix, prefix_upper_bound(prefix))
        else:
            query = f"SELECT key, value FROM {table} ORDER BY key"
            params = ()
        with self._translate_errors("scan entries"):
            yield from self.connection.execute(query, params)

    def keys(self, table: str, prefix: Optional[str] = None) -> List[str]:
        if prefix:
            query = f"SELECT key FROM {table} WHERE key >= ? AND key < ? ORDER BY key"
            params: Tuple[str, ...] = (prefix, prefix_upper_bound(prefix))
        else:
            query = f"SELECT key FROM {table} ORDER BY key"
            params = ()
        with self._translate_errors("scan keys"):
            return [row[0] for row in self.connection.execute(query, params)]

    def count(self, table: str) -> int:
        with self._translate_errors("count entries"):
            return int(self.connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._lock_file is not None:
            fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
            self._lock_file.close()
            self._lock_file = None
