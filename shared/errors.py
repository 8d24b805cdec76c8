"""Exception hierarchy shared by every vault-search component."""


class VaultSearchError(Exception):
    """Base class for all errors raised by vault-search."""


class ConfigError(VaultSearchError):
    """Raised for bad, missing or uninitialized paths and settings."""


class StorageError(VaultSearchError):
    """Raised when an embedded store cannot be opened, read or written."""


class StoreLockedError(StorageError):
    """Raised when another process already holds a store open for writing."""


class ParseError(VaultSearchError):
    """Raised when a document cannot be read. Malformed markdown is not an error."""


class ModelError(VaultSearchError):
    """Raised when the embedding model fails to produce vectors for a batch."""
