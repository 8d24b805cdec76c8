"""Indexer component: the single-file index and removal path."""

from .indexer import FileIndexer

__all__ = ["FileIndexer"]
