"""Local-first semantic search over a directory of notes."""

__version__ = "0.1.0"
