"""Document processing component.

Finds note files under a directory and turns each one into a title, frontmatter
metadata and an ordered list of context-tagged chunks.
"""

from .discovery import DiscoveredFile, discover_files, is_notes_file
from .markdown_parser import (
    MAX_CHUNK_SIZE,
    MIN_CHUNK_SIZE,
    TARGET_CHUNK_SIZE,
    DocumentMetadata,
    ParsedDocument,
    TextChunk,
    parse_markdown,
    parse_markdown_file,
)

__all__ = [
    # Discovery
    "DiscoveredFile",
    "discover_files",
    "is_notes_file",
    # Parsing and chunking
    "DocumentMetadata",
    "ParsedDocument",
    "TextChunk",
    "parse_markdown",
    "parse_markdown_file",
    "MIN_CHUNK_SIZE",
    "MAX_CHUNK_SIZE",
    "TARGET_CHUNK_SIZE",
]
