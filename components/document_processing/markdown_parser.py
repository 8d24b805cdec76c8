"""Markdown parsing and structure-aware chunking."""

import datetime
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import mistune
import yaml
from pydantic import BaseModel, Field

from shared.errors import ParseError

logger = logging.getLogger(__name__)

MIN_CHUNK_SIZE = 50
MAX_CHUNK_SIZE = 500
TARGET_CHUNK_SIZE = 300

CONTEXT_SEPARATOR = " > "

_FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)
_SENTENCE_END_RE = re.compile(r"[.!?](?=\s|$)")

_markdown = mistune.create_markdown(renderer="ast")


class DocumentMetadata(BaseModel):
    """Metadata read from a document's YAML frontmatter."""

    title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created: Optional[str] = None
    modified: Optional[str] = None
    custom: Dict[str, str] = Field(default_factory=dict)


class TextChunk(BaseModel):
    """A span of document text tagged with its header breadcrumb."""

    text: str
    context: str
    chunk_index: int
    start_line: int
    end_line: int


class ParsedDocument(BaseModel):
    title: str
    metadata: DocumentMetadata
    header_hierarchy: List[str]
    chunks: List[TextChunk]


def build_context(headers: List[str]) -> str:
    return CONTEXT_SEPARATOR.join(headers)


def _scalar_to_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _parse_tags(raw: Any) -> List[str]:
    if isinstance(raw, list):
        values = [_scalar_to_str(item) for item in raw]
    elif isinstance(raw, str):
        values = raw.split(",")
    else:
        return []
    return [value.strip() for value in values if value and value.strip()]


def parse_frontmatter(block: Optional[str]) -> DocumentMetadata:
    """Map a YAML frontmatter block onto DocumentMetadata.

    Malformed YAML, or YAML that is not a mapping, yields empty metadata.
    """
    metadata = DocumentMetadata()
    if not block:
        return metadata

    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as e:
        logger.debug(f"Ignoring unparseable frontmatter: {e}")
        return metadata
    if not isinstance(data, dict):
        return metadata

    for key, value in data.items():
        if not isinstance(key, str):
            continue
        if key == "title":
            if isinstance(value, str):
                metadata.title = value
        elif key == "tags":
            metadata.tags = _parse_tags(value)
        elif key in ("created", "modified"):
            setattr(metadata, key, _scalar_to_str(value))
        else:
            text = _scalar_to_str(value)
            if text is not None:
                metadata.custom[key] = text
    return metadata


def extract_frontmatter(content: str) -> Tuple[Optional[str], str, int]:
    """Split content into (frontmatter block, body, number of lines the block used)."""
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return None, content, 0
    consumed = match.group(0)
    return match.group(1), content[match.end():], consumed.count("\n")


def split_into_sentences(text: str) -> List[str]:
    """Split after ``.``, ``!`` or ``?`` when followed by whitespace or end of text."""
    sentences = []
    start = 0
    for match in _SENTENCE_END_RE.finditer(text):
        sentences.append(text[start:match.end()])
        start = match.end()
    if start < len(text):
        sentences.append(text[start:])
    return [s.strip() for s in sentences if s.strip()]


def split_text(
    text: str,
    context: str,
    start_line: int,
    end_line: int,
    first_index: int,
) -> List[TextChunk]:
    """Greedily pack sentences into chunks bounded by MAX_CHUNK_SIZE.

    A chunk is emitted once the next sentence would push it past the maximum,
    provided it already holds MIN_CHUNK_SIZE characters. An undersized
    remainder is appended to the last chunk produced here, or emitted on its
    own when there is none.
    """
    chunks: List[TextChunk] = []
    index = first_index
    current = ""
    current_start = start_line

    for sentence in split_into_sentences(text.strip()):
        would_exceed_max = bool(current) and len(current) + len(sentence) + 1 > MAX_CHUNK_SIZE
        reached_target = (
            bool(current)
            and len(current) >= TARGET_CHUNK_SIZE
            and len(current) + len(sentence) + 1 > MAX_CHUNK_SIZE
        )
        if (would_exceed_max or reached_target) and len(current) >= MIN_CHUNK_SIZE:
            chunks.append(
                TextChunk(
                    text=current.strip(),
                    context=context,
                    chunk_index=index,
                    start_line=current_start,
                    end_line=end_line,
                )
            )
            index += 1
            current = ""
            current_start = end_line
        current = f"{current} {sentence}" if current else sentence

    remainder = current.strip()
    if not remainder:
        return chunks
    if len(current) < MIN_CHUNK_SIZE and chunks:
        last = chunks[-1]
        last.text = f"{last.text} {remainder}"
        last.end_line = end_line
    else:
        chunks.append(
            TextChunk(
                text=remainder,
                context=context,
                chunk_index=index,
                start_line=current_start,
                end_line=end_line,
            )
        )
    return chunks


class _StructureWalker:
    """Walks a mistune AST, tracking the header stack, pending text and line numbers."""

    def __init__(self, first_line: int):
        self.title: Optional[str] = None
        self.header_stack: List[str] = []
        self.chunks: List[TextChunk] = []
        self.buffer = ""
        self.line = first_line
        self.chunk_start = first_line

    def walk(self, tokens: List[Dict[str, Any]]) -> None:
        for token in tokens:
            self._visit(token)

    def finish(self) -> None:
        self._flush(self.line)

    def _flush(self, end_line: int) -> None:
        """Emit the pending buffer, splitting it at sentence boundaries when oversized."""
        text = self.buffer.strip()
        self.buffer = ""
        if not text:
            return
        context = build_context(self.header_stack)
        if len(text) > MAX_CHUNK_SIZE:
            self.chunks.extend(
                split_text(text, context, self.chunk_start, end_line, len(self.chunks))
            )
        else:
            self.chunks.append(
                TextChunk(
                    text=text,
                    context=context,
                    chunk_index=len(self.chunks),
                    start_line=self.chunk_start,
                    end_line=max(end_line, self.chunk_start),
                )
            )

    def _visit(self, token: Dict[str, Any]) -> None:
        token_type = token.get("type", "")

        if token_type == "heading":
            self._flush(self.line)
            level = int(token.get("attrs", {}).get("level", 1))
            heading = _inline_text(token.get("children", [])).strip()
            self.line += heading.count("\n")
            self.header_stack = self.header_stack[: max(level - 1, 0)] + [heading]
            if level == 1 and self.title is None:
                self.title = heading
            self.line += 1
            self.chunk_start = self.line

        elif token_type in ("text", "codespan"):
            raw = str(token.get("raw", ""))
            self.buffer += raw + " "
            self.line += raw.count("\n")

        elif token_type in ("softbreak", "linebreak"):
            self.buffer += "\n"
            self.line += 1

        elif token_type == "paragraph":
            self.walk(token.get("children", []))
            self.line += 1
            if len(self.buffer) > MAX_CHUNK_SIZE:
                self.chunks.extend(
                    split_text(
                        self.buffer,
                        build_context(self.header_stack),
                        self.chunk_start,
                        self.line - 1,
                        len(self.chunks),
                    )
                )
                self.buffer = ""
                self.chunk_start = self.line

        elif token_type == "block_code":
            raw = str(token.get("raw", ""))
            self.buffer += raw + " "
            self.line += raw.count("\n") + 1

        elif token_type == "list_item":
            self.walk(token.get("children", []))
            self.line += 1

        elif token_type in ("block_html", "inline_html"):
            pass

        else:
            # Containers (lists, block quotes, links, images, emphasis...)
            self.walk(token.get("children", []) or [])


def _inline_text(tokens: List[Dict[str, Any]]) -> str:
    parts = []
    for token in tokens:
        if token.get("type") in ("text", "codespan"):
            parts.append(str(token.get("raw", "")))
        elif token.get("children"):
            parts.append(_inline_text(token["children"]))
    return "".join(parts)


def parse_markdown(content: str, name_hint: Union[str, Path] = "") -> ParsedDocument:
    """Parse markdown text into title, metadata and context-tagged chunks.

    Args:
        content: The raw document text, frontmatter included.
        name_hint: File name or path; its stem is the title of last resort.

    Returns:
        The parsed document. Malformed markdown never raises.
    """
    block, body, frontmatter_lines = extract_frontmatter(content)
    metadata = parse_frontmatter(block)

    walker = _StructureWalker(first_line=1 + frontmatter_lines)
    tokens = _markdown(body)
    if isinstance(tokens, list):
        walker.walk(tokens)
    walker.finish()

    title = metadata.title or walker.title or Path(str(name_hint)).stem or "Untitled"
    return ParsedDocument(
        title=title,
        metadata=metadata,
        header_hierarchy=walker.header_stack,
        chunks=walker.chunks,
    )


def parse_markdown_file(path: Union[str, Path]) -> ParsedDocument:
    """Read a UTF-8 file from disk and parse it.

    Raises:
        ParseError: The file is missing, unreadable or not valid UTF-8.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"Cannot read {path}: {e}") from e
    return parse_markdown(content, path)
