"""
Ranking pipeline: raw query text in, filtered, boosted and per-file capped
results out.
"""

import logging
from collections import defaultdict
from pathlib import PurePosixPath
from typing import Collection, Dict, List, Optional, Tuple

from components.embedding_system import EmbeddingModel
from components.vector_store.vector_store import VectorEntry, VectorStore
from shared.config import SearchConfig
from shared.errors import ModelError

logger = logging.getLogger(__name__)

FILE_FILTER_PREFIX = "file:"
_FILTER_TRIM_CHARS = "\"',;."

SearchResult = Tuple[VectorEntry, float]


def parse_file_filter(raw: str) -> Tuple[Optional[str], str]:
    """Pull ``file:<name>`` tokens out of a query.

    Quotes and trailing ``,;.`` are trimmed from the name and the last filter
    token wins. A bare ``file:`` stays part of the query.

    Returns:
        The filter (or None) and the remaining tokens joined by single spaces.
    """
    file_filter: Optional[str] = None
    parts: List[str] = []
    for token in raw.split():
        if token.startswith(FILE_FILTER_PREFIX) and len(token) > len(FILE_FILTER_PREFIX):
            file_filter = token[len(FILE_FILTER_PREFIX):].strip(_FILTER_TRIM_CHARS)
            continue
        parts.append(token)
    return file_filter, " ".join(parts)


def path_matches_filter(file_path: str, file_filter: str) -> bool:
    """Case-insensitive substring match against the full path or the basename."""
    needle = file_filter.lower()
    if needle in file_path.lower():
        return True
    return needle in PurePosixPath(file_path).name.lower()


def apply_lexical_boost(
    results: List[SearchResult], query: str, config: SearchConfig
) -> List[SearchResult]:
    """Add fixed bonuses where the query text appears verbatim, capped at 1.0."""
    needle = query.lower()
    if not needle:
        return results
    boosted = []
    for entry, similarity in results:
        bonus = 0.0
        if needle in entry.file_path.lower():
            bonus += config.boost_path
        if needle in entry.context.lower():
            bonus += config.boost_context
        if needle in entry.text.lower():
            bonus += config.boost_text
        boosted.append((entry, min(similarity + bonus, 1.0)))
    return boosted


def cap_per_file(results: List[SearchResult], max_per_file: int) -> List[SearchResult]:
    """Keep each file's best ``max_per_file`` results."""
    by_file: Dict[str, List[SearchResult]] = defaultdict(list)
    for result in results:
        by_file[result[0].file_path].append(result)

    capped: List[SearchResult] = []
    for group in by_file.values():
        group.sort(key=lambda result: result[1], reverse=True)
        capped.extend(group[:max_per_file])
    return capped


def perform_search(
    raw_query: str,
    model: EmbeddingModel,
    vector_store: VectorStore,
    scope: Optional[Collection[str]] = None,
    config: Optional[SearchConfig] = None,
) -> List[SearchResult]:
    """
    Run a query through the whole ranking pipeline.

    Args:
        raw_query: User input, optionally holding a ``file:<name>`` filter token.
        model: Embeds the query in query mode.
        vector_store: Source of candidates.
        scope: Relative file paths to restrict the search to. None or empty
            searches everything.
        config: Candidate limits, boosts and caps.

    Returns:
        ``(entry, boosted_similarity)`` pairs, best first.

    Raises:
        ModelError: The model produced no vector for the query.
    """
    config = config or SearchConfig()
    file_filter, semantic_query = parse_file_filter(raw_query)
    if not semantic_query.strip():
        return []

    vectors = model.embed_queries([semantic_query])
    if not vectors:
        raise ModelError("Failed to generate query embedding")
    query_vector = vectors[0]

    if scope:
        results = vector_store.search_scoped(
            query_vector, config.scoped_candidates_limit, scope
        )
    else:
        results = vector_store.search(query_vector, config.candidates_limit)
    logger.debug(f"Fetched {len(results)} candidates for '{semantic_query}'")

    if file_filter is not None:
        results = [r for r in results if path_matches_filter(r[0].file_path, file_filter)]

    results = apply_lexical_boost(results, semantic_query, config)
    results = cap_per_file(results, config.max_chunks_per_file)
    results.sort(key=lambda result: result[1], reverse=True)
    return results[: config.max_results]
