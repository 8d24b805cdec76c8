"""Search engine component."""

from .search_engine import (
    SearchResult,
    apply_lexical_boost,
    cap_per_file,
    parse_file_filter,
    path_matches_filter,
    perform_search,
)

__all__ = [
    "SearchResult",
    "apply_lexical_boost",
    "cap_per_file",
    "parse_file_filter",
    "path_matches_filter",
    "perform_search",
]
