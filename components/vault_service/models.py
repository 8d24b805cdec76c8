"""Data models reported by the vault-search service."""

from typing import List

from pydantic import BaseModel, Field


class IndexReport(BaseModel):
    """Outcome of a full indexing pass over a directory."""

    processed: int = Field(default=0, description="Files parsed, embedded and stored")
    skipped: int = Field(default=0, description="Files unchanged since the last index")
    failed: int = Field(default=0, description="Files that raised and were left stale")
    chunks_indexed: int = Field(default=0, description="Chunks written in this pass")
    removed: int = Field(
        default=0, description="Files dropped from the index because they are gone"
    )
    model_reset: bool = Field(
        default=False,
        description="Whether a model change forced both stores to be cleared first",
    )
    failed_files: List[str] = Field(default_factory=list)


class BatchReport(BaseModel):
    """Outcome of one debounced batch of filesystem changes."""

    indexed: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0
