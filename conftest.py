"""Test fixtures and configuration."""

import hashlib
import logging
import re
import sys
from pathlib import Path
from typing import List

import pytest
from pydantic import PrivateAttr

from components.embedding_system import PrefixedEmbedding
from shared.config import Config, PathsConfig, WatcherConfig

FAKE_DIMENSION = 32
_WORD_RE = re.compile(r"[a-z0-9]+")


# --- This function enables logging visibility during tests ---
def pytest_configure(config):
    """Configure logging to be visible for all tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(levelname)s:%(name)s:%(message)s",
        stream=sys.stdout,
    )


class FakeEmbeddingModel(PrefixedEmbedding):
    """Deterministic bag-of-words embedding; texts containing EXPLODE fail."""

    _calls: List[str] = PrivateAttr(default_factory=list)

    def __init__(self, **kwargs):
        super().__init__(model_name="fake-model", **kwargs)

    @property
    def calls(self) -> List[str]:
        return self._calls

    def _encode(self, texts: List[str]) -> List[List[float]]:
        vectors = []
        for text in texts:
            self._calls.append(text)
            if "EXPLODE" in text:
                raise RuntimeError("model exploded")
            for prefix in (self.passage_prefix, self.query_prefix):
                if text.startswith(prefix):
                    text = text[len(prefix):]
                    break
            vector = [0.0] * FAKE_DIMENSION
            for word in _WORD_RE.findall(text.lower()):
                bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16)
                vector[bucket % FAKE_DIMENSION] += 1.0
            vectors.append(vector)
        return vectors


@pytest.fixture
def fake_embedding_model() -> FakeEmbeddingModel:
    return FakeEmbeddingModel()


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """An initialized configuration rooted in a temporary directory."""
    config = Config(
        paths=PathsConfig(base_dir=str(tmp_path / "data")),
        watcher=WatcherConfig(debounce_seconds=0.1),
    )
    config.init_directories()
    return config


@pytest.fixture
def notes_dir(tmp_path: Path) -> Path:
    """A small notes directory with nested folders and an ignored file."""
    root = tmp_path / "notes"
    (root / "projects").mkdir(parents=True)
    (root / "build").mkdir()

    (root / "gardening.md").write_text(
        """---
title: Gardening Log
tags: plants, soil
---

# Gardening

Tomatoes need full sun and regular watering during the summer months.

## Soil

Compost improves soil structure and helps retain moisture for roots.
""",
        encoding="utf-8",
    )
    (root / "projects" / "rust-cli.md").write_text(
        """# Rust CLI

The command line tool parses arguments with clap and prints results.

## Testing

Integration tests run the binary against fixture directories.
""",
        encoding="utf-8",
    )
    (root / "todo.txt").write_text(
        "Buy more compost for the garden beds before spring arrives.\n",
        encoding="utf-8",
    )
    (root / "image.png").write_bytes(b"\x89PNG\r\n")
    (root / "build" / "generated.md").write_text("# Generated\n\nIgnore me.\n")
    (root / ".gitignore").write_text("build/\n", encoding="utf-8")
    return root
