"""Tests for configuration loading and validation."""

import pytest
from pydantic import ValidationError
from shared.config import Config, EmbeddingModelConfig, PathsConfig, load_config
from shared.errors import ConfigError


def test_defaults():
    """Test the built-in defaults used when no config file exists."""
    config = Config()

    assert config.search.candidates_limit == 100
    assert config.search.scoped_candidates_limit == 200
    assert config.search.max_results == 20
    assert config.search.max_chunks_per_file == 5
    assert config.watcher.debounce_seconds == 2.0
    assert "md" in config.indexing.extensions
    assert config.embedding_model.identity() == "sentence_transformers:BAAI/bge-small-en-v1.5"


def test_derived_paths(tmp_path):
    config = Config(paths=PathsConfig(base_dir=str(tmp_path / "base")))

    assert config.get_vector_db_path() == tmp_path / "base" / "database" / "vectors.sqlite3"
    assert config.get_state_db_path() == tmp_path / "base" / "state" / "state.sqlite3"
    assert config.get_models_dir() == tmp_path / "base" / "models"


def test_require_initialized(tmp_path):
    config = Config(paths=PathsConfig(base_dir=str(tmp_path / "base")))

    assert config.is_initialized() is False
    with pytest.raises(ConfigError, match="init"):
        config.require_initialized()

    config.init_directories()
    assert config.is_initialized() is True
    config.require_initialized()


def test_load_config_from_file_with_overrides(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        """
[paths]
base_dir = "/tmp/somewhere"

[search]
max_results = 7

[embedding_model]
provider = "openai_endpoint"
model_name = "text-embedding-3-small"
endpoint_url = "http://localhost:8080/v1"
api_key = "secret"
"""
    )

    config = load_config(
        str(config_file), overrides={"search": {"max_chunks_per_file": 2}}
    )

    assert config.paths.base_dir == "/tmp/somewhere"
    assert config.search.max_results == 7
    assert config.search.max_chunks_per_file == 2
    assert config.embedding_model.identity() == "openai_endpoint:text-embedding-3-small"


def test_load_config_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "missing.toml"))


def test_load_config_invalid_toml(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text("[search\nmax_results = ")
    with pytest.raises(ConfigError):
        load_config(str(config_file))


def test_load_config_invalid_values(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text('[search]\nmax_results = "many"\n')
    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(str(config_file))


def test_identity_tracks_provider_and_model():
    a = EmbeddingModelConfig(model_name="model-a")
    b = EmbeddingModelConfig(model_name="model-b")
    assert a.identity() != b.identity()


@pytest.mark.parametrize(
    "field", ["candidates_limit", "scoped_candidates_limit", "max_results", "max_chunks_per_file"]
)
def test_search_limits_must_be_positive(tmp_path, field):
    config_file = tmp_path / "config.toml"
    config_file.write_text(f"[search]\n{field} = 0\n")
    with pytest.raises(ConfigError, match=field):
        load_config(str(config_file))


def test_search_limit_assignment_is_validated():
    config = Config()
    with pytest.raises(ValidationError):
        config.search.max_results = -1
    assert config.search.max_results == 20
