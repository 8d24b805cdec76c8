"""Configuration management for vault-search."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shared.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = "~/.vault-search"
CONFIG_FILE_NAME = "config.toml"


class PathsConfig(BaseModel):
    """Configuration for file paths."""

    base_dir: str = Field(
        default=DEFAULT_BASE_DIR,
        description="Directory holding the vector database, state store and models",
    )


class IndexingConfig(BaseModel):
    """Configuration for document indexing."""

    extensions: List[str] = Field(
        default_factory=lambda: ["md", "markdown", "mdown", "mkd", "mkdn", "txt"],
        description="File extensions treated as notes (case-insensitive)",
    )
    embed_context: bool = Field(
        default=True,
        description="Prepend the header breadcrumb to chunk text before embedding",
    )
    respect_gitignore: bool = Field(
        default=True, description="Skip files matched by .gitignore rules"
    )


class SearchConfig(BaseModel):
    """Configuration for the ranking pipeline."""

    model_config = ConfigDict(validate_assignment=True)

    candidates_limit: int = Field(
        default=100, ge=1, description="Candidates fetched for an unscoped search"
    )
    scoped_candidates_limit: int = Field(
        default=200, ge=1, description="Candidates fetched for a scoped search"
    )
    max_results: int = Field(
        default=20, ge=1, description="Results returned to the caller"
    )
    max_chunks_per_file: int = Field(
        default=5, ge=1, description="Maximum results kept from a single file"
    )
    boost_path: float = Field(default=0.05, description="Bonus for a path match")
    boost_context: float = Field(
        default=0.10, description="Bonus for a header breadcrumb match"
    )
    boost_text: float = Field(default=0.15, description="Bonus for a chunk text match")


class WatcherConfig(BaseModel):
    """Configuration for file watching."""

    enabled: bool = Field(default=True, description="Enable file watching")
    debounce_seconds: float = Field(
        default=2.0, description="Quiet period before a changed file is processed"
    )


class EmbeddingModelConfig(BaseModel):
    """Configuration for embedding models."""

    provider: str = Field(
        default="sentence_transformers",
        description="Embedding provider: sentence_transformers or openai_endpoint",
    )
    model_name: str = Field(
        default="BAAI/bge-small-en-v1.5", description="Model name or identifier"
    )
    endpoint_url: Optional[str] = Field(
        default=None, description="API endpoint URL for openai_endpoint provider"
    )
    api_key: Optional[str] = Field(
        default=None, description="API key for openai_endpoint provider"
    )
    wrapper_class: Optional[str] = Field(
        default=None, description="Dotted path of a custom embedding wrapper class"
    )
    query_prefix: str = Field(
        default="query: ", description="Framing prepended to search queries"
    )
    passage_prefix: str = Field(
        default="passage: ", description="Framing prepended to indexed chunks"
    )

    def identity(self) -> str:
        """Return the marker recorded alongside an index built with this model."""
        return f"{self.provider}:{self.model_name}"


class Config(BaseModel):
    """Main configuration model."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    embedding_model: EmbeddingModelConfig = Field(default_factory=EmbeddingModelConfig)

    def get_base_dir(self) -> Path:
        """Get the data directory as an absolute Path."""
        return Path(self.paths.base_dir).expanduser().resolve()

    def get_database_dir(self) -> Path:
        return self.get_base_dir() / "database"

    def get_models_dir(self) -> Path:
        return self.get_base_dir() / "models"

    def get_vector_db_path(self) -> Path:
        return self.get_database_dir() / "vectors.sqlite3"

    def get_state_db_path(self) -> Path:
        return self.get_base_dir() / "state" / "state.sqlite3"

    def init_directories(self) -> None:
        """Create the data directories if they do not exist yet."""
        for directory in (
            self.get_base_dir(),
            self.get_database_dir(),
            self.get_models_dir(),
            self.get_state_db_path().parent,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def is_initialized(self) -> bool:
        """Check whether init_directories has been run for this base directory."""
        return self.get_base_dir().exists() and self.get_database_dir().exists()

    def require_initialized(self) -> None:
        if not self.is_initialized():
            raise ConfigError(
                f"vault-search is not initialized at {self.get_base_dir()}. "
                "Run 'vault-search init' first."
            )


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Config:
    """Load the configuration, applying CLI overrides on top of the file values.

    An explicitly requested file must exist. When no path is given the default
    ``~/.vault-search/config.toml`` is used if present, otherwise defaults apply.
    """
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            logger.error(f"Config file not found at {path}. Aborting.")
            raise ConfigError(f"Configuration file not found: {path}")
    else:
        path = Path(DEFAULT_BASE_DIR).expanduser() / CONFIG_FILE_NAME

    config_data: Dict[str, Any] = {}
    if path.exists():
        logger.info(f"Loading config from: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                config_data = toml.load(f)
        except toml.TomlDecodeError as e:
            raise ConfigError(f"Invalid configuration file {path}: {e}") from e
    else:
        logger.debug(f"No config file at {path}, using defaults.")

    if overrides:
        config_data = _deep_merge_config(config_data, overrides)

    try:
        return Config(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _deep_merge_config(
    base: Dict[str, Any], override: Dict[str, Any]
) -> Dict[str, Any]:
    """Deep merge configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_config(result[key], value)
        else:
            result[key] = value

    return result
