import importlib
import logging
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, cast

from llama_index.core.embeddings import BaseEmbedding
from pydantic import Field, PrivateAttr

from shared.config import EmbeddingModelConfig
from shared.errors import ModelError

logger = logging.getLogger(__name__)


class EmbeddingModel(Protocol):
    """What the indexer and search engine need from a model."""

    def embed_passages(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed document chunks, preserving input order."""
        ...

    def embed_queries(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed search queries, preserving input order."""
        ...


class PrefixedEmbedding(BaseEmbedding):
    """Base for embeddings that frame passages and queries differently.

    Subclasses implement ``_encode``; this class prepends ``passage_prefix`` to
    indexed text and ``query_prefix`` to queries so both populations stay
    comparable under cosine similarity.
    """

    model_config = {"arbitrary_types_allowed": True}

    query_prefix: str = Field(default="query: ")
    passage_prefix: str = Field(default="passage: ")

    def _encode(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError

    def embed_passages(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed chunk texts; the whole batch fails with ModelError on any error."""
        if not texts:
            return []
        try:
            vectors = self.get_text_embedding_batch(list(texts))
        except Exception as e:
            raise ModelError(f"Embedding {len(texts)} passages failed: {e}") from e
        return self._checked(vectors, len(texts))

    def embed_queries(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            vectors = [self.get_query_embedding(text) for text in texts]
        except Exception as e:
            raise ModelError(f"Embedding {len(texts)} queries failed: {e}") from e
        return self._checked(vectors, len(texts))

    def _checked(self, vectors: List[List[float]], expected: int) -> List[List[float]]:
        if len(vectors) != expected:
            raise ModelError(
                f"Embedding model returned {len(vectors)} vectors for {expected} inputs"
            )
        return [list(map(float, vector)) for vector in vectors]

    def _get_query_embedding(self, query: str) -> List[float]:
        """Frame a query with ``query_prefix`` and encode it."""
        return self._encode([f"{self.query_prefix}{query}"])[0]

    def _get_text_embedding(self, text: str) -> List[float]:
        """Frame a passage with ``passage_prefix`` and encode it."""
        return self._encode([f"{self.passage_prefix}{text}"])[0]

    def _get_text_embeddings(self, texts: List[str]) -> List[List[float]]:
        return self._encode([f"{self.passage_prefix}{text}" for text in texts])

    async def _aget_query_embedding(self, query: str) -> List[float]:
        """llama-index requires an async variant; encoding stays synchronous."""
        return self._get_query_embedding(query)


class SentenceTransformersEmbedding(PrefixedEmbedding):
    """Local sentence-transformers model producing normalized vectors."""

    _sentence_model: Any = PrivateAttr(default=None)

    def __init__(
        self, model_name: str, cache_folder: Optional[str] = None, **kwargs: Any
    ):
        """Initialize SentenceTransformers model.

        Args:
            model_name: Name of the SentenceTransformers model
            cache_folder: Where downloaded model weights are kept
            **kwargs: Additional arguments for BaseEmbedding
        """
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "sentence-transformers is required for this provider. "
                "Install with: pip install sentence-transformers"
            ) from e

        _model = SentenceTransformer(model_name, cache_folder=cache_folder)
        logger.info(f"Loaded SentenceTransformers model: {model_name}")

        super().__init__(model_name=model_name, **kwargs)
        self._sentence_model = _model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        return cast(
            List[List[float]],
            self._sentence_model.encode(texts, normalize_embeddings=True).tolist(),
        )


class OpenAIEndpointEmbedding(PrefixedEmbedding):
    """Any server speaking the OpenAI embeddings API."""

    _client: Any = PrivateAttr(default=None)

    def __init__(self, model_name: str, endpoint_url: str, api_key: str, **kwargs: Any):
        """Initialize OpenAI-compatible embedding client.

        Args:
            model_name: Name of the embedding model
            endpoint_url: API endpoint URL
            api_key: API key for authentication
            **kwargs: Additional arguments for BaseEmbedding
        """
        try:
            from openai import OpenAI
        except ImportError as e:
            raise ImportError(
                "openai is required for this provider. Install with: pip install openai"
            ) from e

        client = OpenAI(api_key=api_key, base_url=endpoint_url)
        logger.info(
            f"Initialized OpenAI-compatible client for {model_name} at {endpoint_url}"
        )

        super().__init__(model_name=model_name, **kwargs)
        self._client = client

    def _encode(self, texts: List[str]) -> List[List[float]]:
        response = self._client.embeddings.create(model=self.model_name, input=texts)
        return [item.embedding for item in response.data]


def create_embedding_model(
    config: EmbeddingModelConfig, models_dir: Optional[Path] = None
) -> PrefixedEmbedding:
    """Build the embedding model described by ``config``.

    Weights for local models are cached under ``models_dir``. A configured
    ``wrapper_class`` takes precedence over ``provider``; it is called with the
    whole ``EmbeddingModelConfig``.

    Raises:
        ValueError: Unknown provider, missing endpoint settings or a wrapper
            class that cannot be imported.
    """
    prefixes = {
        "query_prefix": config.query_prefix,
        "passage_prefix": config.passage_prefix,
    }

    if config.wrapper_class:
        try:
            module_path, class_name = config.wrapper_class.rsplit(".", 1)
            module = importlib.import_module(module_path)
            wrapper_class = getattr(module, class_name)
        except (ImportError, AttributeError, ValueError) as e:
            logger.error(f"Failed to load wrapper class '{config.wrapper_class}': {e}")
            raise ValueError(
                f"Could not load wrapper class '{config.wrapper_class}'"
            ) from e
        return cast(PrefixedEmbedding, wrapper_class(config))

    provider = config.provider.lower()

    if provider == "sentence_transformers":
        return SentenceTransformersEmbedding(
            config.model_name,
            cache_folder=str(models_dir) if models_dir else None,
            **prefixes,
        )

    elif provider == "openai_endpoint":
        if not config.endpoint_url or not config.api_key:
            raise ValueError(
                "endpoint_url and api_key are required for openai_endpoint provider"
            )
        return OpenAIEndpointEmbedding(
            config.model_name, config.endpoint_url, config.api_key, **prefixes
        )

    else:
        raise ValueError(
            f"Unsupported embedding provider: {provider}. "
            f"Supported providers: sentence_transformers, openai_endpoint"
        )
