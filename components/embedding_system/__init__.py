"""Embedding system component.

Wraps embedding providers behind llama-index ``BaseEmbedding`` subclasses that
frame passages and queries with distinct prefixes.
"""

from .embedding_factory import (
    EmbeddingModel,
    OpenAIEndpointEmbedding,
    PrefixedEmbedding,
    SentenceTransformersEmbedding,
    create_embedding_model,
)

__all__ = [
    "EmbeddingModel",
    "PrefixedEmbedding",
    "SentenceTransformersEmbedding",
    "OpenAIEndpointEmbedding",
    "create_embedding_model",
]
