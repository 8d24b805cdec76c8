"""
Example ``wrapper_class`` plugin for E5 instruction-tuned models served from an
OpenAI-compatible endpoint.

Enable it in config.toml:

    [embedding_model]
    provider = "openai_endpoint"
    model_name = "intfloat/multilingual-e5-large-instruct"
    endpoint_url = "http://localhost:8080/v1"
    api_key = "none"
    wrapper_class = "plugins.e5_instruct_wrapper.E5InstructWrapper"
"""

import json
import logging
from typing import Any, List

from components.embedding_system import OpenAIEndpointEmbedding
from shared.config import EmbeddingModelConfig

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION = "Given a search query, retrieve the most relevant note passages."


class E5InstructWrapper(OpenAIEndpointEmbedding):
    """
    E5-instruct models embed passages as-is and expect queries in the
    ``Instruct: ...\\nQuery: ...`` format instead of a plain prefix.
    """

    def __init__(self, config: EmbeddingModelConfig, **kwargs: Any):
        super().__init__(
            model_name=config.model_name,
            endpoint_url=config.endpoint_url or "",
            api_key=config.api_key or "",
            query_prefix="",
            passage_prefix="",
            **kwargs,
        )

    def _get_query_embedding(self, query: str) -> List[float]:
        """
        A query may be a JSON object ``{"instruction": ..., "query": ...}`` to
        override the default instruction.
        """
        final_query = query
        instruction = DEFAULT_INSTRUCTION

        try:
            payload = json.loads(query)
            if (
                isinstance(payload, dict)
                and "instruction" in payload
                and "query" in payload
            ):
                instruction = payload["instruction"]
                final_query = payload["query"]
                logger.debug(f"Using custom instruction for embedding: '{instruction}'")
        except (json.JSONDecodeError, TypeError):
            logger.debug("No custom instruction found, using default.")

        formatted_query = f"Instruct: {instruction}\nQuery: {final_query}"
        return super()._get_query_embedding(formatted_query)
