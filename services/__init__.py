"""External services used by the cognition engine."""

from services.embeddings import EmbeddingService, simple_embed
from services.errors import MalformedResponse, ServiceFailure, ServiceUnavailable
from services.llm import LLMService, MockLLMService

__all__ = [
    "EmbeddingService",
    "LLMService",
    "MalformedResponse",
    "MockLLMService",
    "ServiceFailure",
    "ServiceUnavailable",
    "simple_embed",
]
