"""
Pydantic schemas for the retrieval backend.

This module contains all data models and configuration schemas used throughout
the application, including chunk/search models and per-stage configuration.
"""

from schemas.config import (
    AppSettings,
    EmbeddingConfig,
    HybridSearchConfig,
    LLMConfig,
    QueryProcessingConfig,
    RerankingConfig,
    RetrievalConfig,
    get_settings,
)
from schemas.models import (
    ChatMessage,
    Chunk,
    ProcessedQuery,
    QueryUnderstanding,
    SearchFilters,
    SearchRequest,
    SearchResponse,
    SearchResult,
    UserContext,
)

__all__ = [
    # Config
    "AppSettings",
    "EmbeddingConfig",
    "HybridSearchConfig",
    "LLMConfig",
    "QueryProcessingConfig",
    "RerankingConfig",
    "RetrievalConfig",
    "get_settings",
    # Models
    "Chunk",
    "ChatMessage",
    "UserContext",
    "SearchFilters",
    "SearchRequest",
    "SearchResult",
    "SearchResponse",
    "QueryUnderstanding",
    "ProcessedQuery",
]
