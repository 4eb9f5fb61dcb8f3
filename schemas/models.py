"""
Data models for the retrieval backend.

This module defines Pydantic models for chunks, search requests and
results, user/conversation context, and processed queries.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

MatchType = Literal["keyword", "vector", "hybrid"]

QueryIntent = Literal["factual", "how-to", "comparison", "definition", "list", "unknown"]


class Chunk(BaseModel):
    """A stored passage of a source document, owned by the chunk store."""

    id: str = Field(...)
    tenant_id: str = Field(...)
    document_id: str = Field(...)
    text: str = Field(...)
    metadata: dict = Field(default_factory=dict)
    content_type: str = Field(...)
    embedding: list[float] | None = Field(default=None, description="Vector embedding")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True


class UserContext(BaseModel):
    """User context for personalising query processing."""

    role: str | None = Field(default=None)
    level: Literal["junior", "mid", "senior", "lead", "executive"] | None = Field(default=None)
    target_job: str | None = Field(default=None)
    industry: str | None = Field(default=None)
    expertise: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    language: str | None = Field(default=None)

    @property
    def fingerprint(self) -> str:
        """Role/level key used to partition the query-processing cache."""
        return f"{self.role or ''}_{self.level or ''}"


class ChatMessage(BaseModel):
    """A single turn of conversation history."""

    id: str | None = Field(default=None)
    role: Literal["user", "assistant"] = Field(...)
    content: str = Field(...)
    timestamp: datetime | None = Field(default=None)


class SearchFilters(BaseModel):
    """Optional restrictions applied to a search."""

    content_type: str | list[str] | None = Field(
        default=None,
        description='Content type or types to search; "all" disables the filter',
    )
    document_ids: list[str] | None = Field(default=None)


class SearchRequest(BaseModel):
    """A tenant-scoped search request."""

    tenant_id: str = Field(..., min_length=1)
    query: str = Field(...)
    k: int = Field(default=8, ge=1)
    user_context: UserContext | None = Field(default=None)
    filters: SearchFilters | None = Field(default=None)


class SearchResult(BaseModel):
    """A chunk with its relevance score and the lane(s) that found it."""

    chunk: Chunk = Field(...)
    score: float = Field(..., description="Relevance score in [0, 1]")
    match_type: MatchType = Field(..., description="Lane or lanes that found the chunk")


class SearchResponse(BaseModel):
    """Ranked passages handed to the answer generator."""

    chunks: list[SearchResult] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    query_time: float = Field(default=0.0, ge=0.0, description="Elapsed milliseconds")


class QueryUnderstanding(BaseModel):
    """Structured classification of a query."""

    intent: QueryIntent = Field(default="unknown")
    entities: list[str] = Field(default_factory=list)
    key_terms: list[str] = Field(default_factory=list)
    required_content_types: list[str] | None = Field(default=None)


class ProcessedQuery(BaseModel):
    """A query with its expansion, rewrites and understanding."""

    original_query: str = Field(...)
    expanded_query: str | None = Field(default=None)
    rewritten_queries: list[str] = Field(default_factory=list)
    understanding: QueryUnderstanding | None = Field(default=None)

    class Config:
        frozen = True
