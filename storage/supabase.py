"""
Supabase storage client for chunk retrieval.

This module provides:
- Substring (ilike) search over chunk text, scoped to a tenant
- Vector similarity search via the pgvector ``match_chunks`` RPC
"""

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from supabase import Client, create_client

from schemas.config import get_settings
from schemas.models import Chunk

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A chunk store query failed."""


def escape_like(term: str) -> str:
    """
    Escape LIKE wildcards so query terms cannot widen the match.

    PostgREST rewrites ``*`` to ``%`` before the query reaches Postgres and
    offers no escape for it, so ``*`` becomes the single-character ``_``.
    """
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "_")


def build_like_pattern(terms: Sequence[str]) -> str:
    """Build a pattern matching every term, in order: ``%t1%t2%``."""
    return f"%{'%'.join(escape_like(term) for term in terms)}%"


def _parse_embedding(value: Any) -> list[float] | None:
    """pgvector columns arrive as ``"[0.1,0.2,...]"`` strings over PostgREST."""
    if value is None:
        return None
    if isinstance(value, str):
        value = json.loads(value)
    return [float(v) for v in value]


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def row_to_chunk(row: dict) -> Chunk:
    """Convert a ``chunks`` row to a Chunk model."""
    return Chunk(
        id=str(row["id"]),
        tenant_id=row["tenant_id"],
        document_id=str(row["document_id"]),
        text=row["chunk_text"],
        metadata=row.get("chunk_metadata") or {},
        content_type=row["content_type"],
        embedding=_parse_embedding(row.get("embedding")),
        created_at=_parse_timestamp(row["created_at"]),
    )


class SupabaseClient:
    """
    Supabase client wrapper for chunk store operations.

    Provides:
    - Keyword (substring) search
    - Nearest-neighbour search
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
    ):
        """
        Initialize the Supabase client.

        Args:
            url: Supabase project URL
            key: Supabase service key
        """
        settings = get_settings()
        self.url = url or settings.supabase_url
        self.key = key or settings.supabase_service_key

        if not self.url or not self.key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables"
            )

        self._client: Client | None = None

    @property
    def client(self) -> Client:
        """Lazy initialization of Supabase client."""
        if self._client is None:
            self._client = create_client(self.url, self.key)
            logger.info("Supabase client initialized")
        return self._client

    async def _execute(self, request: Any, operation: str) -> list[dict]:
        """Run a blocking PostgREST request in a worker thread."""
        try:
            result = await asyncio.to_thread(request.execute)
        except Exception as e:
            raise StoreError(f"{operation} failed: {e}") from e
        return result.data or []

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def find_by_tenant(
        self,
        tenant_id: str,
        terms: Sequence[str],
        content_types: Sequence[str] | None = None,
        limit: int = 40,
    ) -> list[Chunk]:
        """
        Find chunks whose text contains every term (case-insensitive, in order).

        Args:
            tenant_id: Tenant to search
            terms: Query terms
            content_types: Optional content type restriction
            limit: Maximum rows to fetch

        Returns:
            List of Chunk models
        """
        if not terms:
            return []

        request = (
            self.client.table("chunks")
            .select("*")
            .eq("tenant_id", tenant_id)
            .not_.is_("chunk_text", "null")
        )

        if content_types:
            request = request.in_("content_type", list(content_types))

        request = request.ilike("chunk_text", build_like_pattern(terms)).limit(limit)

        rows = await self._execute(request, "Keyword search")
        return [row_to_chunk(row) for row in rows]

    async def nearest_neighbors(
        self,
        query_embedding: Sequence[float],
        tenant_id: str,
        content_types: Sequence[str] | None = None,
        k: int = 20,
        match_threshold: float = 0.0,
    ) -> list[tuple[Chunk, float]]:
        """
        Find the nearest chunks by cosine similarity.

        Args:
            query_embedding: Query vector
            tenant_id: Tenant to search
            content_types: Optional content type restriction
            k: Number of neighbours
            match_threshold: Minimum similarity

        Returns:
            List of (Chunk, similarity) pairs, most similar first
        """
        params = {
            "query_embedding": list(query_embedding),
            "match_threshold": match_threshold,
            "match_count": k,
            "tenant_id_filter": tenant_id,
            "content_types": list(content_types) if content_types else None,
        }

        rows = await self._execute(self.client.rpc("match_chunks", params), "Vector search")
        return [(row_to_chunk(row), float(row.get("similarity") or 0.0)) for row in rows]


# Singleton instance
_client: SupabaseClient | None = None


def get_supabase_client() -> SupabaseClient:
    """Get or create the Supabase client singleton."""
    global _client
    if _client is None:
        _client = SupabaseClient()
    return _client
