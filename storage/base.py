"""Chunk store contract consumed by the retrieval pipeline."""

from collections.abc import Sequence
from typing import Protocol

from schemas.models import Chunk


class ChunkStore(Protocol):
    """Tenant-scoped, content-type-filterable repository of passages."""

    async def find_by_tenant(
        self,
        tenant_id: str,
        terms: Sequence[str],
        content_types: Sequence[str] | None = None,
        limit: int = 40,
    ) -> list[Chunk]:
        """Return chunks whose text contains every term, in order."""
        ...

    async def nearest_neighbors(
        self,
        query_embedding: Sequence[float],
        tenant_id: str,
        content_types: Sequence[str] | None = None,
        k: int = 20,
        match_threshold: float = 0.0,
    ) -> list[tuple[Chunk, float]]:
        """Return the top-k chunks by cosine similarity."""
        ...
