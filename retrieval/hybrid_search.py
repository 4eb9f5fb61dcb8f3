"""
Hybrid search combining keyword matching and vector similarity.

This module provides:
- Keyword search via substring matching, scored locally
- Vector search via pgvector nearest neighbours
- Weighted score fusion with union-by-id / max-score merging
"""

import asyncio
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass

from llm.embeddings import EmbeddingClient
from retrieval.errors import SearchFailed
from retrieval.similarity import clamp_score
from schemas.config import HybridSearchConfig
from schemas.models import Chunk, MatchType, SearchFilters, SearchRequest, SearchResponse, SearchResult
from storage.base import ChunkStore

logger = logging.getLogger(__name__)


@dataclass
class LaneHit:
    """A chunk returned by a single search lane with its lane score."""

    chunk: Chunk
    score: float


@dataclass
class _MergedHit:
    chunk: Chunk
    keyword_score: float = 0.0
    vector_score: float = 0.0
    from_keyword: bool = False
    from_vector: bool = False


def split_terms(query: str) -> list[str]:
    """Split a query into whitespace-delimited terms."""
    return [word for word in query.strip().split() if word]


def score_keyword_match(query: str, text: str) -> float:
    """
    Score a chunk against a query by term occurrences.

    score = 0.7 * occurrences / (2 * words) + 0.3 * min(occurrences / 10, 1),
    clamped to [0, 1], where ``occurrences`` is the total number of
    case-insensitive matches of every query word.
    """
    words = split_terms(query.lower())
    if not words:
        return 0.0

    text_lower = text.lower()
    occurrences = sum(len(re.findall(re.escape(word), text_lower)) for word in words)

    word_match_ratio = occurrences / (len(words) * 2)
    occurrence_score = min(occurrences / 10, 1.0)
    return clamp_score(word_match_ratio * 0.7 + occurrence_score * 0.3)


def resolve_content_types(filters: SearchFilters | None) -> list[str] | None:
    """
    Normalize the content-type filter.

    ``"all"`` or an absent filter disables content-type filtering.
    """
    if filters is None or filters.content_type is None:
        return None

    raw = filters.content_type
    values = [raw] if isinstance(raw, str) else list(raw)
    normalized: list[str] = []
    for value in values:
        value = value.strip()
        if not value:
            continue
        if value.lower() == "all":
            return None
        if value not in normalized:
            normalized.append(value)

    return normalized or None


def merge_results(
    keyword_hits: Sequence[LaneHit],
    vector_hits: Sequence[LaneHit],
    config: HybridSearchConfig,
) -> list[SearchResult]:
    """
    Merge keyword and vector hits into hybrid results.

    A chunk found by both lanes keeps the max score seen on each side and
    is marked ``hybrid``. The output depends only on the two hit lists,
    never on which lane finished first.

    Args:
        keyword_hits: Keyword lane output
        vector_hits: Vector lane output
        config: Fusion weights

    Returns:
        Merged results sorted by fused score, descending
    """
    merged: dict[str, _MergedHit] = {}

    for hit in keyword_hits:
        entry = merged.setdefault(hit.chunk.id, _MergedHit(chunk=hit.chunk))
        entry.keyword_score = max(entry.keyword_score, hit.score) if entry.from_keyword else hit.score
        entry.from_keyword = True

    for hit in vector_hits:
        entry = merged.setdefault(hit.chunk.id, _MergedHit(chunk=hit.chunk))
        entry.vector_score = max(entry.vector_score, hit.score) if entry.from_vector else hit.score
        entry.from_vector = True

    results = []
    for entry in merged.values():
        score = entry.keyword_score * config.keyword_weight + entry.vector_score * config.vector_weight

        match_type: MatchType
        if entry.from_keyword and entry.from_vector:
            match_type = "hybrid"
        elif entry.from_keyword:
            match_type = "keyword"
        else:
            match_type = "vector"

        results.append(SearchResult(chunk=entry.chunk, score=clamp_score(score), match_type=match_type))

    results.sort(key=lambda r: r.score, reverse=True)
    return results


def filter_by_documents(
    results: list[SearchResult],
    document_ids: Sequence[str] | None,
) -> list[SearchResult]:
    """Keep only results whose chunk belongs to one of ``document_ids``."""
    if not document_ids:
        return results
    allowed = set(document_ids)
    return [result for result in results if result.chunk.document_id in allowed]


class HybridSearcher:
    """
    Hybrid search combining keyword and vector lanes.

    Both lanes run concurrently; their outputs are merged with a weighted
    sum (default 30% keyword, 70% vector). Any lane failure fails the
    whole search with ``SearchFailed``.
    """

    def __init__(
        self,
        store: ChunkStore,
        embedding_client: EmbeddingClient,
        config: HybridSearchConfig | None = None,
    ):
        """
        Initialize the hybrid searcher.

        Args:
            store: Chunk store to query
            embedding_client: Client used to embed the query
            config: Fusion configuration
        """
        self.store = store
        self.embedding_client = embedding_client
        self.config = config or HybridSearchConfig()

    async def search(self, request: SearchRequest) -> SearchResponse:
        """
        Execute hybrid search for a request.

        Args:
            request: Search request

        Returns:
            SearchResponse with at most ``request.k`` results

        Raises:
            SearchFailed: If either lane fails
        """
        if not request.query or not request.query.strip():
            return SearchResponse(chunks=[], total_count=0, query_time=0.0)

        start_time = time.perf_counter()
        filters = request.filters

        results = await self.retrieve_candidates(
            request.query,
            request.tenant_id,
            content_types=resolve_content_types(filters),
            document_ids=filters.document_ids if filters else None,
        )
        results = results[: request.k]

        return SearchResponse(
            chunks=results,
            total_count=len(results),
            query_time=(time.perf_counter() - start_time) * 1000,
        )

    async def retrieve_candidates(
        self,
        query: str,
        tenant_id: str,
        content_types: Sequence[str] | None = None,
        document_ids: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        """
        Run both lanes and return every merged result, best first.

        Args:
            query: Query text
            tenant_id: Tenant to search
            content_types: Optional content type restriction
            document_ids: Optional document restriction (post-filter)

        Returns:
            Merged results sorted by score, not truncated

        Raises:
            SearchFailed: If either lane fails
        """
        if not query or not query.strip():
            return []

        keyword_outcome, vector_outcome = await asyncio.gather(
            self._keyword_search(query, tenant_id, content_types),
            self._vector_search(query, tenant_id, content_types),
            return_exceptions=True,
        )

        for lane, outcome in (("keyword", keyword_outcome), ("vector", vector_outcome)):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Hybrid search {lane} lane failed for tenant {tenant_id}: {outcome}"
                )
                raise SearchFailed(str(outcome), cause=outcome) from outcome

        merged = merge_results(keyword_outcome, vector_outcome, self.config)
        merged = filter_by_documents(merged, document_ids)

        logger.info(
            f"Hybrid search: {len(keyword_outcome)} keyword + "
            f"{len(vector_outcome)} vector -> {len(merged)} merged"
        )

        return merged

    async def _keyword_search(
        self,
        query: str,
        tenant_id: str,
        content_types: Sequence[str] | None,
    ) -> list[LaneHit]:
        """
        Perform keyword search and score the fetched rows locally.

        Args:
            query: Search query
            tenant_id: Tenant filter
            content_types: Optional content type filter

        Returns:
            Up to ``keyword_limit`` hits, best first
        """
        normalized = query.strip().lower()
        terms = split_terms(normalized)
        if not terms:
            return []

        limit = self.config.keyword_limit
        chunks = await self.store.find_by_tenant(
            tenant_id,
            terms,
            content_types=content_types,
            limit=limit * 2,
        )

        hits = [LaneHit(chunk=chunk, score=score_keyword_match(normalized, chunk.text)) for chunk in chunks]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def _vector_search(
        self,
        query: str,
        tenant_id: str,
        content_types: Sequence[str] | None,
    ) -> list[LaneHit]:
        """
        Perform vector similarity search.

        Args:
            query: Search query
            tenant_id: Tenant filter
            content_types: Optional content type filter

        Returns:
            Nearest neighbours with similarity clamped to [0, 1]
        """
        query_embedding = await self.embedding_client.embed_single(query)

        neighbors = await self.store.nearest_neighbors(
            query_embedding,
            tenant_id,
            content_types=content_types,
            k=self.config.vector_limit,
            match_threshold=self.config.match_threshold,
        )

        return [LaneHit(chunk=chunk, score=clamp_score(similarity)) for chunk, similarity in neighbors]
