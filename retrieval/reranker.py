"""
Re-ranking of hybrid search candidates.

This module provides:
- Embedding-based relevance scoring of the top candidates
- A per-query score cache (chunk id -> score)
- Maximal Marginal Relevance (MMR) selection for diversity

Re-ranking never raises: on any scoring failure it falls back to the
incoming order.
"""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from types import MappingProxyType

from llm.embeddings import EmbeddingClient
from retrieval.similarity import clamp_score, cosine_similarity
from schemas.config import RerankingConfig
from schemas.models import Chunk, SearchResult
from storage.cache import TTLCache

logger = logging.getLogger(__name__)

RerankCache = TTLCache[str, Mapping[str, float]]


def rerank_cache_key(query: str) -> str:
    return query.strip().lower()


def create_rerank_cache(config: RerankingConfig) -> RerankCache:
    """Build the re-ranking score cache for a given configuration."""
    return TTLCache(
        max_size=config.cache_max_size,
        ttl_seconds=config.cache_ttl_seconds,
        name="re-ranking cache",
    )


def chunk_similarity(a: Chunk, b: Chunk) -> float:
    """Cosine similarity of two chunks' stored embeddings (0 if either is missing)."""
    if not a.embedding or not b.embedding:
        return 0.0
    return cosine_similarity(a.embedding, b.embedding)


def maximal_marginal_relevance(
    results: Sequence[SearchResult],
    top_k: int,
    lambda_param: float = 0.5,
) -> list[SearchResult]:
    """
    Select a diverse subset with Maximal Marginal Relevance.

    The highest-scoring result is picked first. Each following pick
    maximizes ``lambda * relevance - (1 - lambda) * max_sim_to_selected``.

    Args:
        results: Scored candidates
        top_k: Number of results to select
        lambda_param: Relevance/diversity trade-off

    Returns:
        ``min(top_k, len(results))`` results in selection order
    """
    if not results or top_k < 1:
        return []

    remaining = sorted(results, key=lambda r: r.score, reverse=True)
    selected = [remaining.pop(0)]

    while len(selected) < top_k and remaining:
        best_index = 0
        best_score = float("-inf")

        for index, candidate in enumerate(remaining):
            max_similarity = max(chunk_similarity(candidate.chunk, chosen.chunk) for chosen in selected)
            mmr_score = lambda_param * candidate.score - (1 - lambda_param) * max_similarity
            if mmr_score > best_score:
                best_score = mmr_score
                best_index = index

        selected.append(remaining.pop(best_index))

    return selected


class Reranker:
    """
    Second-pass relevance scoring over a small candidate set.

    Relevance is the cosine similarity between the query embedding and
    each candidate's embedding (stored, or generated from its text).
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        config: RerankingConfig | None = None,
        cache: RerankCache | None = None,
    ):
        """
        Initialize the reranker.

        Args:
            embedding_client: Client used for query and chunk embeddings
            config: Re-ranking configuration
            cache: Shared score cache (created from config if omitted)
        """
        self.embedding_client = embedding_client
        self.config = config or RerankingConfig()
        self.cache = cache if cache is not None else create_rerank_cache(self.config)

    async def rerank(
        self,
        query: str,
        candidates: Sequence[SearchResult],
        config: RerankingConfig | None = None,
    ) -> list[SearchResult]:
        """
        Re-rank candidates and optionally diversify them with MMR.

        Args:
            query: Original search query
            candidates: Results sorted by incoming score
            config: Per-call override of the engine configuration

        Returns:
            At most ``top_k_results`` results; never raises
        """
        config = config or self.config
        candidates = list(candidates)

        if not config.enabled:
            return candidates[: config.top_k_results]

        if not candidates:
            return []

        if len(candidates) <= config.top_k_results:
            return candidates

        try:
            top_candidates = sorted(candidates, key=lambda r: r.score, reverse=True)[
                : config.top_k_candidates
            ]

            reranked = await self._rerank_by_relevance(query, top_candidates, config)

            if config.use_mmr and len(reranked) > 1:
                reranked = maximal_marginal_relevance(
                    reranked, config.top_k_results, config.mmr_lambda
                )

            return reranked

        except Exception:
            logger.exception(
                f"Re-ranking failed for query '{query[:100]}' "
                f"({len(candidates)} candidates); using original order"
            )
            return candidates[: config.top_k_results]

    def clear_cache(self) -> None:
        """Clear the re-ranking score cache."""
        self.cache.clear()

    async def _rerank_by_relevance(
        self,
        query: str,
        candidates: list[SearchResult],
        config: RerankingConfig,
    ) -> list[SearchResult]:
        """Score candidates (from cache when complete) and keep the top results."""
        start_time = time.perf_counter()
        cached = False

        scores = self._get_cached_scores(query, candidates) if config.enable_cache else None
        if scores is not None:
            cached = True
        else:
            scores = await self._score_candidates(query, candidates, config.batch_size)
            if config.enable_cache:
                self.cache.set(rerank_cache_key(query), MappingProxyType(dict(scores)))

        reranked = [
            candidate.model_copy(update={"score": scores[candidate.chunk.id]})
            for candidate in candidates
        ]
        reranked.sort(key=lambda r: r.score, reverse=True)
        reranked = reranked[: config.top_k_results]

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Re-ranking completed{' (cached)' if cached else ''}: "
            f"{len(candidates)} candidates -> {len(reranked)} results in {elapsed_ms:.0f}ms"
        )
        return reranked

    def _get_cached_scores(
        self,
        query: str,
        candidates: Sequence[SearchResult],
    ) -> dict[str, float] | None:
        """Return cached scores only if every candidate id is present."""
        entry = self.cache.get(rerank_cache_key(query))
        if entry is None:
            return None

        scores = {}
        for candidate in candidates:
            score = entry.get(candidate.chunk.id)
            if score is None:
                return None
            scores[candidate.chunk.id] = score
        return scores

    async def _score_candidates(
        self,
        query: str,
        candidates: list[SearchResult],
        batch_size: int,
    ) -> dict[str, float]:
        """Compute relevance for every candidate, batches running concurrently."""
        query_embedding = await self.embedding_client.embed_single(query)

        batches = [candidates[i : i + batch_size] for i in range(0, len(candidates), batch_size)]
        # Every batch settles before the first failure is raised
        batch_scores = await asyncio.gather(
            *(self._score_batch(query_embedding, batch) for batch in batches),
            return_exceptions=True,
        )

        scores: dict[str, float] = {}
        for batch_result in batch_scores:
            if isinstance(batch_result, BaseException):
                raise batch_result
            scores.update(batch_result)
        return scores

    async def _score_batch(
        self,
        query_embedding: list[float],
        batch: list[SearchResult],
    ) -> dict[str, float]:
        """Score one batch, embedding only chunks without a stored vector."""
        to_embed = [result.chunk for result in batch if not result.chunk.embedding]
        generated: dict[str, list[float]] = {}
        if to_embed:
            vectors = await self.embedding_client.embed([chunk.text for chunk in to_embed])
            generated = {chunk.id: vector for chunk, vector in zip(to_embed, vectors)}

        scores = {}
        for result in batch:
            chunk_embedding = result.chunk.embedding or generated[result.chunk.id]
            scores[result.chunk.id] = clamp_score(cosine_similarity(query_embedding, chunk_embedding))
        return scores
