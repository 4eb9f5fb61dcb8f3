"""
Retrieval orchestration.

This module wires query processing, hybrid search and re-ranking into a
single call that turns a raw question into ranked, citable passages.
"""

import asyncio
import logging
import time
from collections.abc import Sequence

from llm.completions import CompletionClient
from llm.embeddings import EmbeddingClient
from retrieval.errors import SearchFailed
from retrieval.hybrid_search import HybridSearcher, resolve_content_types
from retrieval.query_processing import QueryProcessor, get_query_variations
from retrieval.reranker import Reranker
from schemas.config import RetrievalConfig, get_settings
from schemas.models import ChatMessage, MatchType, SearchRequest, SearchResponse, SearchResult
from storage.base import ChunkStore

logger = logging.getLogger(__name__)

_LANES_BY_MATCH_TYPE: dict[str, frozenset[str]] = {
    "keyword": frozenset({"keyword"}),
    "vector": frozenset({"vector"}),
    "hybrid": frozenset({"keyword", "vector"}),
}


def _match_type_for(lanes: frozenset[str]) -> MatchType:
    if lanes == {"keyword"}:
        return "keyword"
    if lanes == {"vector"}:
        return "vector"
    return "hybrid"


def merge_variation_results(result_sets: Sequence[Sequence[SearchResult]]) -> list[SearchResult]:
    """
    Union results from several query variations.

    Each chunk keeps its highest score across variations. Its match type
    covers every lane that found it in any variation, so a chunk found by
    keyword for one variation and by vector for another becomes ``hybrid``.

    Args:
        result_sets: Per-variation hybrid search results

    Returns:
        Unioned results sorted by score, descending
    """
    best: dict[str, SearchResult] = {}
    lanes: dict[str, frozenset[str]] = {}

    for results in result_sets:
        for result in results:
            chunk_id = result.chunk.id
            lanes[chunk_id] = lanes.get(chunk_id, frozenset()) | _LANES_BY_MATCH_TYPE[result.match_type]
            current = best.get(chunk_id)
            if current is None or result.score > current.score:
                best[chunk_id] = result

    merged = [
        result.model_copy(update={"match_type": _match_type_for(lanes[chunk_id])})
        for chunk_id, result in best.items()
    ]
    merged.sort(key=lambda r: r.score, reverse=True)
    return merged


class RetrievalPipeline:
    """
    Complete retrieval pipeline.

    This combines:
    1. Query processing (context folding, expansion, rewriting, understanding)
    2. Hybrid search over every query variation
    3. A single re-ranking pass over the unioned candidates
    """

    def __init__(
        self,
        searcher: HybridSearcher,
        reranker: Reranker,
        query_processor: QueryProcessor,
        config: RetrievalConfig | None = None,
    ):
        """
        Initialize the retrieval pipeline.

        Args:
            searcher: Hybrid search engine
            reranker: Re-ranking engine
            query_processor: Query processing engine
            config: Retrieval configuration
        """
        self.searcher = searcher
        self.reranker = reranker
        self.query_processor = query_processor
        self.config = config or RetrievalConfig()

    async def retrieve(
        self,
        request: SearchRequest,
        conversation_history: Sequence[ChatMessage] | None = None,
    ) -> SearchResponse:
        """
        Execute the full retrieval pipeline.

        Args:
            request: Search request
            conversation_history: Optional prior turns for context folding

        Returns:
            SearchResponse with at most ``request.k`` results and the
            elapsed time in milliseconds

        Raises:
            SearchFailed: If hybrid search fails for any variation
        """
        if not request.query or not request.query.strip():
            return SearchResponse(chunks=[], total_count=0, query_time=0.0)

        start_time = time.perf_counter()

        processed = await self.query_processor.process_query(
            request.query,
            config=self.config.query_processing,
            user_context=request.user_context,
            conversation_history=conversation_history,
        )

        if self.config.use_query_variations:
            variations = get_query_variations(processed)
        else:
            variations = [processed.original_query]

        filters = request.filters
        content_types = resolve_content_types(filters)
        document_ids = filters.document_ids if filters else None

        outcomes = await asyncio.gather(
            *(
                self.searcher.retrieve_candidates(
                    variation,
                    request.tenant_id,
                    content_types=content_types,
                    document_ids=document_ids,
                )
                for variation in variations
            ),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, SearchFailed):
                raise outcome
            if isinstance(outcome, BaseException):
                raise SearchFailed(str(outcome), cause=outcome) from outcome

        candidates = merge_variation_results(outcomes)

        rerank_config = self.config.reranking.model_copy(update={"top_k_results": request.k})
        results = await self.reranker.rerank(request.query, candidates, config=rerank_config)
        results = results[: request.k]

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Retrieval for tenant {request.tenant_id}: {len(variations)} variation(s), "
            f"{len(candidates)} candidates -> {len(results)} results in {elapsed_ms:.0f}ms"
        )

        return SearchResponse(chunks=results, total_count=len(results), query_time=elapsed_ms)

    def clear_caches(self) -> None:
        """Clear the re-ranking, query-processing and embedding caches."""
        self.reranker.clear_cache()
        self.query_processor.clear_cache()
        embedding_cache = getattr(self.searcher.embedding_client, "cache", None)
        if embedding_cache is not None:
            embedding_cache.clear()
        logger.info("Retrieval caches cleared")


def build_retrieval_pipeline(
    store: ChunkStore,
    embedding_client: EmbeddingClient,
    llm_client: CompletionClient,
    config: RetrievalConfig | None = None,
) -> RetrievalPipeline:
    """
    Assemble a pipeline with one cache per engine.

    Args:
        store: Chunk store
        embedding_client: Embedding provider client (shared by search and re-ranking)
        llm_client: Completion client for query processing
        config: Retrieval configuration

    Returns:
        RetrievalPipeline instance
    """
    config = config or RetrievalConfig()
    return RetrievalPipeline(
        searcher=HybridSearcher(store, embedding_client, config.hybrid.validate_weights()),
        reranker=Reranker(embedding_client, config.reranking),
        query_processor=QueryProcessor(llm_client, config.query_processing),
        config=config,
    )


# Singleton instance
_pipeline: RetrievalPipeline | None = None


def get_retrieval_pipeline() -> RetrievalPipeline:
    """Get or create the retrieval pipeline singleton from application settings."""
    global _pipeline
    if _pipeline is None:
        from storage.supabase import get_supabase_client

        settings = get_settings()
        _pipeline = build_retrieval_pipeline(
            store=get_supabase_client(),
            embedding_client=EmbeddingClient(settings.get_embedding_config()),
            llm_client=CompletionClient(settings.get_llm_config()),
            config=settings.get_retrieval_config(),
        )
    return _pipeline


async def retrieve(
    request: SearchRequest,
    conversation_history: Sequence[ChatMessage] | None = None,
) -> SearchResponse:
    """
    Convenience function for retrieval with the default pipeline.

    Args:
        request: Search request
        conversation_history: Optional prior turns

    Returns:
        SearchResponse
    """
    pipeline = get_retrieval_pipeline()
    return await pipeline.retrieve(request, conversation_history)
