"""Tests for retrieval.pipeline."""

import pytest

from fakes import FakeChunkStore, FakeCompletionClient, FakeEmbeddingClient, make_chunk, make_result
from retrieval.errors import SearchFailed
from retrieval.pipeline import build_retrieval_pipeline, merge_variation_results
from schemas.config import QueryProcessingConfig, RerankingConfig, RetrievalConfig
from schemas.models import ChatMessage, SearchRequest
from storage.supabase import StoreError


def build_pipeline(store, llm_client=None, embedding_client=None, **config):
    return build_retrieval_pipeline(
        store=store,
        embedding_client=embedding_client or FakeEmbeddingClient(),
        llm_client=llm_client or FakeCompletionClient(),
        config=RetrievalConfig(**config),
    )


def corpus():
    chunks = [
        make_chunk("resume-1", "resume layout tips for engineers"),
        make_chunk("resume-2", "a resume should list impact first"),
        make_chunk("cv-1", "a cv differs from a resume in length"),
        make_chunk("cover-1", "cover letters complement the cv"),
    ]
    neighbors = [(chunks[1], 0.9), (chunks[3], 0.6), (chunks[0], 0.5)]
    return chunks, neighbors


def test_merge_variation_results_keeps_max_score_and_lanes():
    merged = merge_variation_results(
        [
            [make_result("a", 0.4, "keyword"), make_result("b", 0.3, "vector")],
            [make_result("a", 0.2, "vector"), make_result("c", 0.9, "hybrid")],
        ]
    )

    by_id = {result.chunk.id: result for result in merged}
    assert [result.chunk.id for result in merged] == ["c", "a", "b"]
    assert by_id["a"].score == 0.4
    assert by_id["a"].match_type == "hybrid"
    assert by_id["b"].match_type == "vector"
    assert by_id["c"].match_type == "hybrid"


def test_merge_variation_results_single_lane_stays_single():
    merged = merge_variation_results([[make_result("a", 0.4, "keyword")], [make_result("a", 0.6, "keyword")]])

    assert len(merged) == 1
    assert merged[0].score == 0.6
    assert merged[0].match_type == "keyword"


@pytest.mark.asyncio
async def test_empty_query_fast_path():
    store = FakeChunkStore()
    llm_client = FakeCompletionClient()
    embedding_client = FakeEmbeddingClient()
    pipeline = build_pipeline(store, llm_client, embedding_client)

    response = await pipeline.retrieve(SearchRequest(tenant_id="t1", query="  ", k=8))

    assert response.chunks == []
    assert response.total_count == 0
    assert store.calls == 0
    assert embedding_client.calls == 0
    assert llm_client.calls == []


@pytest.mark.asyncio
async def test_defaults_run_a_single_search():
    chunks, neighbors = corpus()
    store = FakeChunkStore(chunks=chunks, neighbors=neighbors)
    llm_client = FakeCompletionClient()
    pipeline = build_pipeline(store, llm_client)

    response = await pipeline.retrieve(SearchRequest(tenant_id="t1", query="resume", k=2))

    assert store.keyword_calls == 1
    assert store.vector_calls == 1
    assert llm_client.calls == []
    assert response.total_count == 2
    assert response.chunks[0].chunk.id == "resume-2"
    assert response.query_time >= 0


@pytest.mark.asyncio
async def test_fans_out_over_query_variations():
    chunks, neighbors = corpus()
    store = FakeChunkStore(chunks=chunks, neighbors=neighbors)
    llm_client = FakeCompletionClient({"rewriting": "cover letter\ncv"})
    pipeline = build_pipeline(
        store,
        llm_client,
        query_processing=QueryProcessingConfig(enabled=True, enable_rewriting=True),
    )

    response = await pipeline.retrieve(SearchRequest(tenant_id="t1", query="resume", k=8))

    assert store.keyword_calls == 3
    ids = {result.chunk.id for result in response.chunks}
    assert {"resume-1", "resume-2", "cv-1", "cover-1"} <= ids
    assert len(ids) == len(response.chunks)


@pytest.mark.asyncio
async def test_variations_can_be_disabled():
    chunks, neighbors = corpus()
    store = FakeChunkStore(chunks=chunks, neighbors=neighbors)
    llm_client = FakeCompletionClient({"rewriting": "cover letter\ncv"})
    pipeline = build_pipeline(
        store,
        llm_client,
        use_query_variations=False,
        query_processing=QueryProcessingConfig(enabled=True, enable_rewriting=True),
    )

    await pipeline.retrieve(SearchRequest(tenant_id="t1", query="resume", k=8))

    assert store.keyword_calls == 1


@pytest.mark.asyncio
async def test_search_failure_propagates():
    store = FakeChunkStore(vector_error=StoreError("Vector search failed: rpc error"))
    pipeline = build_pipeline(store)

    with pytest.raises(SearchFailed):
        await pipeline.retrieve(SearchRequest(tenant_id="t1", query="resume", k=8))


@pytest.mark.asyncio
async def test_query_processing_failure_does_not_fail_retrieval():
    from llm.completions import CompletionError

    chunks, neighbors = corpus()
    store = FakeChunkStore(chunks=chunks, neighbors=neighbors)
    llm_client = FakeCompletionClient(
        {"expansion": CompletionError("down"), "rewriting": CompletionError("down")}
    )
    pipeline = build_pipeline(
        store,
        llm_client,
        query_processing=QueryProcessingConfig(enabled=True, enable_expansion=True, enable_rewriting=True),
    )

    response = await pipeline.retrieve(SearchRequest(tenant_id="t1", query="resume", k=8))

    assert response.total_count > 0
    assert store.keyword_calls == 1


@pytest.mark.asyncio
async def test_reranking_uses_request_k():
    chunks, neighbors = corpus()
    store = FakeChunkStore(chunks=chunks, neighbors=neighbors)
    embedding_client = FakeEmbeddingClient()
    pipeline = build_pipeline(
        store,
        embedding_client=embedding_client,
        reranking=RerankingConfig(enabled=True, top_k_results=8),
    )

    response = await pipeline.retrieve(SearchRequest(tenant_id="t1", query="resume", k=2))

    assert response.total_count == 2
    # query embedding for search, query + passages for re-ranking
    assert embedding_client.calls >= 2


@pytest.mark.asyncio
async def test_conversation_history_reaches_query_processing():
    chunks, neighbors = corpus()
    store = FakeChunkStore(chunks=chunks, neighbors=neighbors)
    llm_client = FakeCompletionClient({"expansion": "cv"})
    pipeline = build_pipeline(
        store,
        llm_client,
        query_processing=QueryProcessingConfig(enabled=True, enable_expansion=True),
    )
    history = [ChatMessage(role="user", content="I am updating my resume")]

    await pipeline.retrieve(SearchRequest(tenant_id="t1", query="what about it", k=8), history)

    assert "I am updating my resume what about it" in llm_client.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_clear_caches():
    chunks, neighbors = corpus()
    store = FakeChunkStore(chunks=chunks, neighbors=neighbors)
    llm_client = FakeCompletionClient({"expansion": "cv"})
    pipeline = build_pipeline(
        store,
        llm_client,
        query_processing=QueryProcessingConfig(enabled=True, enable_expansion=True),
    )
    request = SearchRequest(tenant_id="t1", query="resume", k=8)

    await pipeline.retrieve(request)
    await pipeline.retrieve(request)
    assert len(llm_client.calls) == 1

    pipeline.clear_caches()
    await pipeline.retrieve(request)
    assert len(llm_client.calls) == 2
