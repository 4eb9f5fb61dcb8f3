"""
Retrieval pipeline for tenant document search.

This package implements hybrid search combining keyword matching and
vector similarity with weighted fusion, embedding-based re-ranking with
optional MMR diversification, and LLM query processing.

Modules:
- hybrid_search: HybridSearcher with weighted fusion
- reranker: Reranker and MMR selection
- query_processing: QueryProcessor (expansion, rewriting, understanding)
- pipeline: RetrievalPipeline wiring the engines together
"""

from retrieval.errors import RetrievalError, SearchFailed
from retrieval.hybrid_search import HybridSearcher, merge_results, score_keyword_match
from retrieval.pipeline import (
    RetrievalPipeline,
    build_retrieval_pipeline,
    get_retrieval_pipeline,
    merge_variation_results,
    retrieve,
)
from retrieval.query_processing import QueryProcessor, enhance_with_context, get_query_variations
from retrieval.reranker import Reranker, maximal_marginal_relevance
from retrieval.similarity import cosine_similarity

__version__ = "0.1.0"

__all__ = [
    # Errors
    "RetrievalError",
    "SearchFailed",
    # Hybrid Search
    "HybridSearcher",
    "merge_results",
    "score_keyword_match",
    # Reranking
    "Reranker",
    "maximal_marginal_relevance",
    "cosine_similarity",
    # Query Processing
    "QueryProcessor",
    "enhance_with_context",
    "get_query_variations",
    # Pipeline
    "RetrievalPipeline",
    "build_retrieval_pipeline",
    "get_retrieval_pipeline",
    "merge_variation_results",
    "retrieve",
]
