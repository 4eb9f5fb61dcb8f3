"""
Retrieval tools for an answer-generating agent.

These tools let the agent search a tenant's documents. Every passage is
labelled with its chunk ID, the key the agent uses for citation markers.
"""

import logging
from collections.abc import Sequence
from typing import Annotated

from langchain_core.tools import tool

from retrieval.errors import SearchFailed
from retrieval.pipeline import RetrievalPipeline, get_retrieval_pipeline
from schemas.models import ChatMessage, SearchRequest, SearchResult, UserContext

logger = logging.getLogger(__name__)

# Global state for the current conversation (set by the caller before invoking the agent)
_current_tenant_id: str | None = None
_current_user_context: UserContext | None = None
_current_history: list[ChatMessage] = []
_current_pipeline: RetrievalPipeline | None = None


def set_search_context(
    tenant_id: str,
    user_context: UserContext | None = None,
    conversation_history: Sequence[ChatMessage] | None = None,
    pipeline: RetrievalPipeline | None = None,
) -> None:
    """Set the current search context for tools."""
    global _current_tenant_id, _current_user_context, _current_history, _current_pipeline
    _current_tenant_id = tenant_id
    _current_user_context = user_context
    _current_history = list(conversation_history or [])
    _current_pipeline = pipeline


def get_search_context() -> tuple[str | None, UserContext | None, list[ChatMessage]]:
    """Get the current search context."""
    return _current_tenant_id, _current_user_context, _current_history


def format_search_results(results: Sequence[SearchResult], max_chars: int = 500) -> str:
    """Format search results for agent consumption."""
    if not results:
        return "No results found."

    lines = [f"Found {len(results)} results:\n"]

    for i, result in enumerate(results, 1):
        chunk = result.chunk
        lines.append(f"--- Result {i} (score: {result.score:.4f}, match: {result.match_type}) ---")
        lines.append(f"Chunk ID: {chunk.id}")
        lines.append(f"Document: {chunk.document_id}")
        lines.append(f"Content type: {chunk.content_type}")

        title = chunk.metadata.get("title")
        if title:
            lines.append(f"Source: {title}")

        content = chunk.text
        if len(content) > max_chars:
            content = content[:max_chars] + "..."
        lines.append(f"Content:\n{content}")
        lines.append("")

    return "\n".join(lines)


@tool
async def search_documents_tool(
    query: Annotated[str, "Question or key terms to search for"],
    top_k: Annotated[int, "Number of passages to return (0 for the configured default)"] = 0,
) -> str:
    """
    Search the tenant's documents for passages relevant to a question.

    This tool combines:
    - Keyword and semantic search, fused into one ranking
    - Optional query expansion and rewriting
    - Optional re-ranking for relevance and diversity

    Cite passages by their chunk ID.

    Args:
        query: Search query (a question or key terms)
        top_k: Number of passages to return (default: the pipeline's default_k)

    Returns:
        Formatted passages with chunk IDs for citation
    """
    tenant_id, user_context, history = get_search_context()

    if not tenant_id:
        return "Error: No tenant selected. Set a search context first."

    try:
        pipeline = _current_pipeline or get_retrieval_pipeline()
        request = SearchRequest(
            tenant_id=tenant_id,
            query=query,
            k=top_k if top_k > 0 else pipeline.config.default_k,
            user_context=user_context,
        )
        response = await pipeline.retrieve(request, conversation_history=history)

        return format_search_results(response.chunks)

    except SearchFailed as e:
        logger.exception(f"Document search failed: {e}")
        return f"Error performing search: {str(e)}"
    except Exception as e:
        logger.exception(f"Error in search_documents_tool: {e}")
        return f"Error performing search: {str(e)}"
