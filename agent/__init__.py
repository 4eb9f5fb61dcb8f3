"""
Agent-facing retrieval tools.

Tools:
- search_documents_tool: Hybrid retrieval with citation-ready output
"""

from agent.tools import (
    format_search_results,
    get_search_context,
    search_documents_tool,
    set_search_context,
)

# All available tools for the agent
ALL_TOOLS = [
    search_documents_tool,
]

__all__ = [
    "ALL_TOOLS",
    "format_search_results",
    "get_search_context",
    "search_documents_tool",
    "set_search_context",
]
