"""
Provider clients for embeddings and language-model completions.

Modules:
- embeddings: Cached, retrying embedding client
- completions: Non-streaming chat completion client
"""

from llm.completions import CompletionClient, CompletionError
from llm.embeddings import (
    EmbeddingCache,
    EmbeddingClient,
    EmbeddingError,
    create_embedding_cache,
)

__version__ = "0.1.0"

__all__ = [
    # Embeddings
    "EmbeddingClient",
    "EmbeddingCache",
    "EmbeddingError",
    "create_embedding_cache",
    # Completions
    "CompletionClient",
    "CompletionError",
]
