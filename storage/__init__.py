"""
Storage layer for chunk retrieval and in-memory caching.

This package provides abstractions for Supabase/PostgreSQL chunk queries
(keyword and pgvector search) and the TTL cache shared by the engines.

Modules:
- base: Chunk store contract
- cache: Size- and TTL-bounded in-memory cache
- supabase: Supabase client and chunk queries
"""

from storage.base import ChunkStore
from storage.cache import CacheEntry, TTLCache
from storage.supabase import (
    StoreError,
    SupabaseClient,
    build_like_pattern,
    get_supabase_client,
)

__version__ = "0.1.0"

__all__ = [
    # Contract
    "ChunkStore",
    # Cache
    "CacheEntry",
    "TTLCache",
    # Supabase
    "StoreError",
    "SupabaseClient",
    "build_like_pattern",
    "get_supabase_client",
]
