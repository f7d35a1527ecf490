"""Backing stores: the vector cache client and the primary stores."""

from ragcache.stores.cache_client import AuthenticatedCacheClient
from ragcache.stores.memory_store import InMemoryVectorStore
from ragcache.stores.pgvector_store import PgVectorStore

__all__ = ["AuthenticatedCacheClient", "InMemoryVectorStore", "PgVectorStore"]
