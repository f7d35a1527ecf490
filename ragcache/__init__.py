"""Read-through vector cache in front of a pgvector primary store."""

from ragcache.filters import And, Equality, Or, and_, eq, or_
from ragcache.models import Document, SearchRequest, WarmingResult
from ragcache.services.caching_store import CacheBackedStore
from ragcache.services.cache_warmer import CacheWarmer
from ragcache.services.metrics import VectorCacheMetrics
from ragcache.stores.cache_client import AuthenticatedCacheClient

__version__ = "0.3.0"

__all__ = [
    "And",
    "Equality",
    "Or",
    "and_",
    "eq",
    "or_",
    "Document",
    "SearchRequest",
    "WarmingResult",
    "CacheBackedStore",
    "CacheWarmer",
    "VectorCacheMetrics",
    "AuthenticatedCacheClient",
]
