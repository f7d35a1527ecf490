from ragcache.models.documents import (
    CacheEntry,
    Document,
    ScopeRow,
    SearchRequest,
    WarmingResult,
    decode_metadata,
)

__all__ = ["CacheEntry", "Document", "ScopeRow", "SearchRequest", "WarmingResult", "decode_metadata"]
