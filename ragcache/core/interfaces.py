"""Protocol definitions for the store and metrics seams.

Both backing stores and the cache-backed composite implement
SimilarityStore. The primary additionally implements ScopedDocumentSource
so the warmer can bulk-read a tenant without a similarity query.
"""

from typing import Protocol, Optional, List, runtime_checkable

from ragcache.filters.expressions import FilterExpression
from ragcache.models.documents import Document, ScopeRow, SearchRequest


@runtime_checkable
class SimilarityStore(Protocol):
    """Capability interface shared by cache, primary and composite."""

    async def add(self, documents: List[Document]) -> None:
        """Persist documents."""
        ...

    async def delete(
        self,
        ids: Optional[List[str]] = None,
        filter_expression: Optional[FilterExpression] = None,
    ) -> None:
        """Delete documents by id or by filter."""
        ...

    async def search(self, request: SearchRequest) -> List[Document]:
        """Similarity search honouring top_k, threshold and filter."""
        ...


@runtime_checkable
class ScopedDocumentSource(Protocol):
    """Bulk reads from the primary store used by warming and deletes."""

    async def fetch_scope(self, field: str, value: str) -> List[ScopeRow]:
        """Return every row whose metadata field equals value exactly.

        Args:
            field: Metadata field name.
            value: Expected value, compared as text.

        Returns:
            All matching rows, unbounded.
        """
        ...

    async def fetch_by_ids(self, ids: List[str]) -> List[ScopeRow]:
        """Return the rows for the given document ids."""
        ...

    async def find_ids(self, filter_expression: FilterExpression) -> List[str]:
        """Return the ids of every document matching the filter."""
        ...


@runtime_checkable
class MetricsSink(Protocol):
    """Counters and timers for the read-through path.

    Implementations are called from any request thread and must be
    thread-safe.
    """

    def record_cache_hit(self, document_count: int) -> None:
        ...

    def record_cache_miss(self) -> None:
        ...

    def record_cache_error(self, category: str) -> None:
        ...

    def record_primary_retrieval(self, document_count: int) -> None:
        ...

    def record_warming_success(self, document_count: int) -> None:
        ...

    def record_warming_failure(self) -> None:
        ...

    def record_metadata_fallback(self) -> None:
        ...

    def record_query_time(self, store: str, duration_ms: float) -> None:
        """Record a query duration for ``cache``, ``primary`` or ``warming``."""
        ...


@runtime_checkable
class PrimaryStore(SimilarityStore, ScopedDocumentSource, Protocol):
    """Authoritative store: similarity search plus scoped bulk reads."""

    async def close(self) -> None:
        ...
