"""Read-through composite of the vector cache and the primary store.

Reads go to the cache first; on a miss or any cache failure the primary
answers and the cache is warmed for next time. Writes go to the primary
only, deletes to both stores. The cache can never make a query fail.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Literal, Optional, Set, Union

from ragcache.core.errors import categorize_error
from ragcache.core.interfaces import MetricsSink, PrimaryStore
from ragcache.core.logging import get_logger
from ragcache.filters.expressions import FilterExpression
from ragcache.filters.translator import FilterTranslator, ScopeKey
from ragcache.models.documents import Document, SearchRequest, WarmingResult
from ragcache.services.cache_warmer import CacheWarmer
from ragcache.stores.cache_client import AuthenticatedCacheClient

logger = get_logger(__name__)


class LookupOutcome(Enum):
    """Result of one cache lookup."""
    HIT = "hit"
    MISS = "miss"
    ERROR = "error"


@dataclass
class CacheLookup:
    """Cache lookup result; failures are carried as data, not raised."""

    outcome: LookupOutcome
    documents: List[Document] = field(default_factory=list)
    error: Optional[BaseException] = None
    duration_ms: float = 0.0


class CacheBackedStore:
    """SimilarityStore composing cache and primary with read-through warming."""

    def __init__(
        self,
        cache: AuthenticatedCacheClient,
        primary: PrimaryStore,
        warmer: CacheWarmer,
        metrics: MetricsSink,
        warm_mode: Literal["sync", "async"] = "sync",
        warm_on_miss: bool = True,
    ):
        if warm_mode not in ("sync", "async"):
            raise ValueError(f"Unknown warm mode: {warm_mode}")

        self.cache = cache
        self.primary = primary
        self.warmer = warmer
        self.metrics = metrics
        self.warm_mode = warm_mode
        self.warm_on_miss = warm_on_miss
        self._warming_tasks: Set[asyncio.Task] = set()

        logger.info(
            f"CacheBackedStore initialized (cache enabled: {cache.enabled}, "
            f"warm on miss: {warm_on_miss}, warm mode: {warm_mode})"
        )

    # Writes

    async def add(self, documents: List[Document]) -> None:
        """Write to the primary only; the cache is filled on read misses."""
        logger.debug(f"Adding {len(documents)} documents to primary store")
        await self.primary.add(documents)

    async def delete(
        self,
        ids: Optional[List[str]] = None,
        filter_expression: Optional[FilterExpression] = None,
    ) -> None:
        """Delete from the primary, then evict from the cache.

        Primary errors propagate. Cache eviction failures are logged and
        counted; the entry stays until the scope is re-warmed.
        """
        cache_ids = list(ids or [])
        if filter_expression is not None:
            cache_ids.extend(await self.primary.find_ids(filter_expression))

        await self.primary.delete(ids=ids, filter_expression=filter_expression)
        logger.debug(f"Deleted from primary (ids: {len(ids or [])}, filter: {filter_expression is not None})")

        if not cache_ids or not self.cache.enabled:
            return
        # One failed eviction must not leave the remaining ids cached
        for key in dict.fromkeys(cache_ids):
            try:
                await self.cache.delete_embedding(key)
            except Exception as e:
                logger.warning(f"Failed to evict {key} from vector cache: {e}")
                self.metrics.record_cache_error(categorize_error(e).value)

    # Reads

    async def search(self, request: SearchRequest) -> List[Document]:
        """Cache first, then primary with warming, trimmed to top_k."""
        if request.query_vector is None:
            # Embedded once and shared by both lookups
            vector = await self.cache.embeddings.aembed_query(request.query)
            request = replace(request, query_vector=vector)

        lookup = await self._try_cache(request)
        if lookup.outcome is LookupOutcome.HIT:
            logger.debug(f"Cache HIT: Found {len(lookup.documents)} documents in cache")
            self.metrics.record_cache_hit(len(lookup.documents))
            return lookup.documents

        if lookup.outcome is LookupOutcome.ERROR:
            self.metrics.record_cache_error(categorize_error(lookup.error).value)
        self.metrics.record_cache_miss()
        logger.debug(f"Cache {lookup.outcome.value.upper()}: querying primary store")

        primary_result = await self._try_primary(request)
        await self._warm(request, primary_result)

        result = primary_result[: request.top_k]
        self.metrics.record_primary_retrieval(len(result))
        return result

    async def _try_cache(self, request: SearchRequest) -> CacheLookup:
        if not self.cache.enabled:
            return CacheLookup(LookupOutcome.MISS)

        start_time = time.perf_counter()
        try:
            documents = await self.cache.search(request)
        except Exception as e:
            logger.warning(f"Cache query failed (falling back to primary): {e}")
            logger.debug("Cache error details", exc_info=True)
            return CacheLookup(LookupOutcome.ERROR, error=e)

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record_query_time("cache", duration_ms)
        outcome = LookupOutcome.HIT if documents else LookupOutcome.MISS
        return CacheLookup(outcome, documents=documents, duration_ms=duration_ms)

    async def _try_primary(self, request: SearchRequest) -> List[Document]:
        start_time = time.perf_counter()
        documents = await self.primary.search(request)
        self.metrics.record_query_time("primary", (time.perf_counter() - start_time) * 1000)
        logger.debug(f"Primary store returned {len(documents)} documents (requested {request.top_k})")
        return documents

    async def _warm(self, request: SearchRequest, primary_result: List[Document]) -> None:
        if not self.warm_on_miss or not self.cache.enabled:
            return

        scope = FilterTranslator.extract_scope_key(request.filter_expression)
        if scope is not None:
            warming = self.warmer.warm_scope(scope)
        elif primary_result:
            warming = self.warmer.warm_documents(primary_result)
        else:
            return

        if self.warm_mode == "sync":
            await warming
            return

        task = asyncio.create_task(warming)
        self._warming_tasks.add(task)
        task.add_done_callback(self._warming_tasks.discard)

    # Admin

    async def warm_scope(self, scope: Union[ScopeKey, str, int]) -> WarmingResult:
        """Warm one scope on demand."""
        return await self.warmer.warm_scope(scope)

    async def wait_for_warming(self) -> None:
        """Wait for background warming tasks to finish."""
        if self._warming_tasks:
            await asyncio.gather(*list(self._warming_tasks), return_exceptions=True)

    @property
    def pending_warming(self) -> int:
        return len(self._warming_tasks)

    async def close(self) -> None:
        """Finish pending warming and close both stores."""
        await self.wait_for_warming()
        await self.cache.close()
        await self.primary.close()
