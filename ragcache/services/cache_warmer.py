"""Cache warming from the primary store.

Scope warming reads every row of one tenant with an exact-match metadata
query (no similarity, no limit) and writes them to the cache in a single
bulk upsert, so later queries for that tenant are served entirely from the
cache.

Cache entries need flat, string-valued metadata. The coercion applied by
``flatten_metadata`` / ``coerce_scalar``:

    str                      unchanged
    bool                     "true" / "false"
    int, float               str(value) (integral floats keep ".0")
    None                     key omitted
    dict                     flattened, child keys joined with "."
    list of scalars          items coerced and joined with ", "
    list holding dict/list   json.dumps(list)
    anything else            str(value)
"""

import json
import time
from typing import Any, Dict, List, Optional, Union

from ragcache.core.errors import MetadataParseError, WarmingError
from ragcache.core.interfaces import MetricsSink, ScopedDocumentSource
from ragcache.core.logging import get_logger
from ragcache.models.documents import CacheEntry, Document, ScopeRow, WarmingResult
from ragcache.stores.cache_client import CONTENT_FIELD, AuthenticatedCacheClient
from ragcache.filters.translator import ScopeKey, to_wire_string

logger = get_logger(__name__)

# Raw metadata text is kept under this key when it is not a JSON object
FALLBACK_METADATA_FIELD = "metadata"


def parse_metadata(raw: Any, document_id: Optional[str] = None) -> Dict[str, Any]:
    """Decode stored metadata into a dict.

    Raises:
        MetadataParseError: If the value is not a JSON object.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise MetadataParseError(f"Unsupported metadata type: {type(raw).__name__}", document_id=document_id)

    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise MetadataParseError(f"Metadata is not valid JSON: {e}", document_id=document_id) from e
    if not isinstance(parsed, dict):
        raise MetadataParseError(
            f"Metadata is not a JSON object: {type(parsed).__name__}", document_id=document_id
        )
    return parsed


def coerce_scalar(value: Any) -> Optional[str]:
    """Coerce one metadata value to its cache string form; None stays None."""
    match value:
        case None:
            return None
        case bool():
            return to_wire_string(value)
        case str():
            return value
        case int() | float():
            return str(value)
        case dict():
            return json.dumps(value, default=str)
        case list() | tuple():
            if any(isinstance(item, (dict, list, tuple)) for item in value):
                return json.dumps(list(value), default=str)
            items = (coerce_scalar(item) for item in value)
            return ", ".join(item for item in items if item is not None)
        case _:
            return str(value)


def flatten_metadata(metadata: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """Flatten nested metadata into a single level of string values."""
    flat: Dict[str, str] = {}
    for key, value in metadata.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_metadata(value, name))
            continue
        coerced = coerce_scalar(value)
        if coerced is not None:
            flat[name] = coerced
    return flat


class CacheWarmer:
    """Populates the cache from the primary store.

    Warming never raises: every failure is logged, counted and reported
    through WarmingResult.
    """

    def __init__(
        self,
        primary: ScopedDocumentSource,
        cache_client: AuthenticatedCacheClient,
        metrics: MetricsSink,
        scope_field: str = "refnum1",
    ):
        self.primary = primary
        self.cache_client = cache_client
        self.metrics = metrics
        self.scope_field = scope_field

    @property
    def enabled(self) -> bool:
        return self.cache_client.enabled

    def resolve_scope(self, scope: Union[ScopeKey, str, int]) -> ScopeKey:
        """Accept a ScopeKey or a bare value for the configured scope field."""
        if isinstance(scope, ScopeKey):
            return scope
        return ScopeKey(self.scope_field, to_wire_string(scope))

    def build_entry(self, row: ScopeRow, scope: Optional[ScopeKey] = None) -> CacheEntry:
        """Build one cache entry from a primary row.

        Unparsable metadata keeps the raw text under the fallback key. The
        scope field is always stamped so scoped queries match the entry.

        Raises:
            WarmingError: If the row has no embedding.
        """
        if not row.embedding:
            raise WarmingError(f"Document {row.id} has no embedding", scope=str(scope) if scope else None)

        try:
            metadata = flatten_metadata(parse_metadata(row.metadata, row.id))
        except MetadataParseError as e:
            logger.warning(f"Failed to parse metadata for {row.id}, storing as string: {e}")
            self.metrics.record_metadata_fallback()
            metadata = {FALLBACK_METADATA_FIELD: _raw_text(row.metadata)}

        metadata[CONTENT_FIELD] = row.content
        if scope is not None:
            metadata[scope.field] = scope.value

        return CacheEntry(key=row.id, vector=list(row.embedding), metadata=metadata)

    def _build_entries(self, rows: List[ScopeRow], scope: Optional[ScopeKey]) -> List[CacheEntry]:
        entries = []
        for row in rows:
            try:
                entries.append(self.build_entry(row, scope))
            except WarmingError as e:
                logger.warning(f"Skipping document during warming: {e}")
        return entries

    async def warm_scope(self, scope: Union[ScopeKey, str, int]) -> WarmingResult:
        """Warm the cache with every primary document of one scope."""
        scope_key = self.resolve_scope(scope)
        if not self.enabled:
            logger.debug(f"Skipping warming for {scope_key} - vector cache disabled")
            return WarmingResult(documents_warmed=0, success=False, scope=scope_key, error="cache disabled")

        start_time = time.perf_counter()
        logger.info(f"Warming vector cache with all documents for {scope_key}")

        try:
            rows = await self.primary.fetch_scope(scope_key.field, scope_key.value)
        except Exception as e:
            logger.warning(f"Failed to read scope {scope_key} from primary: {e}")
            return self._failed(scope_key, start_time, str(e))

        entries = self._build_entries(rows, scope_key)
        logger.info(f"Processed {len(entries)}/{len(rows)} documents for {scope_key}")
        return await self._submit(entries, scope_key, start_time)

    async def warm_documents(self, documents: List[Document]) -> WarmingResult:
        """Seed the cache with a primary result set.

        Documents carrying an embedding are cached directly; the rest are
        re-read from the primary by id.
        """
        if not self.enabled or not documents:
            return WarmingResult(documents_warmed=0, success=False, error="nothing to warm")

        start_time = time.perf_counter()
        rows = [
            ScopeRow(id=doc.id, content=doc.content, metadata=doc.metadata, embedding=doc.embedding)
            for doc in documents
            if doc.embedding
        ]
        missing_ids = [doc.id for doc in documents if not doc.embedding]

        if missing_ids:
            try:
                rows.extend(await self.primary.fetch_by_ids(missing_ids))
            except Exception as e:
                logger.warning(f"Failed to re-read {len(missing_ids)} documents from primary: {e}")
                if not rows:
                    return self._failed(None, start_time, str(e))

        entries = self._build_entries(rows, None)
        return await self._submit(entries, None, start_time)

    async def _submit(self, entries: List[CacheEntry], scope: Optional[ScopeKey], start_time: float) -> WarmingResult:
        if not entries:
            logger.warning(f"No documents to warm for {scope or 'result set'}")
            return self._failed(scope, start_time, "no documents")

        try:
            logger.info(f"Posting batch of {len(entries)} entries to index {self.cache_client.index_name}")
            await self.cache_client.upsert_embeddings(entries)
        except Exception as e:
            logger.warning(f"Failed to bulk upsert {len(entries)} entries: {e}")
            return self._failed(scope, start_time, str(e))

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record_warming_success(len(entries))
        self.metrics.record_query_time("warming", duration_ms)
        logger.info(f"Cache warming completed for {scope or 'result set'}: {len(entries)} documents in {duration_ms:.1f}ms")
        return WarmingResult(documents_warmed=len(entries), success=True, scope=scope, duration_ms=duration_ms)

    def _failed(self, scope: Optional[ScopeKey], start_time: float, error: str) -> WarmingResult:
        self.metrics.record_warming_failure()
        return WarmingResult(
            documents_warmed=0,
            success=False,
            scope=scope,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            error=error,
        )


def _raw_text(raw: Any) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace")
    return raw if isinstance(raw, str) else str(raw)
