"""Authenticated client for the cache's vector index REST protocol.

Endpoints (relative to ``{scheme}://{host}:{port}{base_path}``):

    POST   /indexes                          create index
    GET    /indexes/{index}                  describe index
    DELETE /indexes/{index}                  destroy index
    POST   /indexes/{index}/embeddings       bulk upsert [{key, vector, metadata}]
    DELETE /indexes/{index}/embeddings/{key} delete one entry
    POST   /indexes/{index}/query            {vector, top-k, include-metadata, filter-query}

Every call carries HTTP Basic auth. Without a username the client is
disabled: it never opens a connection, searches return no documents and
writes return False.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import quote

import httpx
from langchain_core.embeddings import Embeddings

from ragcache.core.config import Settings
from ragcache.core.errors import CacheProtocolError, CacheUnavailableError, VectorCacheError
from ragcache.core.logging import get_logger
from ragcache.filters.expressions import FilterExpression
from ragcache.filters.translator import FilterTranslator
from ragcache.models.documents import CacheEntry, Document, SearchRequest

logger = get_logger(__name__)

CONTENT_FIELD = "content"
LEGACY_CONTENT_FIELD = "document"
DISTANCE_FIELD = "distance"
# Wire name of the predicate parameter; "filter" is rejected by the service
FILTER_QUERY_FIELD = "filter-query"

PROTOCOL_STATUS_CODES = {400, 404, 405, 409, 415, 422}


class AuthenticatedCacheClient:
    """Vector index client with Basic authentication.

    Implements SimilarityStore so it can be composed as the cache side of
    CacheBackedStore.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        host: str = "localhost",
        port: int = 8080,
        index_name: str = "vector-cache-index",
        username: Optional[str] = None,
        password: Optional[str] = None,
        base_path: str = "/gemfire-vectordb/v1",
        ssl_enabled: Optional[bool] = None,
        timeout: float = 2.0,
        connect_timeout: float = 1.0,
        beam_width: int = 100,
        max_connections: int = 16,
        similarity_function: str = "COSINE",
        buckets: int = 0,
        filterable_fields: Sequence[str] = (),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            embeddings: Model used to embed query text.
            timeout: Read/write/pool timeout in seconds for every call.
            connect_timeout: Connection timeout in seconds.
            filterable_fields: Metadata fields declared at index creation.
                Predicates on any other field are rejected locally.
            transport: Optional httpx transport (used by tests).
        """
        self.embeddings = embeddings
        self.index_name = index_name
        self.beam_width = beam_width
        self.max_connections = max_connections
        self.similarity_function = similarity_function
        self.buckets = buckets
        self.filterable_fields = list(filterable_fields)
        self._enabled = bool(username)

        if ssl_enabled is None:
            ssl_enabled = port == 443
        scheme = "https" if ssl_enabled else "http"
        self.base_url = f"{scheme}://{host}:{port}{base_path.rstrip('/')}"

        self._client: Optional[httpx.AsyncClient] = None
        if self._enabled:
            logger.info(f"Configuring authenticated vector cache: {self.base_url} (user: {username}, index: {index_name})")
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=httpx.BasicAuth(username, password or ""),
                timeout=httpx.Timeout(timeout, connect=connect_timeout),
                headers={"Content-Type": "application/json"},
                transport=transport,
            )
        else:
            logger.warning("No credentials configured for vector cache - cache disabled, queries go to primary only")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embeddings: Embeddings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "AuthenticatedCacheClient":
        """Build a client from application settings."""
        return cls(
            embeddings=embeddings,
            host=settings.cache_host,
            port=settings.cache_port,
            index_name=settings.cache_index_name,
            username=settings.cache_username,
            password=settings.cache_password,
            base_path=settings.cache_base_path,
            ssl_enabled=settings.cache_ssl_enabled,
            timeout=settings.cache_timeout_seconds,
            connect_timeout=settings.cache_connect_timeout_seconds,
            beam_width=settings.cache_beam_width,
            max_connections=settings.cache_max_connections,
            similarity_function=settings.cache_similarity_function,
            buckets=settings.cache_buckets,
            filterable_fields=settings.cache_filterable_fields,
            transport=transport,
        )

    @property
    def enabled(self) -> bool:
        """Check if the client has credentials and an open connection pool."""
        return self._enabled and self._client is not None

    async def close(self) -> None:
        """Close the connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Vector cache client closed")

    async def __aenter__(self) -> "AuthenticatedCacheClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # Transport

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        """Send one request, mapping every failure onto the cache taxonomy."""
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise CacheUnavailableError(f"Vector cache timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise CacheUnavailableError(f"Vector cache request failed: {e}", url=url) from e

        if response.is_success:
            return response

        body = response.text[:500]
        if response.status_code in (401, 403):
            raise CacheUnavailableError(
                f"Vector cache rejected credentials ({response.status_code})",
                url=url,
                status_code=response.status_code,
            )
        if response.status_code in PROTOCOL_STATUS_CODES:
            raise CacheProtocolError(
                f"Vector cache rejected request ({response.status_code}): {body}",
                url=url,
                status_code=response.status_code,
            )
        raise CacheUnavailableError(
            f"Vector cache error ({response.status_code}): {body}",
            url=url,
            status_code=response.status_code,
        )

    # Index lifecycle

    def _create_request(self) -> Dict[str, Any]:
        return {
            "name": self.index_name,
            "beam-width": self.beam_width,
            "max-connections": self.max_connections,
            "vector-similarity-function": self.similarity_function,
            "fields": self.filterable_fields,
            "buckets": self.buckets,
        }

    async def index_exists(self) -> bool:
        """Check whether the configured index exists."""
        if not self.enabled:
            return False
        try:
            response = await self._request("GET", f"/indexes/{self.index_name}")
        except CacheProtocolError:
            return False
        return bool(response.content)

    async def create_index(self) -> bool:
        """Create the index with its filterable fields.

        Fields not declared here can never be used in a predicate later.
        """
        if not self.enabled:
            return False
        await self._request("POST", "/indexes", json=self._create_request())
        logger.info(f"Created vector cache index {self.index_name} with filterable fields: {self.filterable_fields}")
        return True

    async def delete_index(self) -> bool:
        """Delete the index and every entry in it."""
        if not self.enabled:
            return False
        await self._request("DELETE", f"/indexes/{self.index_name}")
        logger.warning(f"Deleted vector cache index {self.index_name}")
        return True

    async def ensure_index(self) -> bool:
        """Create the index when it does not exist yet."""
        if not self.enabled:
            return False
        if await self.index_exists():
            return True
        return await self.create_index()

    async def destroy_and_recreate_index(self) -> bool:
        """DESTRUCTIVE: drop the index and create it again.

        All cached entries are lost and must be re-warmed. Admin use only;
        nothing in the query or warming path calls this.
        """
        if not self.enabled:
            logger.error("Cannot recreate index - vector cache is disabled (no credentials)")
            return False

        logger.warning(f"ADMIN: Recreating vector cache index {self.index_name} - all cached data will be lost")
        try:
            await self.delete_index()
        except CacheProtocolError as e:
            logger.warning(f"Index delete failed (index might not exist): {e}")

        try:
            return await self.create_index()
        except VectorCacheError as e:
            logger.error(f"Failed to recreate vector cache index {self.index_name}: {e}")
            return False

    # Entries

    async def upsert_embeddings(self, entries: Iterable[CacheEntry]) -> bool:
        """Bulk upsert entries in a single call; entries overwrite by key."""
        if not self.enabled:
            return False

        payload = [entry.to_wire() for entry in entries]
        if not payload:
            return False

        await self._request("POST", f"/indexes/{self.index_name}/embeddings", json=payload)
        logger.debug(f"Upserted {len(payload)} entries into {self.index_name}")
        return True

    async def delete_embedding(self, key: str) -> bool:
        """Delete a single entry by key.

        Returns False when the entry was never cached (404).
        """
        if not self.enabled:
            return False
        try:
            await self._request("DELETE", f"/indexes/{self.index_name}/embeddings/{quote(key, safe='')}")
        except CacheProtocolError as e:
            if e.status_code == 404:
                logger.debug(f"Entry {key} not in {self.index_name}, nothing to delete")
                return False
            raise
        return True

    # SimilarityStore

    async def add(self, documents: List[Document]) -> None:
        """Upsert documents as-is; metadata must already be string-valued."""
        if not self.enabled:
            return

        entries = []
        for doc in documents:
            vector = doc.embedding
            if vector is None:
                vector = await self.embeddings.aembed_query(doc.content)
            metadata = {key: str(value) for key, value in doc.metadata.items() if value is not None}
            metadata[CONTENT_FIELD] = doc.content
            entries.append(CacheEntry(key=doc.id, vector=vector, metadata=metadata))

        await self.upsert_embeddings(entries)

    async def delete(
        self,
        ids: Optional[List[str]] = None,
        filter_expression: Optional[FilterExpression] = None,
    ) -> None:
        """Delete entries by id, one call per id.

        Every id is attempted. If any call failed, the first error is
        raised afterwards with the failed keys in its details.
        """
        if filter_expression is not None:
            raise CacheProtocolError("Vector cache does not support delete by filter; resolve ids first")
        if not self.enabled or not ids:
            return

        failed: List[str] = []
        first_error: Optional[VectorCacheError] = None
        for key in ids:
            try:
                await self.delete_embedding(key)
            except VectorCacheError as e:
                logger.warning(f"Failed to delete entry {key} from {self.index_name}: {e}")
                failed.append(key)
                first_error = first_error or e

        if first_error is not None:
            first_error.details["failed_keys"] = failed
            raise first_error
        logger.debug(f"Deleted {len(ids)} entries from {self.index_name}")

    def build_query(self, vector: List[float], request: SearchRequest) -> Dict[str, Any]:
        """Build the query body, validating predicate fields."""
        body: Dict[str, Any] = {
            "vector": vector,
            "top-k": request.top_k,
            "include-metadata": True,
        }
        if request.filter_expression is not None:
            undeclared = FilterTranslator.fields(request.filter_expression) - set(self.filterable_fields)
            if undeclared:
                raise CacheProtocolError(
                    f"Filter uses fields not declared on index {self.index_name}: {sorted(undeclared)}"
                )
            body[FILTER_QUERY_FIELD] = FilterTranslator.to_cache_predicate(request.filter_expression)
        return body

    async def search(self, request: SearchRequest) -> List[Document]:
        """Similarity query, filtered client-side by score threshold."""
        if not self.enabled:
            return []

        vector = request.query_vector
        if vector is None:
            vector = await self.embeddings.aembed_query(request.query)
        body = self.build_query(vector, request)
        logger.debug(
            f"Vector cache query: top-k={request.top_k}, filter={body.get(FILTER_QUERY_FIELD)}, "
            f"vector length={len(vector)}"
        )

        response = await self._request("POST", f"/indexes/{self.index_name}/query", json=body)
        try:
            results = response.json()
        except ValueError as e:
            raise CacheProtocolError(f"Vector cache returned invalid JSON: {e}") from e
        if results is None:
            return []
        if not isinstance(results, list):
            raise CacheProtocolError(f"Unexpected vector cache response type: {type(results).__name__}")

        documents = []
        for item in results:
            score = float(item.get("score") or 0.0)
            if score < request.similarity_threshold:
                continue
            documents.append(self._to_document(item, score))
        return documents

    @staticmethod
    def _to_document(item: Dict[str, Any], score: float) -> Document:
        metadata = item.get("metadata")
        if metadata is None:
            metadata = {LEGACY_CONTENT_FIELD: "--Deleted--"}
        else:
            metadata = dict(metadata)

        content = metadata.pop(CONTENT_FIELD, None)
        if content is None:
            content = metadata.pop(LEGACY_CONTENT_FIELD, None)
        if content is None:
            content = "--No Content--"

        metadata[DISTANCE_FIELD] = 1 - score
        return Document(id=str(item.get("key")), content=str(content), metadata=metadata, score=score)
