"""Dependency injection container for the vector cache services.

Builds metrics, the cache client, the primary store, the warmer and the
read-through composite from settings, and owns their lifecycle. Every
container has its own metrics instance; nothing is process-global.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

import httpx
from langchain_core.embeddings import Embeddings

from ragcache.core.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from ragcache.core.config import Settings
    from ragcache.core.interfaces import PrimaryStore
    from ragcache.services.cache_warmer import CacheWarmer
    from ragcache.services.caching_store import CacheBackedStore
    from ragcache.services.metrics import VectorCacheMetrics
    from ragcache.stores.cache_client import AuthenticatedCacheClient

logger = get_logger(__name__)


class ServiceNotInitializedError(Exception):
    """Raised when accessing a service that hasn't been initialized."""

    def __init__(self, service_name: str):
        super().__init__(f"Service '{service_name}' has not been initialized. "
                         f"Call container.initialize() first.")
        self.service_name = service_name


def create_embeddings(settings: Settings) -> Embeddings:
    """Create the query embedding model from settings."""
    if not settings.openai_api_key:
        raise ValueError("No embeddings provided and OPENAI_API_KEY is not set")

    from langchain_openai import OpenAIEmbeddings

    logger.info(f"Using OpenAI embeddings: {settings.openai_embedding_model}")
    return OpenAIEmbeddings(
        model=settings.openai_embedding_model,
        dimensions=settings.openai_embedding_dimensions,
        api_key=settings.openai_api_key,
    )


@dataclass
class ServiceContainer:
    """Centralized container for the read-through vector store.

    Usage:
        container = ServiceContainer()
        await container.initialize(settings)

        docs = await container.vector_store.search(SearchRequest(query="policy"))

        await container.shutdown()
    """

    _metrics: Optional[VectorCacheMetrics] = field(default=None, repr=False)
    _cache_client: Optional[AuthenticatedCacheClient] = field(default=None, repr=False)
    _primary: Optional[PrimaryStore] = field(default=None, repr=False)
    _warmer: Optional[CacheWarmer] = field(default=None, repr=False)
    _vector_store: Optional[CacheBackedStore] = field(default=None, repr=False)
    _initialized: bool = field(default=False, repr=True)
    _settings: Optional[Settings] = field(default=None, repr=False)

    async def initialize(
        self,
        settings: Settings,
        embeddings: Optional[Embeddings] = None,
        primary: Optional[PrimaryStore] = None,
        cache_transport: Optional[httpx.AsyncBaseTransport] = None,
        configure_logging: bool = True,
    ) -> None:
        """Initialize all services.

        Args:
            settings: Application settings.
            embeddings: Query embedding model. Defaults to OpenAI when an
                API key is configured.
            primary: Primary store override. Defaults to PgVectorStore.
            cache_transport: httpx transport for the cache client (tests).
            configure_logging: Apply the log level and format from settings.

        Raises:
            ValueError: If no embeddings are available.
        """
        if self._initialized:
            logger.warning("Container already initialized, skipping")
            return

        if configure_logging:
            setup_logging(settings.log_level, settings.log_format)

        self._settings = settings
        logger.info("Initializing service container...")

        try:
            from ragcache.services.cache_warmer import CacheWarmer
            from ragcache.services.caching_store import CacheBackedStore
            from ragcache.services.metrics import VectorCacheMetrics
            from ragcache.stores.cache_client import AuthenticatedCacheClient
            from ragcache.stores.pgvector_store import PgVectorStore

            if embeddings is None:
                embeddings = create_embeddings(settings)

            self._metrics = VectorCacheMetrics()

            self._cache_client = AuthenticatedCacheClient.from_settings(
                settings, embeddings, transport=cache_transport
            )
            if settings.cache_initialize_schema and self._cache_client.enabled:
                await self._cache_client.ensure_index()
            logger.info(f"Vector cache client initialized (enabled: {self._cache_client.enabled})")

            self._primary = primary or PgVectorStore.from_settings(settings, embeddings)
            logger.info("Primary store initialized")

            self._warmer = CacheWarmer(
                primary=self._primary,
                cache_client=self._cache_client,
                metrics=self._metrics,
                scope_field=settings.scope_field,
            )

            self._vector_store = CacheBackedStore(
                cache=self._cache_client,
                primary=self._primary,
                warmer=self._warmer,
                metrics=self._metrics,
                warm_mode=settings.warm_mode,
                warm_on_miss=settings.warm_on_miss,
            )

            self._initialized = True
            logger.info("Service container initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize service container: {e}")
            await self.shutdown()
            raise

    async def shutdown(self) -> None:
        """Shutdown all services and cleanup resources."""
        logger.info("Shutting down service container...")

        if self._vector_store:
            try:
                await self._vector_store.wait_for_warming()
            except Exception as e:
                logger.error(f"Error waiting for cache warming: {e}")

        if self._cache_client:
            try:
                await self._cache_client.close()
            except Exception as e:
                logger.error(f"Error closing vector cache client: {e}")

        if self._primary:
            try:
                await self._primary.close()
                logger.info("Primary store closed")
            except Exception as e:
                logger.error(f"Error closing primary store: {e}")

        self._initialized = False
        logger.info("Service container shut down")

    @property
    def is_initialized(self) -> bool:
        """Check if the container is initialized."""
        return self._initialized

    @property
    def settings(self) -> Settings:
        """Get application settings."""
        if self._settings is None:
            raise ServiceNotInitializedError("settings")
        return self._settings

    @property
    def metrics(self) -> VectorCacheMetrics:
        if self._metrics is None:
            raise ServiceNotInitializedError("metrics")
        return self._metrics

    @property
    def cache_client(self) -> AuthenticatedCacheClient:
        if self._cache_client is None:
            raise ServiceNotInitializedError("cache_client")
        return self._cache_client

    @property
    def primary(self) -> PrimaryStore:
        if self._primary is None:
            raise ServiceNotInitializedError("primary")
        return self._primary

    @property
    def warmer(self) -> CacheWarmer:
        if self._warmer is None:
            raise ServiceNotInitializedError("warmer")
        return self._warmer

    @property
    def vector_store(self) -> CacheBackedStore:
        """Get the read-through vector store."""
        if self._vector_store is None:
            raise ServiceNotInitializedError("vector_store")
        return self._vector_store

    def set_metrics(self, metrics: VectorCacheMetrics) -> None:
        """Set the metrics instance (for testing)."""
        self._metrics = metrics

    def set_vector_store(self, store: CacheBackedStore) -> None:
        """Set the read-through store (for testing)."""
        self._vector_store = store


def create_container() -> ServiceContainer:
    """Create a new, isolated service container."""
    return ServiceContainer()
