"""Configuration settings for the vector cache layer."""

from pydantic_settings import BaseSettings
from typing import Optional, List, Literal
import os


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "RAG Vector Cache"
    app_version: str = "0.3.0"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Primary store (PostgreSQL/pgvector)
    database_url: Optional[str] = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: Optional[str] = None
    postgres_db: str = "postgres"
    pgvector_table_name: str = "vector_store"
    pgvector_vector_dimensions: int = 768
    primary_timeout_seconds: float = 10.0  # Bound on every primary round-trip
    primary_pool_workers: int = 4  # Threads for blocking database calls

    # Cache (vector index REST service)
    cache_host: str = "localhost"
    cache_port: int = 8080
    cache_base_path: str = "/gemfire-vectordb/v1"
    cache_ssl_enabled: Optional[bool] = None  # None = enable when port is 443
    cache_username: Optional[str] = None  # No username = cache disabled
    cache_password: Optional[str] = None
    cache_index_name: str = "vector-cache-index"
    cache_timeout_seconds: float = 2.0  # Unresponsive cache must not stall queries
    cache_connect_timeout_seconds: float = 1.0
    cache_beam_width: int = 100
    cache_max_connections: int = 16
    cache_similarity_function: str = "COSINE"
    cache_buckets: int = 0
    # Fields must be declared at index creation to be filterable later
    cache_filterable_fields: List[str] = ["refnum1", "refnum2", "sourcePath", "timestamp"]
    cache_initialize_schema: bool = False

    # Warming
    scope_field: str = "refnum1"  # Tenant isolation field
    warm_on_miss: bool = True
    warm_mode: Literal["sync", "async"] = "sync"

    # Embeddings (query vectors only; ingestion is out of scope)
    openai_api_key: Optional[str] = None
    openai_embedding_model: str = "text-embedding-3-small"
    openai_embedding_dimensions: int = 768

    # Retrieval defaults
    retrieval_top_k: int = 5
    retrieval_similarity_threshold: float = 0.7

    class Config:
        env_file = ".env"
        env_prefix = "RAGCACHE_"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields in .env file

    @property
    def cache_enabled(self) -> bool:
        """The cache is only usable with credentials."""
        return bool(self.cache_username)


# Create settings instance
settings = Settings()

# Override with environment variables
if os.getenv("OPENAI_API_KEY"):
    settings.openai_api_key = os.getenv("OPENAI_API_KEY").strip()
