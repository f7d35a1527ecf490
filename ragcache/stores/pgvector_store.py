"""Primary store on PostgreSQL/pgvector.

Table layout:
    id UUID PRIMARY KEY, content TEXT, metadata JSON, embedding VECTOR(n)

All SQL runs on a synchronous SQLAlchemy engine inside a thread pool so the
event loop is never blocked; every call is bounded by a client-side
timeout and a server-side statement_timeout.
"""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

from langchain_core.embeddings import Embeddings
from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ragcache.core.config import Settings
from ragcache.core.errors import PrimaryUnavailableError, ValidationError
from ragcache.core.logging import get_logger
from ragcache.filters.expressions import FilterExpression
from ragcache.filters.translator import FIELD_NAME_PATTERN, FilterTranslator
from ragcache.models.documents import Document, ScopeRow, SearchRequest, decode_metadata

logger = get_logger(__name__)


def pgvector_to_list(value: Any) -> List[float]:
    """Convert a pgvector column value into a list of floats.

    Without the pgvector adapter registered, psycopg returns the text form
    ``[0.1,0.2,...]``.
    """
    if value is None:
        return []
    if isinstance(value, str):
        stripped = value.strip().strip("[]")
        if not stripped:
            return []
        return [float(part) for part in stripped.split(",")]
    if hasattr(value, "tolist"):
        return [float(v) for v in value.tolist()]
    return [float(v) for v in value]


def to_pgvector_literal(vector: Sequence[float]) -> str:
    """Render a vector as a pgvector text literal."""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def build_connection_string(settings: Settings) -> str:
    """Build a psycopg connection string from settings."""
    if settings.database_url:
        url = settings.database_url
        if "+asyncpg" in url:
            url = url.replace("+asyncpg", "+psycopg")
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+psycopg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+psycopg://", 1)
        return url

    password = settings.postgres_password or ""
    return (
        f"postgresql+psycopg://{settings.postgres_user}:{password}"
        f"@{settings.postgres_host}:{settings.postgres_port}/{settings.postgres_db}"
    )


class PgVectorStore:
    """Authoritative similarity store; also the warmer's scope source."""

    def __init__(
        self,
        embeddings: Embeddings,
        engine: Engine,
        table_name: str = "vector_store",
        dimensions: int = 768,
        timeout: float = 10.0,
        max_workers: int = 4,
    ):
        if not FIELD_NAME_PATTERN.match(table_name):
            raise ValidationError(f"Invalid table name: {table_name!r}", field="table_name", value=table_name)

        self.embeddings = embeddings
        self.engine = engine
        self.table_name = table_name
        self.dimensions = dimensions
        self.timeout = timeout
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pgvector")

    @classmethod
    def from_settings(cls, settings: Settings, embeddings: Embeddings) -> "PgVectorStore":
        """Create the store and its engine from settings."""
        statement_timeout_ms = int(settings.primary_timeout_seconds * 1000)
        engine = create_engine(
            build_connection_string(settings),
            pool_pre_ping=True,
            pool_size=settings.primary_pool_workers,
            connect_args={
                "options": f"-c statement_timeout={statement_timeout_ms}",
                "connect_timeout": max(1, int(settings.primary_timeout_seconds)),
            },
        )
        logger.info(
            f"Primary store configured: {settings.postgres_host}:{settings.postgres_port}/"
            f"{settings.postgres_db} table={settings.pgvector_table_name}"
        )
        return cls(
            embeddings=embeddings,
            engine=engine,
            table_name=settings.pgvector_table_name,
            dimensions=settings.pgvector_vector_dimensions,
            timeout=settings.primary_timeout_seconds,
            max_workers=settings.primary_pool_workers,
        )

    async def _run(self, operation: str, func: Callable, *args) -> Any:
        """Run a blocking database call in the pool with a timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self.executor, func, *args),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Primary store {operation} timed out after {self.timeout}s")
            raise PrimaryUnavailableError(
                f"Primary store {operation} timed out after {self.timeout}s", operation=operation
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Primary store {operation} failed: {e}")
            raise PrimaryUnavailableError(f"Primary store {operation} failed: {e}", operation=operation) from e

    # Schema

    async def ensure_schema(self) -> None:
        """Create the extension, table and HNSW cosine index if missing."""
        await self._run("ensure_schema", self._ensure_schema_sync)
        logger.info(f"Primary schema ready: {self.table_name} (dimensions={self.dimensions})")

    def _ensure_schema_sync(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id UUID PRIMARY KEY,
                    content TEXT,
                    metadata JSON,
                    embedding VECTOR({int(self.dimensions)})
                )
            """))
            conn.execute(text(f"""
                CREATE INDEX IF NOT EXISTS {self.table_name}_embedding_idx
                ON {self.table_name} USING hnsw (embedding vector_cosine_ops)
            """))

    # SimilarityStore

    async def add(self, documents: List[Document]) -> None:
        """Upsert documents, embedding any that arrive without a vector."""
        if not documents:
            return

        missing = [doc for doc in documents if doc.embedding is None]
        vectors: Dict[str, List[float]] = {}
        if missing:
            computed = await self.embeddings.aembed_documents([doc.content for doc in missing])
            vectors = {doc.id: vector for doc, vector in zip(missing, computed)}

        rows = [
            {
                "id": doc.id,
                "content": doc.content,
                "metadata": json.dumps(doc.metadata),
                "embedding": to_pgvector_literal(doc.embedding if doc.embedding is not None else vectors[doc.id]),
            }
            for doc in documents
        ]
        await self._run("add", self._add_sync, rows)
        logger.info(f"Stored {len(rows)} documents in {self.table_name}")

    def _add_sync(self, rows: List[Dict[str, Any]]) -> None:
        query = text(f"""
            INSERT INTO {self.table_name} (id, content, metadata, embedding)
            VALUES (CAST(:id AS uuid), :content, CAST(:metadata AS json), CAST(:embedding AS vector))
            ON CONFLICT (id) DO UPDATE
            SET content = EXCLUDED.content,
                metadata = EXCLUDED.metadata,
                embedding = EXCLUDED.embedding
        """)
        with self.engine.begin() as conn:
            conn.execute(query, rows)

    async def search(self, request: SearchRequest) -> List[Document]:
        """Cosine similarity search against the table."""
        vector = request.query_vector
        if vector is None:
            vector = await self.embeddings.aembed_query(request.query)
        params: Dict[str, Any] = {
            "query_vector": to_pgvector_literal(vector),
            "threshold": request.similarity_threshold,
            "top_k": request.top_k,
        }
        where = ""
        if request.filter_expression is not None:
            filter_sql, filter_params = FilterTranslator.to_sql(request.filter_expression)
            where = f"AND ({filter_sql})"
            params.update(filter_params)

        rows = await self._run("search", self._search_sync, where, params)
        return [
            Document(
                id=str(row.id),
                content=row.content or "",
                metadata=decode_metadata(row.metadata),
                score=float(row.score),
            )
            for row in rows
        ]

    def _search_sync(self, where: str, params: Dict[str, Any]) -> List[Any]:
        query = text(f"""
            SELECT id, content, metadata,
                   1 - (embedding <=> CAST(:query_vector AS vector)) AS score
            FROM {self.table_name}
            WHERE 1 - (embedding <=> CAST(:query_vector AS vector)) >= :threshold
            {where}
            ORDER BY embedding <=> CAST(:query_vector AS vector)
            LIMIT :top_k
        """)
        with self.engine.connect() as conn:
            return list(conn.execute(query, params))

    async def delete(
        self,
        ids: Optional[List[str]] = None,
        filter_expression: Optional[FilterExpression] = None,
    ) -> None:
        """Delete by ids, by filter, or both."""
        if ids:
            await self._run("delete", self._delete_ids_sync, list(ids))
            logger.info(f"Deleted {len(ids)} documents from {self.table_name}")
        if filter_expression is not None:
            filter_sql, params = FilterTranslator.to_sql(filter_expression)
            deleted = await self._run("delete", self._delete_where_sync, filter_sql, params)
            logger.info(f"Deleted {deleted} documents from {self.table_name} by filter")

    def _delete_ids_sync(self, ids: List[str]) -> None:
        query = text(f"DELETE FROM {self.table_name} WHERE CAST(id AS TEXT) IN :ids").bindparams(
            bindparam("ids", expanding=True)
        )
        with self.engine.begin() as conn:
            conn.execute(query, {"ids": ids})

    def _delete_where_sync(self, filter_sql: str, params: Dict[str, Any]) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(text(f"DELETE FROM {self.table_name} WHERE {filter_sql}"), params)
            return result.rowcount

    # ScopedDocumentSource

    async def fetch_scope(self, field: str, value: str) -> List[ScopeRow]:
        """Exact-match bulk read of one scope. No similarity, no limit."""
        if not FIELD_NAME_PATTERN.match(field):
            raise ValidationError(f"Invalid scope field: {field!r}", field="field", value=field)
        rows = await self._run("fetch_scope", self._fetch_scope_sync, field, str(value))
        logger.debug(f"Fetched {len(rows)} rows for scope {field}={value}")
        return rows

    def _fetch_scope_sync(self, field: str, value: str) -> List[ScopeRow]:
        query = text(f"""
            SELECT id, content, metadata, embedding
            FROM {self.table_name}
            WHERE metadata->>:field = :value
        """)
        with self.engine.connect() as conn:
            return [self._to_scope_row(row) for row in conn.execute(query, {"field": field, "value": value})]

    async def fetch_by_ids(self, ids: List[str]) -> List[ScopeRow]:
        """Read rows for the given ids; unknown ids are skipped."""
        if not ids:
            return []
        return await self._run("fetch_by_ids", self._fetch_by_ids_sync, list(ids))

    def _fetch_by_ids_sync(self, ids: List[str]) -> List[ScopeRow]:
        query = text(f"""
            SELECT id, content, metadata, embedding
            FROM {self.table_name}
            WHERE CAST(id AS TEXT) IN :ids
        """).bindparams(bindparam("ids", expanding=True))
        with self.engine.connect() as conn:
            return [self._to_scope_row(row) for row in conn.execute(query, {"ids": ids})]

    async def find_ids(self, filter_expression: FilterExpression) -> List[str]:
        """Ids of every row matching the filter."""
        filter_sql, params = FilterTranslator.to_sql(filter_expression)
        return await self._run("find_ids", self._find_ids_sync, filter_sql, params)

    def _find_ids_sync(self, filter_sql: str, params: Dict[str, Any]) -> List[str]:
        query = text(f"SELECT CAST(id AS TEXT) AS id FROM {self.table_name} WHERE {filter_sql}")
        with self.engine.connect() as conn:
            return [row.id for row in conn.execute(query, params)]

    async def count(self) -> int:
        """Number of rows in the table."""
        return await self._run("count", self._count_sync)

    def _count_sync(self) -> int:
        with self.engine.connect() as conn:
            return int(conn.execute(text(f"SELECT COUNT(*) FROM {self.table_name}")).scalar() or 0)

    @staticmethod
    def _to_scope_row(row: Any) -> ScopeRow:
        return ScopeRow(
            id=str(row.id),
            content=row.content or "",
            metadata=row.metadata,
            embedding=pgvector_to_list(row.embedding),
        )

    async def close(self) -> None:
        """Dispose of the engine and the worker pool."""
        self.executor.shutdown(wait=False)
        self.engine.dispose()
        logger.info("Primary store closed")
