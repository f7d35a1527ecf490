"""In-memory primary store for testing.

Mimics the pgvector table: rows keep their metadata exactly as stored
(JSON text, dict or None) so warming sees the same raw values it would
read from PostgreSQL.
"""

import json
from typing import Any, Dict, List, Optional

import numpy as np
from langchain_core.embeddings import Embeddings

from ragcache.core.logging import get_logger
from ragcache.filters.expressions import FilterExpression
from ragcache.filters.translator import FilterTranslator, to_wire_string
from ragcache.models.documents import Document, ScopeRow, SearchRequest, decode_metadata

logger = get_logger(__name__)


class InMemoryVectorStore:
    """SimilarityStore and ScopedDocumentSource backed by a dict.

    Features:
    - Cosine similarity with numpy
    - Raw metadata rows via put_row (including unparsable text)
    - Query counters for asserting which store served a request
    """

    def __init__(self, embeddings: Embeddings):
        self.embeddings = embeddings
        self._rows: Dict[str, ScopeRow] = {}
        self.search_calls = 0
        self.scope_fetches = 0

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._rows

    def put_row(self, row: ScopeRow) -> None:
        """Store a raw row as-is."""
        self._rows[row.id] = row

    async def add(self, documents: List[Document]) -> None:
        """Insert or overwrite documents by id."""
        missing = [doc for doc in documents if doc.embedding is None]
        vectors: Dict[str, List[float]] = {}
        if missing:
            computed = await self.embeddings.aembed_documents([doc.content for doc in missing])
            vectors = {doc.id: vector for doc, vector in zip(missing, computed)}

        for doc in documents:
            embedding = doc.embedding if doc.embedding is not None else vectors[doc.id]
            self._rows[doc.id] = ScopeRow(
                id=doc.id,
                content=doc.content,
                metadata=json.dumps(doc.metadata),
                embedding=list(embedding),
            )
        logger.debug(f"Stored {len(documents)} documents in memory")

    async def search(self, request: SearchRequest) -> List[Document]:
        """Brute-force cosine similarity over all matching rows."""
        self.search_calls += 1
        vector = request.query_vector
        if vector is None:
            vector = await self.embeddings.aembed_query(request.query)
        query_vector = np.asarray(vector, dtype=float)

        scored = []
        for row in self._rows.values():
            metadata = decode_metadata(row.metadata)
            if not FilterTranslator.matches(request.filter_expression, metadata):
                continue
            score = _cosine_similarity(query_vector, np.asarray(row.embedding, dtype=float))
            if score >= request.similarity_threshold:
                scored.append((score, row, metadata))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            Document(id=row.id, content=row.content, metadata=metadata, score=score)
            for score, row, metadata in scored[: request.top_k]
        ]

    async def delete(
        self,
        ids: Optional[List[str]] = None,
        filter_expression: Optional[FilterExpression] = None,
    ) -> None:
        for document_id in ids or []:
            self._rows.pop(document_id, None)
        if filter_expression is not None:
            for document_id in await self.find_ids(filter_expression):
                self._rows.pop(document_id, None)

    async def fetch_scope(self, field: str, value: str) -> List[ScopeRow]:
        self.scope_fetches += 1
        expected = to_wire_string(value)
        return [
            row for row in self._rows.values()
            if _metadata_value(row.metadata, field) == expected
        ]

    async def fetch_by_ids(self, ids: List[str]) -> List[ScopeRow]:
        return [self._rows[document_id] for document_id in ids if document_id in self._rows]

    async def find_ids(self, filter_expression: FilterExpression) -> List[str]:
        return [
            row.id for row in self._rows.values()
            if FilterTranslator.matches(filter_expression, decode_metadata(row.metadata))
        ]

    async def count(self) -> int:
        return len(self._rows)

    async def close(self) -> None:
        pass


def _cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def _metadata_value(raw: Any, field: str) -> Optional[str]:
    """Emulate ``metadata->>field``: None unless metadata is a JSON object."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict) or raw.get(field) is None:
        return None
    value = raw[field]
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return to_wire_string(value)
