"""Shared test fixtures for vector cache tests."""

import hashlib
import json
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import httpx
import numpy as np
import pytest
from langchain_core.embeddings import Embeddings

from ragcache.models.documents import Document
from ragcache.services.cache_warmer import CacheWarmer
from ragcache.services.caching_store import CacheBackedStore
from ragcache.services.metrics import VectorCacheMetrics
from ragcache.stores.cache_client import AuthenticatedCacheClient
from ragcache.stores.memory_store import InMemoryVectorStore

BASE_PATH = "/gemfire-vectordb/v1"
INDEX_NAME = "vector-cache-index"
FILTERABLE_FIELDS = ["refnum1", "refnum2", "sourcePath", "timestamp"]


class FakeEmbeddings(Embeddings):
    """Deterministic embeddings with strictly positive components.

    Positive vectors keep every cosine similarity above zero, so result
    counts in tests depend only on top_k and filters.
    """

    def __init__(self, size: int = 16):
        self.size = size

    def _embed(self, text: str) -> List[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i % len(digest)] + 1) / 256 for i in range(self.size)]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text)


class FakeVectorIndexService:
    """In-process stand-in for the vector index REST service.

    Used as an httpx.MockTransport handler. Matches ``field:value``
    predicates joined by AND / OR and scores with (1 + cosine) / 2.
    """

    def __init__(self, index_name: Optional[str] = INDEX_NAME, fields: Optional[List[str]] = None):
        self.indexes: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.fail_with: Optional[int] = None
        self.raise_error: Optional[Exception] = None
        # Entry key -> status returned for DELETE of that entry only
        self.fail_deletes: Dict[str, int] = {}
        if index_name:
            self.indexes[index_name] = {
                "config": {"name": index_name, "fields": fields or FILTERABLE_FIELDS},
                "entries": {},
            }

    def entries(self, index_name: str = INDEX_NAME) -> Dict[str, Dict[str, Any]]:
        return self.indexes[index_name]["entries"]

    def requests_to(self, method: str, suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="simulated failure")

        raw_path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        parts = [unquote(part) for part in raw_path[len(BASE_PATH):].strip("/").split("/")]
        body = json.loads(request.content) if request.content else None

        if parts == ["indexes"] and request.method == "POST":
            return self._create_index(body)

        if len(parts) < 2 or parts[0] != "indexes":
            return httpx.Response(404, text="unknown path")

        index = self.indexes.get(parts[1])
        if len(parts) == 2:
            if index is None:
                return httpx.Response(404, text="index not found")
            if request.method == "GET":
                return httpx.Response(200, json=index["config"])
            if request.method == "DELETE":
                del self.indexes[parts[1]]
                return httpx.Response(200)
            return httpx.Response(405, text="method not allowed")

        if index is None:
            return httpx.Response(404, text="index not found")

        if parts[2] == "embeddings" and request.method == "POST":
            for entry in body:
                index["entries"][entry["key"]] = entry
            return httpx.Response(200)
        if parts[2] == "embeddings" and request.method == "DELETE" and len(parts) == 4:
            if parts[3] in self.fail_deletes:
                return httpx.Response(self.fail_deletes[parts[3]], text="simulated failure")
            index["entries"].pop(parts[3], None)
            return httpx.Response(200)
        if parts[2] == "query" and request.method == "POST":
            return self._query(index, body)

        return httpx.Response(405, text="method not allowed")

    def _create_index(self, body: Dict[str, Any]) -> httpx.Response:
        name = body["name"]
        if name in self.indexes:
            return httpx.Response(409, text="index exists")
        self.indexes[name] = {"config": body, "entries": {}}
        return httpx.Response(201, json=body)

    def _query(self, index: Dict[str, Any], body: Dict[str, Any]) -> httpx.Response:
        if "filter" in body:
            return httpx.Response(400, text="unknown parameter: filter")

        predicate = body.get("filter-query")
        query = np.asarray(body["vector"], dtype=float)
        results = []
        for entry in index["entries"].values():
            if predicate and not _matches_predicate(predicate, entry["metadata"]):
                continue
            vector = np.asarray(entry["vector"], dtype=float)
            cosine = float(np.dot(query, vector) / (np.linalg.norm(query) * np.linalg.norm(vector)))
            result = {"key": entry["key"], "score": (1 + cosine) / 2}
            if body.get("include-metadata"):
                result["metadata"] = entry["metadata"]
            results.append(result)

        results.sort(key=lambda r: r["score"], reverse=True)
        return httpx.Response(200, json=results[: body["top-k"]])


def _matches_predicate(predicate: str, metadata: Dict[str, str]) -> bool:
    clean = predicate.replace("(", "").replace(")", "")
    for disjunct in clean.split(" OR "):
        clauses = [clause.split(":", 1) for clause in disjunct.split(" AND ")]
        if all(metadata.get(field) == value for field, value in clauses):
            return True
    return False


def make_documents(count: int, refnum1: Any, prefix: str = "doc", **extra: Any) -> List[Document]:
    """Policy documents for one customer scope."""
    return [
        Document(
            id=f"{prefix}-{refnum1}-{i}",
            content=f"policy section {i} for customer {refnum1}",
            metadata={"refnum1": refnum1, "refnum2": 200 + i, "sourcePath": f"policies/{refnum1}.pdf", **extra},
        )
        for i in range(count)
    ]


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def embeddings():
    """Deterministic fake embedding model."""
    return FakeEmbeddings(size=16)


@pytest.fixture
def metrics():
    """Fresh metrics instance per test."""
    return VectorCacheMetrics()


@pytest.fixture
def primary(embeddings):
    """Empty in-memory primary store."""
    return InMemoryVectorStore(embeddings)


@pytest.fixture
def cache_service():
    """Fake vector index service with the default index created."""
    return FakeVectorIndexService()


@pytest.fixture
async def cache_client(embeddings, cache_service):
    """Authenticated cache client wired to the fake service."""
    client = AuthenticatedCacheClient(
        embeddings=embeddings,
        username="cache-user",
        password="cache-pass",
        index_name=INDEX_NAME,
        filterable_fields=FILTERABLE_FIELDS,
        transport=httpx.MockTransport(cache_service),
    )
    yield client
    await client.close()


@pytest.fixture
def disabled_cache_client(embeddings):
    """Cache client without credentials."""
    return AuthenticatedCacheClient(embeddings=embeddings, filterable_fields=FILTERABLE_FIELDS)


@pytest.fixture
def warmer(primary, cache_client, metrics):
    """Cache warmer over the in-memory primary."""
    return CacheWarmer(primary=primary, cache_client=cache_client, metrics=metrics)


@pytest.fixture
def caching_store(cache_client, primary, warmer, metrics):
    """Read-through store with synchronous warming."""
    return CacheBackedStore(cache=cache_client, primary=primary, warmer=warmer, metrics=metrics)


@pytest.fixture
def make_docs():
    """Factory for scoped policy documents."""
    return make_documents


@pytest.fixture
def index_service_factory():
    """Factory for additional fake vector index services."""
    return FakeVectorIndexService


@pytest.fixture
def embeddings_factory():
    """Factory for fake embedding models."""
    return FakeEmbeddings
