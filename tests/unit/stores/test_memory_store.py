"""Tests for the in-memory primary store."""

import pytest

from ragcache.filters import and_, eq, or_
from ragcache.models.documents import Document, ScopeRow, SearchRequest


class TestInMemoryVectorStore:
    """Tests for the in-memory store surface."""

    @pytest.mark.asyncio
    async def test_add_embeds_missing_vectors(self, primary, embeddings):
        await primary.add([Document(id="a", content="policy text")])

        (row,) = await primary.fetch_by_ids(["a"])
        assert row.embedding == embeddings.embed_query("policy text")

    @pytest.mark.asyncio
    async def test_search_orders_by_similarity(self, primary, embeddings):
        await primary.add([
            Document(id="exact", content="other", embedding=embeddings.embed_query("policy")),
            Document(id="other", content="unrelated text"),
        ])

        docs = await primary.search(SearchRequest(query="policy", top_k=2))

        assert docs[0].id == "exact"
        assert docs[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_search_honours_top_k_and_filter(self, primary, make_docs):
        await primary.add(make_docs(6, 100001) + make_docs(6, 200002))

        docs = await primary.search(SearchRequest(query="policy", top_k=4, filter_expression=eq("refnum1", 200002)))

        assert len(docs) == 4
        assert all(doc.metadata["refnum1"] == 200002 for doc in docs)

    @pytest.mark.asyncio
    async def test_search_threshold(self, primary, embeddings):
        await primary.add([
            Document(id="a", content="x", embedding=[1.0, 0.0]),
            Document(id="b", content="y", embedding=[0.0, 1.0]),
        ])
        primary.embeddings = type(embeddings)(size=2)

        docs = await primary.search(SearchRequest(query="q", similarity_threshold=1.0))

        assert docs == []

    @pytest.mark.asyncio
    async def test_fetch_scope_exact_match(self, primary, make_docs):
        await primary.add(make_docs(3, 100001) + make_docs(2, 1000010))

        rows = await primary.fetch_scope("refnum1", "100001")

        assert len(rows) == 3
        assert primary.scope_fetches == 1

    @pytest.mark.asyncio
    async def test_fetch_scope_skips_unparsable_metadata(self, primary):
        primary.put_row(ScopeRow(id="raw", content="x", metadata="refnum1=1", embedding=[1.0]))
        assert await primary.fetch_scope("refnum1", "1") == []

    @pytest.mark.asyncio
    async def test_search_keeps_raw_metadata_under_fallback_key(self, primary):
        primary.put_row(ScopeRow(id="raw", content="x", metadata="refnum1=1", embedding=[1.0] * 16))

        (doc,) = await primary.search(SearchRequest(query="q"))

        assert doc.metadata == {"metadata": "refnum1=1"}

    @pytest.mark.asyncio
    async def test_find_ids_and_delete_by_filter(self, primary, make_docs):
        await primary.add(make_docs(2, 1) + make_docs(2, 2) + make_docs(2, 3))
        expr = or_(eq("refnum1", 1), and_(eq("refnum1", 2), eq("refnum2", 200)))

        ids = await primary.find_ids(expr)
        await primary.delete(filter_expression=expr)

        assert sorted(ids) == ["doc-1-0", "doc-1-1", "doc-2-0"]
        assert await primary.count() == 3

    @pytest.mark.asyncio
    async def test_delete_by_ids_ignores_unknown(self, primary, make_docs):
        await primary.add(make_docs(2, 1))
        await primary.delete(ids=["doc-1-0", "nope"])
        assert len(primary) == 1
