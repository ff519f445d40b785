"""
Tests for tenant-scoped vector retrieval.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError

from apps.rag.errors import StorageError
from apps.rag.retrieval import (
    ChunkRecord,
    ITERATIVE_SCAN_SQL,
    InMemoryVectorIndex,
    PgVectorIndex,
    RetrievalResult,
    Retriever,
    cosine_similarity,
)


def record(owner, text, vector, doc='doc-1', index=0):
    return ChunkRecord(
        document_id=doc,
        owner_id=owner,
        chunk_index=index,
        text=text,
        embedding=vector,
    )


# ============================================================================
# Similarity
# ============================================================================

class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


# ============================================================================
# In-Memory Index
# ============================================================================

class TestInMemoryVectorIndex:
    """Ranking, tenant isolation and tie-breaking."""

    @pytest.mark.asyncio
    async def test_results_descend_by_score(self):
        index = InMemoryVectorIndex()
        await index.add([
            record('u1', 'far', [0.0, 1.0]),
            record('u1', 'near', [1.0, 0.1]),
            record('u1', 'middle', [1.0, 1.0]),
        ])

        results = await index.search('u1', [1.0, 0.0], 3)

        assert [r.chunk.text for r in results] == ['near', 'middle', 'far']
        assert results[0].score >= results[1].score >= results[2].score

    @pytest.mark.asyncio
    async def test_tenant_isolation(self):
        index = InMemoryVectorIndex()
        await index.add([
            record('alice', 'alice secret', [1.0, 0.0]),
            record('bob', 'bob exact match', [1.0, 0.0]),
            record('bob', 'bob other', [0.5, 0.5]),
        ])

        results = await index.search('alice', [1.0, 0.0], 10)

        assert [r.chunk.owner_id for r in results] == ['alice']

    @pytest.mark.asyncio
    async def test_owner_filter_applies_before_top_k(self):
        index = InMemoryVectorIndex()
        # Other tenant's chunks score higher than any of u1's
        await index.add([record('u2', f'other {i}', [1.0, 0.0]) for i in range(5)])
        await index.add([record('u1', f'mine {i}', [0.2, 1.0]) for i in range(3)])

        results = await index.search('u1', [1.0, 0.0], 3)

        assert len(results) == 3
        assert all(r.chunk.owner_id == 'u1' for r in results)

    @pytest.mark.asyncio
    async def test_equal_scores_keep_insertion_order(self):
        index = InMemoryVectorIndex()
        await index.add([record('u1', f'chunk {i}', [1.0, 1.0], index=i) for i in range(5)])

        results = await index.search('u1', [1.0, 1.0], 3)

        assert [r.chunk.text for r in results] == ['chunk 0', 'chunk 1', 'chunk 2']

    @pytest.mark.asyncio
    async def test_deterministic_for_same_state(self):
        index = InMemoryVectorIndex()
        await index.add([
            record('u1', 'a', [0.3, 0.7]),
            record('u1', 'b', [0.7, 0.3]),
            record('u1', 'c', [0.7, 0.3]),
        ])

        first = await index.search('u1', [0.6, 0.4], 2)
        second = await index.search('u1', [0.6, 0.4], 2)

        assert [r.chunk.id for r in first] == [r.chunk.id for r in second]

    @pytest.mark.asyncio
    async def test_add_assigns_increasing_ids(self):
        index = InMemoryVectorIndex()

        stored = await index.add([record('u1', 'a', [1.0]), record('u1', 'b', [1.0])])

        assert [c.id for c in stored] == [1, 2]
        assert len(index) == 2

    @pytest.mark.asyncio
    async def test_delete_document(self):
        index = InMemoryVectorIndex()
        await index.add([
            record('u1', 'a', [1.0], doc='d1'),
            record('u1', 'b', [1.0], doc='d1'),
            record('u1', 'c', [1.0], doc='d2'),
        ])

        removed = await index.delete_document('d1')

        assert removed == 2
        assert [c.text for c in index.all_chunks()] == ['c']

    @pytest.mark.asyncio
    async def test_unknown_owner_gets_nothing(self):
        index = InMemoryVectorIndex()
        await index.add([record('u1', 'a', [1.0])])

        assert await index.search('nobody', [1.0], 3) == []


# ============================================================================
# Retriever
# ============================================================================

class TestRetriever:
    """Top-k wrapper around an index."""

    @pytest.mark.asyncio
    async def test_default_top_k(self):
        index = InMemoryVectorIndex()
        await index.add([record('u1', f'c{i}', [1.0, float(i)]) for i in range(6)])
        retriever = Retriever(index, dimension=2, top_k=3)

        results = await retriever.retrieve('u1', [1.0, 0.0])

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_zero_k_returns_empty(self):
        retriever = Retriever(InMemoryVectorIndex(), dimension=2)

        assert await retriever.retrieve('u1', [1.0, 0.0], top_k=0) == []

    @pytest.mark.asyncio
    async def test_query_dimension_mismatch_is_fatal(self):
        retriever = Retriever(InMemoryVectorIndex(), dimension=4)

        with pytest.raises(ImproperlyConfigured):
            await retriever.retrieve('u1', [1.0, 0.0])

    @pytest.mark.asyncio
    async def test_empty_index(self):
        retriever = Retriever(InMemoryVectorIndex(), dimension=2)

        assert await retriever.retrieve('u1', [1.0, 0.0]) == []


# ============================================================================
# pgvector Query Shape
# ============================================================================

class TestPgVectorQuery:
    """The SQL query is owner-filtered and ordered by distance, then id."""

    def test_queryset_filters_owner_and_orders(self):
        queryset = PgVectorIndex().build_queryset('alice', [0.1] * 8, 3)

        assert queryset.query.order_by == ('distance', 'id')
        assert queryset.query.high_mark == 3
        where_columns = [child.lhs.target.column for child in queryset.query.where.children]
        assert 'owner_user_id' in where_columns
        assert 'distance' in queryset.query.annotations

    @pytest.mark.asyncio
    async def test_search_enables_iterative_scan_on_postgres(self):
        row = SimpleNamespace(
            id=7,
            document_id='doc-1',
            owner_user_id='alice',
            chunk_index=0,
            text='alice text',
            embedding=[0.1] * 8,
            document=SimpleNamespace(filename='a.txt'),
            distance=0.25,
        )
        connection = MagicMock(vendor='postgresql')
        cursor = connection.cursor.return_value.__enter__.return_value
        index = PgVectorIndex()

        with patch('apps.rag.retrieval.connection', connection), \
                patch('apps.rag.retrieval.transaction.atomic') as atomic, \
                patch.object(index, 'build_queryset', return_value=[row]):
            results = await index.search('alice', [0.1] * 8, 3)

        atomic.assert_called_once()
        cursor.execute.assert_called_once_with(ITERATIVE_SCAN_SQL)
        assert ITERATIVE_SCAN_SQL == "SET LOCAL hnsw.iterative_scan = strict_order"
        assert results[0].chunk.id == 7
        assert results[0].chunk.filename == 'a.txt'
        assert results[0].score == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_search_skips_scan_setting_elsewhere(self):
        connection = MagicMock(vendor='sqlite')
        index = PgVectorIndex()

        with patch('apps.rag.retrieval.connection', connection), \
                patch('apps.rag.retrieval.transaction.atomic'), \
                patch.object(index, 'build_queryset', return_value=[]):
            results = await index.search('alice', [0.1] * 8, 3)

        assert results == []
        connection.cursor.assert_not_called()

    @pytest.mark.asyncio
    async def test_database_error_is_storage_error(self):
        index = PgVectorIndex()

        with patch.object(index, 'fetch_rows', side_effect=DatabaseError("relation missing")):
            with pytest.raises(StorageError):
                await index.search('alice', [0.1] * 8, 3)

    def test_to_dict_excludes_vector(self):
        result = RetrievalResult(
            chunk=record('u1', 'text', [1.0, 2.0]),
            score=0.123456,
        )

        data = result.to_dict()

        assert data['score'] == 0.1235
        assert 'embedding' not in data
