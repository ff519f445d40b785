"""
Retrieval service for RAG queries.

Performs user-scoped vector similarity search to find relevant document
chunks for a given query vector.

Scoring is cosine similarity (1 - cosine distance) everywhere: chunks are
indexed and queried with the same metric. Results are ordered by descending
similarity; equal scores fall back to ingest order (earliest first).

The owner filter is always part of the similarity query itself. Filtering
after ranking could silently return fewer than k results.

On PostgreSQL an approximate HNSW scan would still apply the owner filter
to only the first hnsw.ef_search candidates. Searches therefore run in a
transaction with `hnsw.iterative_scan = strict_order` (pgvector 0.8+), so
the scan keeps walking the graph until k owner rows are found, in exact
distance order. The walk is bounded by hnsw.max_scan_tuples; raise it on
the server for tenants that are a tiny fraction of a very large table.
"""
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from asgiref.sync import sync_to_async
from django.db import DatabaseError, connection, transaction

from apps.rag.embeddings import check_dimension
from apps.rag.errors import StorageError

logger = logging.getLogger(__name__)

# Default number of chunks to retrieve
DEFAULT_TOP_K = 3

# Maximum snippet length for log previews
SNIPPET_MAX_LENGTH = 80

# Keep filtered HNSW scans going until the LIMIT is satisfied
ITERATIVE_SCAN_SQL = "SET LOCAL hnsw.iterative_scan = strict_order"


@dataclass
class ChunkRecord:
    """A chunk ready to be stored in, or returned from, a vector index."""
    document_id: str
    owner_id: str
    chunk_index: int
    text: str
    embedding: List[float] = field(repr=False)
    filename: str = ""
    id: Optional[int] = None


@dataclass
class RetrievalResult:
    """One ranked hit for a query vector."""
    chunk: ChunkRecord
    score: float  # Cosine similarity, higher = more similar

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict (excludes the vector)."""
        return {
            "docId": self.chunk.document_id,
            "chunkId": self.chunk.id,
            "chunkIndex": self.chunk.chunk_index,
            "filename": self.chunk.filename,
            "score": round(self.score, 4),
        }


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 if either is zero)."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class VectorIndex(ABC):
    """Tenant-partitioned store of embedded chunks."""

    @abstractmethod
    async def add(self, chunks: List[ChunkRecord]) -> List[ChunkRecord]:
        """
        Store a batch of chunks.

        Returns:
            The stored chunks with their ids assigned

        Raises:
            StorageError: If the batch cannot be stored
        """

    @abstractmethod
    async def search(
        self,
        owner_id: str,
        query_vector: List[float],
        top_k: int,
    ) -> List[RetrievalResult]:
        """
        Return at most top_k chunks of `owner_id`, most similar first.

        Raises:
            StorageError: If the index cannot be queried
        """

    @abstractmethod
    async def delete_document(self, document_id: str) -> int:
        """Remove every chunk of a document. Returns the number removed."""


class InMemoryVectorIndex(VectorIndex):
    """
    Brute-force index held in process memory.

    Used when no PostgreSQL database is configured (local development) and
    by the test suite. Contents are lost on restart.
    """

    def __init__(self):
        self._chunks: List[ChunkRecord] = []
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._chunks)

    def all_chunks(self) -> List[ChunkRecord]:
        return list(self._chunks)

    async def add(self, chunks: List[ChunkRecord]) -> List[ChunkRecord]:
        for chunk in chunks:
            chunk.id = self._next_id
            self._next_id += 1
            self._chunks.append(chunk)
        return chunks

    async def delete_document(self, document_id: str) -> int:
        before = len(self._chunks)
        self._chunks = [c for c in self._chunks if c.document_id != document_id]
        return before - len(self._chunks)

    async def search(
        self,
        owner_id: str,
        query_vector: List[float],
        top_k: int,
    ) -> List[RetrievalResult]:
        # Tenant filter first, then score only the owner's chunks
        candidates = [c for c in self._chunks if c.owner_id == owner_id]

        scored = [
            RetrievalResult(chunk=c, score=cosine_similarity(query_vector, c.embedding))
            for c in candidates
        ]
        # Stable sort keeps insertion order among equal scores
        scored.sort(key=lambda r: -r.score)
        return scored[:top_k]


class PgVectorIndex(VectorIndex):
    """
    Index backed by the doc_chunks table and pgvector.

    Uses pgvector's cosine distance operator (<=>) with the HNSW
    vector_cosine_ops index. Searches enable iterative index scans so the
    owner filter cannot shrink the result below k.
    """

    def build_queryset(self, owner_id: str, query_vector: List[float], top_k: int):
        """Owner-scoped nearest-neighbour queryset (no query is executed)."""
        from pgvector.django import CosineDistance
        from apps.indexing.models import DocumentChunk

        return (
            DocumentChunk.objects
            .filter(owner_user_id=owner_id)
            .select_related('document')
            .annotate(distance=CosineDistance('embedding', query_vector))
            .order_by('distance', 'id')[:top_k]
        )

    def fetch_rows(self, owner_id: str, query_vector: List[float], top_k: int) -> list:
        """Execute the owner-scoped query with iterative HNSW scanning enabled."""
        queryset = self.build_queryset(owner_id, query_vector, top_k)

        with transaction.atomic():
            if connection.vendor == 'postgresql':
                with connection.cursor() as cursor:
                    cursor.execute(ITERATIVE_SCAN_SQL)
            return list(queryset)

    async def add(self, chunks: List[ChunkRecord]) -> List[ChunkRecord]:
        from apps.indexing.models import DocumentChunk

        rows = [
            DocumentChunk(
                document_id=c.document_id,
                owner_user_id=c.owner_id,
                chunk_index=c.chunk_index,
                text=c.text,
                embedding=c.embedding,
            )
            for c in chunks
        ]
        try:
            created = await DocumentChunk.objects.abulk_create(rows)
        except DatabaseError as e:
            logger.error(f"Failed to store {len(rows)} chunks: {e}")
            raise StorageError("Failed to store document chunks")

        for chunk, row in zip(chunks, created):
            chunk.id = row.pk
        return chunks

    async def delete_document(self, document_id: str) -> int:
        from apps.indexing.models import DocumentChunk

        try:
            deleted, _ = await DocumentChunk.objects.filter(document_id=document_id).adelete()
        except DatabaseError as e:
            logger.error(f"Failed to delete chunks of document {document_id}: {e}")
            raise StorageError("Failed to delete document chunks")
        return deleted

    async def search(
        self,
        owner_id: str,
        query_vector: List[float],
        top_k: int,
    ) -> List[RetrievalResult]:
        results = []
        try:
            rows = await sync_to_async(self.fetch_rows)(owner_id, query_vector, top_k)
            for row in rows:
                results.append(RetrievalResult(
                    chunk=ChunkRecord(
                        id=row.id,
                        document_id=str(row.document_id),
                        owner_id=row.owner_user_id,
                        chunk_index=row.chunk_index,
                        text=row.text,
                        embedding=list(row.embedding),
                        filename=row.document.filename,
                    ),
                    score=1.0 - float(row.distance),
                ))
        except DatabaseError as e:
            logger.error(f"Vector search failed for user {owner_id}: {e}")
            raise StorageError("Vector search failed")

        return results


class Retriever:
    """
    Top-k retrieval for a user's query vector.

    Wraps a VectorIndex and enforces the process-wide embedding dimension
    on every query vector.
    """

    def __init__(self, index: VectorIndex, dimension: int, top_k: int = DEFAULT_TOP_K):
        self.index = index
        self.dimension = dimension
        self.top_k = top_k

    async def retrieve(
        self,
        owner_id: str,
        query_vector: List[float],
        top_k: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """
        Retrieve the most similar chunks of one owner.

        Args:
            owner_id: JWT subject used as a hard tenant filter
            query_vector: Embedding of the user's question
            top_k: Number of chunks to retrieve (defaults to the configured k)

        Returns:
            At most top_k RetrievalResult objects, descending by score
        """
        k = self.top_k if top_k is None else top_k
        if k <= 0:
            return []

        check_dimension(query_vector, self.dimension)

        results = await self.index.search(owner_id, query_vector, k)

        logger.info(
            f"Retrieved {len(results)} chunks for user {owner_id} "
            f"(requested top_k={k})"
        )
        for result in results:
            preview = result.chunk.text[:SNIPPET_MAX_LENGTH].replace('\n', ' ')
            logger.debug(f"  score={result.score:.4f} chunk={result.chunk.id}: {preview}")

        return results
