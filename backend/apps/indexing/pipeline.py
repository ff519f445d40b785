"""
Document ingest pipeline.

Turns the extracted text of one upload into indexed chunks:

1. CHUNK: Split text into overlapping fixed-size windows
2. EMBED: Embed every chunk (bounded retries for transient failures)
3. STORE: Create the Document row and add all chunks to the vector index

Embedding runs before anything is written, so an upstream failure leaves
no document behind. If the index write fails, the document row is removed
again and the caller gets a StorageError.
"""
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from django.conf import settings
from django.db import DatabaseError

from apps.authn.audit import audit_ingest_completed, audit_ingest_failed
from apps.docs.models import Document
from apps.indexing.chunker import chunk_text, DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_OVERLAP
from apps.indexing.retry import retry_with_backoff, EMBEDDING_RETRY_CONFIG, RetryExhausted
from apps.rag.embeddings import EmbeddingError, EmbeddingGateway
from apps.rag.errors import RAGError, StorageError, ValidationError
from apps.rag.retrieval import ChunkRecord, VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Outcome of a successful ingest."""
    document: Document
    chunk_count: int


class IngestPipeline:
    """Chunk -> embed -> store for one document at a time."""

    def __init__(
        self,
        gateway: EmbeddingGateway,
        index: VectorIndex,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        retry_config: Optional[dict] = None,
    ):
        self.gateway = gateway
        self.index = index
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.retry_config = retry_config or getattr(
            settings, 'INGEST_EMBED_RETRY', EMBEDDING_RETRY_CONFIG
        )

    async def _embed_chunk(self, index: int, text: str) -> List[float]:
        try:
            return await retry_with_backoff(
                func=lambda: self.gateway.embed(text),
                config=self.retry_config,
                exceptions=(EmbeddingError,),
                on_retry=lambda attempt, err, backoff: logger.warning(
                    f"Embedding retry {attempt + 1} for chunk {index}: {err}"
                )
            )
        except RetryExhausted as e:
            raise EmbeddingError(
                f"Failed to embed chunk {index} after {e.attempts} attempts: {e.last_exception}"
            )

    async def ingest(
        self,
        owner_id: str,
        filename: str,
        content_type: str,
        size_bytes: int,
        text: str,
    ) -> IngestResult:
        """
        Index the text of one uploaded document for its owner.

        Args:
            owner_id: JWT subject of the uploader; copied onto every chunk
            filename: Original filename
            content_type: Accepted MIME type of the upload
            size_bytes: Size of the uploaded file
            text: Extracted document text

        Returns:
            IngestResult with the stored Document and its chunk count

        Raises:
            ValidationError: If the document has no text
            UpstreamError: If a chunk cannot be embedded
            StorageError: If the document or its chunks cannot be stored
        """
        started = time.monotonic()

        try:
            if not text.strip():
                raise ValidationError(
                    "No text could be extracted from the document",
                    code='EMPTY_DOCUMENT',
                )

            # Stage 1: CHUNK
            chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
            logger.info(f"Created {len(chunks)} chunks from {filename}")

            for chunk in chunks[:3]:
                preview = chunk.text[:100].replace('\n', ' ')
                logger.debug(f"  Chunk {chunk.index}: {preview}...")

            # Stage 2: EMBED
            embeddings = []
            for chunk in chunks:
                embeddings.append(await self._embed_chunk(chunk.index, chunk.text))

            # Stage 3: STORE
            document = await self._create_document(owner_id, filename, content_type, size_bytes)
            records = [
                ChunkRecord(
                    document_id=str(document.id),
                    owner_id=owner_id,
                    chunk_index=chunk.index,
                    text=chunk.text,
                    embedding=embedding,
                    filename=filename,
                )
                for chunk, embedding in zip(chunks, embeddings)
            ]

            try:
                await self.index.add(records)
            except StorageError:
                await self._discard_document(document)
                raise

        except RAGError as e:
            logger.error(f"Ingest of {filename} for user {owner_id} failed: [{e.code}] {e.message}")
            audit_ingest_failed(owner_id, filename, e.code)
            raise

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Indexed {filename} as {document.id}: {len(records)} chunks in {elapsed_ms:.0f}ms"
        )
        audit_ingest_completed(str(document.id), owner_id, len(records))

        return IngestResult(document=document, chunk_count=len(records))

    async def _create_document(
        self,
        owner_id: str,
        filename: str,
        content_type: str,
        size_bytes: int,
    ) -> Document:
        try:
            return await Document.objects.acreate(
                owner_user_id=owner_id,
                filename=filename,
                content_type=content_type,
                size_bytes=size_bytes,
            )
        except DatabaseError as e:
            logger.error(f"Failed to create document record for {filename}: {e}")
            raise StorageError("Failed to store document")

    async def _discard_document(self, document: Document) -> None:
        try:
            await document.adelete()
        except DatabaseError as e:
            logger.error(f"Failed to remove document {document.id} after index failure: {e}")
