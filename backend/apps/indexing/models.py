"""
Document chunk model for storing text chunks with embeddings.
"""
from django.conf import settings
from django.db import models
from pgvector.django import VectorField

from apps.docs.models import Document


class DocumentChunk(models.Model):
    """
    A text chunk from a document with its embedding vector.

    Chunks are created in one batch per document during ingest and never
    updated. The owner is copied from the document onto every chunk so the
    similarity query can filter by tenant without a join. The auto-increment
    primary key records ingest order and breaks ties between equal scores.
    """
    # Link to parent document
    document = models.ForeignKey(
        Document,
        on_delete=models.CASCADE,
        related_name='chunks',
        help_text="The source document"
    )

    owner_user_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="JWT subject of the document owner"
    )

    # Chunk ordering (0-indexed)
    chunk_index = models.PositiveIntegerField(
        help_text="Index of this chunk within the document (0-based)"
    )

    # Chunk text content
    text = models.TextField(
        help_text="The text content of this chunk"
    )

    embedding = VectorField(
        dimensions=settings.EMBEDDING_DIMENSION,
        help_text="Embedding vector from the configured embedding model"
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'doc_chunks'
        ordering = ['document', 'chunk_index']
        constraints = [
            models.UniqueConstraint(
                fields=['document', 'chunk_index'],
                name='unique_document_chunk'
            )
        ]
        indexes = [
            models.Index(fields=['document', 'chunk_index'], name='doc_chunks_documen_1f2e3a_idx'),
        ]

    def __str__(self):
        preview = self.text[:50] + '...' if len(self.text) > 50 else self.text
        return f"Chunk {self.chunk_index} of {self.document_id}: {preview}"
