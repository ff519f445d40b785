"""
Document model for DocuChat.

A Document is the metadata record of one upload. Its text lives only in
the chunks produced at ingest time; the uploaded file itself is not kept.
"""
import uuid
from django.db import models


class SourceType(models.TextChoices):
    """Content types accepted for ingest."""
    PLAIN_TEXT = 'text/plain', 'Plain text'
    PDF = 'application/pdf', 'PDF'


class Document(models.Model):
    """
    A document uploaded by a user for RAG indexing.

    Documents are immutable once created and are removed only by an
    explicit delete from their owner; deleting a document cascades to
    its chunks.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Owner is the JWT 'sub' claim (user ID)
    owner_user_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="JWT subject of the uploading user"
    )

    # File metadata
    filename = models.CharField(
        max_length=255,
        help_text="Original filename"
    )
    content_type = models.CharField(
        max_length=100,
        choices=SourceType.choices,
        help_text="MIME type of the uploaded file"
    )
    size_bytes = models.PositiveIntegerField(
        help_text="File size in bytes"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'documents'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['owner_user_id', 'created_at'], name='documents_owner_u_5af79c_idx'),
        ]

    def __str__(self):
        return f"{self.filename} ({self.content_type})"
