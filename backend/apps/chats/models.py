"""
Chat and message models.

Messages are append-only. A chat transcript is always read back ordered
by created_at (then id), never by arrival order.
"""
import uuid
from django.db import models


class MessageRole(models.TextChoices):
    USER = 'user', 'User'
    ASSISTANT = 'assistant', 'Assistant'


class Chat(models.Model):
    """A conversation owned by one user."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    owner_user_id = models.CharField(max_length=255, db_index=True)
    title = models.CharField(max_length=255, default='New Chat')

    created_at = models.DateTimeField(auto_now_add=True)
    # Last-writer-wins under concurrent turns
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'chats'
        ordering = ['-updated_at']
        indexes = [
            models.Index(fields=['owner_user_id', 'updated_at'], name='chats_owner_u_8c1d2e_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.owner_user_id})"


class Message(models.Model):
    """One conversation turn."""
    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name='messages',
    )
    owner_user_id = models.CharField(max_length=255)
    role = models.CharField(max_length=20, choices=MessageRole.choices)
    text = models.TextField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'messages'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['chat', 'created_at'], name='messages_chat_id_4b7a9f_idx'),
        ]

    def __str__(self):
        return f"{self.role}: {self.text[:50]}"
