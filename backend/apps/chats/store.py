"""
Message store and history loader.

Persists conversation turns and reads transcripts back. All reads are
scoped to the owning user; transcripts are ordered by created_at (then
insertion id) so concurrent writers never reorder a chat.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError
from django.utils import timezone

from apps.chats.models import Chat, Message, MessageRole
from apps.rag.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ConversationTurn:
    """One persisted message of a chat."""
    chat_id: str
    owner_id: str
    role: str
    text: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "chatId": self.chat_id,
            "role": self.role,
            "text": self.text,
            "createdAt": self.created_at.isoformat(),
        }


def turn_from_message(message: Message) -> ConversationTurn:
    return ConversationTurn(
        chat_id=str(message.chat_id),
        owner_id=message.owner_user_id,
        role=message.role,
        text=message.text,
        created_at=message.created_at,
    )


def chat_not_found() -> ValidationError:
    return ValidationError("Chat not found", code='CHAT_NOT_FOUND', status_code=404)


class MessageStore(ABC):
    """Append-only store of conversation turns."""

    @abstractmethod
    async def ensure_chat(self, chat_id: str, owner_id: str) -> None:
        """Raise ValidationError unless the chat exists and belongs to owner_id."""

    @abstractmethod
    async def append_turn(self, chat_id: str, owner_id: str, role: str, text: str) -> ConversationTurn:
        """Persist one turn."""

    @abstractmethod
    async def load_history(self, chat_id: str, owner_id: str) -> List[ConversationTurn]:
        """Return the chat transcript in ascending created_at order."""

    @abstractmethod
    async def touch_chat(self, chat_id: str) -> None:
        """Set the chat's updated_at to now."""


class DjangoMessageStore(MessageStore):
    """Message store on the chats/messages tables."""

    async def ensure_chat(self, chat_id: str, owner_id: str) -> None:
        try:
            exists = await Chat.objects.filter(id=chat_id, owner_user_id=owner_id).aexists()
        except DjangoValidationError:
            # Malformed chat id
            exists = False
        except DatabaseError as e:
            logger.error(f"Failed to look up chat {chat_id}: {e}")
            raise StorageError("Failed to look up chat")
        if not exists:
            raise chat_not_found()

    async def append_turn(self, chat_id: str, owner_id: str, role: str, text: str) -> ConversationTurn:
        if role not in MessageRole.values:
            raise ValidationError(f"Invalid role: {role}", code='INVALID_ROLE')
        try:
            message = await Message.objects.acreate(
                chat_id=chat_id,
                owner_user_id=owner_id,
                role=role,
                text=text,
            )
        except DatabaseError as e:
            logger.error(f"Failed to save {role} message for chat {chat_id}: {e}")
            raise StorageError("Failed to save message")
        return turn_from_message(message)

    async def load_history(self, chat_id: str, owner_id: str) -> List[ConversationTurn]:
        queryset = Message.objects.filter(
            chat_id=chat_id,
            owner_user_id=owner_id,
        ).order_by('created_at', 'id')
        try:
            return [turn_from_message(m) async for m in queryset]
        except DatabaseError as e:
            logger.error(f"Failed to load history for chat {chat_id}: {e}")
            raise StorageError("Failed to load chat history")

    async def touch_chat(self, chat_id: str) -> None:
        try:
            await Chat.objects.filter(id=chat_id).aupdate(updated_at=timezone.now())
        except DatabaseError as e:
            logger.error(f"Failed to update chat {chat_id}: {e}")
            raise StorageError("Failed to update chat")

    # Chat CRUD used by the chats API

    async def create_chat(self, owner_id: str, title: Optional[str] = None) -> Chat:
        try:
            return await Chat.objects.acreate(
                owner_user_id=owner_id,
                title=title or 'New Chat',
            )
        except DatabaseError as e:
            logger.error(f"Failed to create chat for user {owner_id}: {e}")
            raise StorageError("Failed to create chat")

    async def list_chats(self, owner_id: str) -> List[Chat]:
        try:
            return [c async for c in Chat.objects.filter(owner_user_id=owner_id).order_by('-updated_at')]
        except DatabaseError as e:
            logger.error(f"Failed to list chats for user {owner_id}: {e}")
            raise StorageError("Failed to list chats")

    async def delete_chat(self, chat_id: str, owner_id: str) -> None:
        await self.ensure_chat(chat_id, owner_id)
        try:
            # Messages cascade with the chat
            await Chat.objects.filter(id=chat_id, owner_user_id=owner_id).adelete()
        except DatabaseError as e:
            logger.error(f"Failed to delete chat {chat_id}: {e}")
            raise StorageError("Failed to delete chat")
