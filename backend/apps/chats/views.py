"""
Chat management views.

Provides endpoints for:
- POST /chat - Create a chat
- GET /chats - List user's chats (most recently active first)
- POST /chats/<id>/messages - Append a message
- GET /chats/<id>/messages - Read a chat transcript
- DELETE /chats/<id> - Delete a chat and its messages
"""
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.authn.middleware import auth_required
from apps.rag.errors import RAGError, ValidationError, error_response
from apps.rag.services import get_services
from apps.rag.views import parse_json_body
from .models import Chat

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def chat_to_dict(chat: Chat) -> dict:
    return {
        'id': str(chat.id),
        'title': chat.title,
        'createdAt': chat.created_at.isoformat(),
        'updatedAt': chat.updated_at.isoformat(),
    }


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
async def create_chat(request):
    """
    Create a new chat.

    POST /chat

    Request body (optional):
        {"title": "Quarterly report"}

    Returns:
        {"chatId": "uuid"}
    """
    user_id = request.user_claims.sub

    try:
        body = parse_json_body(request)
        title = body.get('title') or None
        if title is not None:
            if not isinstance(title, str):
                raise ValidationError("title must be a string", code='INVALID_TITLE')
            title = title.strip()[:MAX_TITLE_LENGTH] or None

        chat = await get_services().store.create_chat(user_id, title)
    except RAGError as e:
        return error_response(e)

    logger.info(f"Created chat {chat.id} for user {user_id}")
    return JsonResponse({'chatId': str(chat.id)})


@csrf_exempt
@require_http_methods(["GET"])
@auth_required
async def list_chats(request):
    """
    List the caller's chats, newest activity first.

    GET /chats

    Returns:
        {"chats": [{"id", "title", "createdAt", "updatedAt"}, ...]}
    """
    try:
        chats = await get_services().store.list_chats(request.user_claims.sub)
    except RAGError as e:
        return error_response(e)

    return JsonResponse({'chats': [chat_to_dict(c) for c in chats]})


@csrf_exempt
@require_http_methods(["GET", "POST"])
@auth_required
async def chat_messages(request, chat_id):
    """
    Read or append chat messages.

    GET /chats/<chat_id>/messages
        Returns {"messages": [{"chatId", "role", "text", "createdAt"}, ...]}
        in ascending createdAt order.

    POST /chats/<chat_id>/messages
        Body {"role": "user" | "assistant", "text": "..."}
        Returns {"success": true}
    """
    user_id = request.user_claims.sub
    chat_id = str(chat_id)
    store = get_services().store

    try:
        await store.ensure_chat(chat_id, user_id)

        if request.method == 'GET':
            turns = await store.load_history(chat_id, user_id)
            return JsonResponse({'messages': [t.to_dict() for t in turns]})

        body = parse_json_body(request)
        role = body.get('role')
        text = body.get('text')
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("text is required", code='MISSING_TEXT')

        await store.append_turn(chat_id, user_id, role, text)
        await store.touch_chat(chat_id)

    except RAGError as e:
        return error_response(e)

    return JsonResponse({'success': True})


@csrf_exempt
@require_http_methods(["DELETE"])
@auth_required
async def delete_chat(request, chat_id):
    """
    Delete a chat with all its messages.

    DELETE /chats/<chat_id>

    Returns:
        {"success": true}
    """
    user_id = request.user_claims.sub

    try:
        await get_services().store.delete_chat(str(chat_id), user_id)
    except RAGError as e:
        return error_response(e)

    logger.info(f"Deleted chat {chat_id} for user {user_id}")
    return JsonResponse({'success': True})
