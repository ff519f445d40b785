"""
RAG API views.

Provides endpoints for:
- POST /ask - Buffered RAG answer within a chat
- POST /ask/stream - Streamed answer to a bare question
"""
import json
import logging

from django.http import HttpRequest, JsonResponse, StreamingHttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.authn.audit import audit_rag_query, audit_rag_stream
from apps.authn.middleware import auth_required
from apps.authn.ratelimit import rate_limited, check_ask_rate_limit
from apps.rag.embeddings import normalize_query
from apps.rag.errors import RAGError, ValidationError, error_response
from apps.rag.pipeline import PipelineRequest
from apps.rag.services import get_services

logger = logging.getLogger(__name__)


def parse_json_body(request: HttpRequest) -> dict:
    """
    Decode a JSON object request body.

    Raises:
        ValidationError: If the body is not a JSON object
    """
    try:
        body = json.loads(request.body or b'{}')
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON", code='INVALID_JSON')
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", code='INVALID_JSON')
    return body


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
@rate_limited(check_ask_rate_limit, 'ask')
async def ask(request):
    """
    POST /ask

    Full RAG pipeline: embed, retrieve, assemble with chat history,
    generate, persist both turns.

    History is loaded before the new user turn is stored, so the Chat
    History block holds only earlier turns. This is deliberate: the
    question already has its own Question block, and storing it first
    would repeat it at the end of the transcript.

    Request body:
        {
            "question": "What is the main topic?",
            "chatId": "uuid"
        }

    Response (201):
        {
            "message": "Based on your documents, the main topic is..."
        }
    """
    user_id = request.user_claims.sub
    services = get_services()
    question = None

    try:
        body = parse_json_body(request)
        question = normalize_query(body.get('question', ''))

        chat_id = body.get('chatId')
        if not chat_id or not isinstance(chat_id, str):
            raise ValidationError("chatId is required", code='MISSING_CHAT_ID')

        await services.store.ensure_chat(chat_id, user_id)

        # Earlier turns only; the pipeline stores the new user turn
        history = await services.store.load_history(chat_id, user_id)

        result = await services.pipeline.run(PipelineRequest(
            owner_id=user_id,
            chat_id=chat_id,
            question=question,
            history_turns=history,
        ))

    except RAGError as e:
        if question is not None:
            audit_rag_query(
                request,
                question_length=len(question),
                top_k=services.retriever.top_k,
                chunk_count=0,
                outcome='failure',
            )
        return error_response(e)

    audit_rag_query(
        request,
        question_length=len(question),
        top_k=services.retriever.top_k,
        chunk_count=result.chunk_count,
    )

    return JsonResponse({'message': result.answer}, status=201)


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
@rate_limited(check_ask_rate_limit, 'ask_stream')
async def ask_stream(request):
    """
    POST /ask/stream

    Streams the model's answer to the bare question as plain text, one
    write per fragment. No retrieval and no chat history are used, and
    nothing is persisted.

    Request body:
        {
            "question": "Explain vector search"
        }

    A failure before the first fragment returns a JSON error; a failure
    after that ends the stream.
    """
    services = get_services()

    try:
        body = parse_json_body(request)
        question = normalize_query(body.get('question', ''))
        fragments = await services.responder.start(question)
    except RAGError as e:
        return error_response(e)

    audit_rag_stream(request, question_length=len(question))

    response = StreamingHttpResponse(fragments, content_type='text/plain; charset=utf-8')
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response
