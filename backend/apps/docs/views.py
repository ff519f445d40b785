"""
Document upload and management views.

Provides endpoints for:
- POST /upload - Upload and index a document
- GET /documents - List user's documents
- DELETE /documents/<id> - Delete a document and its chunks
"""
import logging
from pathlib import Path

from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import DatabaseError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.authn.audit import (
    audit_document_uploaded,
    audit_document_rejected,
    audit_document_deleted,
)
from apps.authn.middleware import auth_required
from apps.authn.ratelimit import rate_limited, check_upload_rate_limit
from apps.indexing.extractor import extract_text
from apps.rag.errors import (
    RAGError,
    StorageError,
    UnsupportedContentError,
    ValidationError,
    error_response,
)
from apps.rag.services import get_services
from .models import Document
from .storage import get_spool

logger = logging.getLogger(__name__)


# Extension fallback for clients that send a generic MIME type
EXT_TO_MIME = {
    '.pdf': 'application/pdf',
    '.txt': 'text/plain',
}


def get_extension(filename: str) -> str:
    """Extract file extension from filename."""
    return Path(filename).suffix.lower()


def normalize_content_type(content_type: str, filename: str) -> str:
    """
    Normalize content type, using file extension as fallback.

    Parameters such as '; charset=utf-8' are dropped. Some clients send
    application/octet-stream for everything, so the extension decides then.
    """
    content_type = (content_type or '').split(';')[0].strip().lower()

    if content_type in ('application/octet-stream', 'binary/octet-stream', ''):
        return EXT_TO_MIME.get(get_extension(filename), content_type)

    return content_type


def validate_upload(content_type: str, size_bytes: int) -> None:
    """
    Reject uploads that must not reach chunking or embedding.

    Raises:
        UnsupportedContentError: If the content type is not accepted
        ValidationError: If the file is too large
    """
    if content_type not in settings.ALLOWED_CONTENT_TYPES:
        raise UnsupportedContentError(
            f"Unsupported file type: {content_type or 'unknown'}. Allowed: PDF, TXT"
        )

    if size_bytes > settings.MAX_UPLOAD_SIZE:
        max_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
        raise ValidationError(
            f"File too large. Maximum size is {max_mb}MB",
            code='FILE_TOO_LARGE',
        )


def document_to_dict(document: Document) -> dict:
    return {
        'id': str(document.id),
        'filename': document.filename,
        'contentType': document.content_type,
        'sizeBytes': document.size_bytes,
        'createdAt': document.created_at.isoformat(),
    }


@csrf_exempt
@require_http_methods(["POST"])
@auth_required
@rate_limited(check_upload_rate_limit, 'upload')
async def upload_document(request):
    """
    Upload a document and index it for the caller.

    POST /upload

    Accepts multipart/form-data with a 'file' field.

    Allowed file types: PDF, TXT
    Max size: 50MB (configurable)

    Type and size are checked before anything is written. An accepted
    file is spooled to a temporary artifact that is removed before the
    response is sent, whatever the outcome.

    Returns (201):
        {
            "message": "File uploaded and indexed",
            "documentId": "uuid",
            "chunkCount": 3
        }
    """
    user_id = request.user_claims.sub

    if 'file' not in request.FILES:
        return error_response(ValidationError("No file provided", code='MISSING_FILE'))

    uploaded_file = request.FILES['file']
    filename = uploaded_file.name
    size_bytes = uploaded_file.size
    content_type = normalize_content_type(uploaded_file.content_type, filename)

    logger.info(f"Upload request: {filename}, {content_type}, {size_bytes} bytes from user {user_id}")

    try:
        # Rejected uploads never touch the disk
        validate_upload(content_type, size_bytes)

        spool = await sync_to_async(get_spool)()
        async with spool.temporary_upload(uploaded_file, get_extension(filename)) as path:
            text = await sync_to_async(extract_text)(path, content_type)

        result = await get_services().ingest.ingest(
            owner_id=user_id,
            filename=filename,
            content_type=content_type,
            size_bytes=size_bytes,
            text=text,
        )

    except (UnsupportedContentError, ValidationError) as e:
        audit_document_rejected(request, filename, content_type, e.code)
        return error_response(e)
    except RAGError as e:
        return error_response(e)

    audit_document_uploaded(
        request,
        document_id=str(result.document.id),
        filename=filename,
        size_bytes=size_bytes,
        chunk_count=result.chunk_count,
    )

    return JsonResponse({
        'message': 'File uploaded and indexed',
        'documentId': str(result.document.id),
        'chunkCount': result.chunk_count,
    }, status=201)


@csrf_exempt
@require_http_methods(["GET"])
@auth_required
async def list_documents(request):
    """
    List all documents for the authenticated user.

    GET /documents

    Returns:
        {
            "documents": [
                {
                    "id": "uuid",
                    "filename": "document.pdf",
                    "contentType": "application/pdf",
                    "sizeBytes": 12345,
                    "createdAt": "2024-01-01T00:00:00Z"
                }
            ]
        }
    """
    user_id = request.user_claims.sub

    documents = Document.objects.filter(owner_user_id=user_id).order_by('-created_at')

    try:
        docs_list = [document_to_dict(doc) async for doc in documents]
    except DatabaseError as e:
        logger.error(f"Failed to list documents for user {user_id}: {e}")
        return error_response(StorageError("Failed to list documents"))

    return JsonResponse({'documents': docs_list})


@csrf_exempt
@require_http_methods(["DELETE"])
@auth_required
async def delete_document(request, document_id):
    """
    Delete a document owned by the caller, together with its chunks.

    DELETE /documents/<document_id>

    Returns:
        {"success": true}
    """
    user_id = request.user_claims.sub
    document_id = str(document_id)

    try:
        exists = await Document.objects.filter(id=document_id, owner_user_id=user_id).aexists()
    except DatabaseError as e:
        logger.error(f"Failed to look up document {document_id}: {e}")
        return error_response(StorageError("Failed to look up document"))

    # Documents of other users are reported as missing
    if not exists:
        return error_response(
            ValidationError("Document not found", code='NOT_FOUND', status_code=404)
        )

    try:
        chunk_count = await get_services().index.delete_document(document_id)
        await Document.objects.filter(id=document_id, owner_user_id=user_id).adelete()
    except StorageError as e:
        return error_response(e)
    except DatabaseError as e:
        logger.error(f"Failed to delete document {document_id}: {e}")
        return error_response(StorageError("Failed to delete document"))

    logger.info(f"Deleted document {document_id} ({chunk_count} chunks) for user {user_id}")
    audit_document_deleted(request, document_id, chunk_count)

    return JsonResponse({'success': True})
