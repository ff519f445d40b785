"""
Error taxonomy shared by every layer of the RAG service.

Each failure is raised as one of a closed set of kinds so that callers
(views, the orchestrator, the ingest pipeline) can branch on the kind
instead of parsing message text.
"""
import logging
from enum import Enum
from typing import Optional

from django.http import JsonResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Closed enumeration of failure kinds."""
    VALIDATION = 'validation'
    AUTH = 'auth'
    UPSTREAM = 'upstream'
    STORAGE = 'storage'
    UNSUPPORTED_CONTENT = 'unsupported_content'


class RAGError(Exception):
    """Base class for all taxonomy errors."""
    kind: ErrorKind = ErrorKind.STORAGE
    code: str = 'INTERNAL_ERROR'
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        # Set by the orchestrator when a pipeline stage fails
        self.stage: Optional[str] = None


class ValidationError(RAGError):
    """Missing or malformed request fields. Never retried."""
    kind = ErrorKind.VALIDATION
    code = 'VALIDATION_ERROR'
    status_code = 400


class AuthError(RAGError):
    """Missing or invalid credential. Never retried."""
    kind = ErrorKind.AUTH
    code = 'AUTH_ERROR'
    status_code = 401


class UpstreamError(RAGError):
    """Embedding or generation capability failure."""
    kind = ErrorKind.UPSTREAM
    code = 'UPSTREAM_ERROR'
    status_code = 503


class StorageError(RAGError):
    """Document, vector or message store failure."""
    kind = ErrorKind.STORAGE
    code = 'STORAGE_ERROR'
    status_code = 500


class UnsupportedContentError(RAGError):
    """Ingest of a disallowed file type."""
    kind = ErrorKind.UNSUPPORTED_CONTENT
    code = 'UNSUPPORTED_CONTENT'
    status_code = 415


def error_response(error: RAGError) -> JsonResponse:
    """
    Render a taxonomy error as a JSON response.

    Format:
        {"error": "<message>", "code": "<CODE>"}

    Upstream failures also carry a Retry-After header.
    """
    response = JsonResponse(
        {'error': error.message, 'code': error.code},
        status=error.status_code,
    )
    if error.kind is ErrorKind.UPSTREAM:
        response['Retry-After'] = '30'
    return response
