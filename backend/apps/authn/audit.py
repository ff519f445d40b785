"""
Audit logging for security and compliance.

Emits one JSON object per line on the 'audit' logger. Events carry
metadata only: question text, answers and document contents are never
logged here.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Dedicated audit logger
audit_logger = logging.getLogger('audit')


class AuditEvent:
    """Standard audit event types."""
    # Auth events
    AUTH_TOKEN_REJECTED = 'auth.token_rejected'

    # Document events
    DOCUMENT_UPLOADED = 'document.uploaded'
    DOCUMENT_REJECTED = 'document.rejected'
    DOCUMENT_DELETED = 'document.deleted'

    # Ingest events
    INGEST_COMPLETED = 'ingest.completed'
    INGEST_FAILED = 'ingest.failed'

    # RAG events
    RAG_QUERY = 'rag.query'
    RAG_STREAM = 'rag.stream'

    # Rate limiting events
    RATELIMIT_EXCEEDED = 'ratelimit.exceeded'


def get_client_ip(request) -> str:
    """Extract client IP from request, handling proxies."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        # First IP in the chain is the client
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def get_request_id(request) -> str:
    """Get or generate a request ID for correlation."""
    request_id = getattr(request, 'request_id', None)
    if not request_id:
        request_id = request.META.get('HTTP_X_REQUEST_ID')
    if not request_id:
        request_id = str(uuid.uuid4())[:8]
    return request_id


def log_audit(
    event_type: str,
    user_id: Optional[str] = None,
    request_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    outcome: str = 'success',
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Log a structured audit event.

    Args:
        event_type: One of AuditEvent constants
        user_id: JWT subject of the caller
        request_id: Correlation ID for request tracing
        client_ip: Client IP address
        outcome: 'success' or 'failure'
        metadata: Event-specific data (no PII/secrets)
    """
    event = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'event_type': event_type,
        'user_id': user_id,
        'request_id': request_id,
        'client_ip': client_ip,
        'outcome': outcome,
        'metadata': metadata or {}
    }

    audit_logger.info(json.dumps(event))


def log_audit_from_request(
    request,
    event_type: str,
    outcome: str = 'success',
    metadata: Optional[Dict[str, Any]] = None
):
    """Log an audit event with request context auto-populated."""
    user_id = None
    if getattr(request, 'user_claims', None):
        user_id = getattr(request.user_claims, 'sub', None)

    log_audit(
        event_type=event_type,
        user_id=user_id,
        request_id=get_request_id(request),
        client_ip=get_client_ip(request),
        outcome=outcome,
        metadata=metadata
    )


# Convenience functions for common events

def audit_document_uploaded(request, document_id: str, filename: str, size_bytes: int, chunk_count: int):
    """Log successful document upload and ingest."""
    log_audit_from_request(
        request,
        AuditEvent.DOCUMENT_UPLOADED,
        metadata={
            'document_id': document_id,
            'filename': filename,
            'size_bytes': size_bytes,
            'chunk_count': chunk_count,
        }
    )


def audit_document_rejected(request, filename: str, content_type: str, reason: str):
    """Log an upload refused before ingest."""
    log_audit_from_request(
        request,
        AuditEvent.DOCUMENT_REJECTED,
        outcome='failure',
        metadata={
            'filename': filename,
            'content_type': content_type,
            'reason': reason,
        }
    )


def audit_document_deleted(request, document_id: str, chunk_count: int):
    """Log explicit document deletion by its owner."""
    log_audit_from_request(
        request,
        AuditEvent.DOCUMENT_DELETED,
        metadata={
            'document_id': document_id,
            'chunk_count': chunk_count,
        }
    )


def audit_ingest_completed(document_id: str, user_id: str, chunk_count: int):
    """Log a document fully chunked, embedded and indexed."""
    log_audit(
        AuditEvent.INGEST_COMPLETED,
        user_id=user_id,
        metadata={
            'document_id': document_id,
            'chunk_count': chunk_count,
        }
    )


def audit_ingest_failed(user_id: str, filename: str, error_code: str):
    """Log an ingest that stored nothing."""
    log_audit(
        AuditEvent.INGEST_FAILED,
        user_id=user_id,
        outcome='failure',
        metadata={
            'filename': filename,
            'error_code': error_code,
        }
    )


def audit_rag_query(request, question_length: int, top_k: int, chunk_count: int, outcome: str = 'success'):
    """Log RAG query (without the actual question text)."""
    log_audit_from_request(
        request,
        AuditEvent.RAG_QUERY,
        outcome=outcome,
        metadata={
            'question_length': question_length,
            'top_k': top_k,
            'chunk_count': chunk_count,
        }
    )


def audit_rag_stream(request, question_length: int, outcome: str = 'success'):
    """Log the start of a streamed answer."""
    log_audit_from_request(
        request,
        AuditEvent.RAG_STREAM,
        outcome=outcome,
        metadata={
            'question_length': question_length,
        }
    )


def audit_ratelimit_exceeded(request, endpoint: str, limit: int, window: int):
    """Log rate limit exceeded."""
    log_audit_from_request(
        request,
        AuditEvent.RATELIMIT_EXCEEDED,
        outcome='failure',
        metadata={
            'endpoint': endpoint,
            'limit': limit,
            'window': window,
        }
    )


def audit_auth_rejected(request, reason: str):
    """Log failed token validation."""
    log_audit_from_request(
        request,
        AuditEvent.AUTH_TOKEN_REJECTED,
        outcome='failure',
        metadata={
            'reason': reason,
        }
    )
