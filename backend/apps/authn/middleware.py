"""
Authentication decorator for JWT-protected endpoints.
"""
import logging
from typing import Optional, Callable
from functools import wraps

from django.http import HttpRequest

from apps.rag.errors import AuthError, error_response

from .audit import audit_auth_rejected
from .jwt_validator import validate_token

logger = logging.getLogger(__name__)


def get_token_from_request(request: HttpRequest) -> Optional[str]:
    """
    Extract Bearer token from Authorization header.

    Args:
        request: The Django HTTP request

    Returns:
        The token string if found, None otherwise
    """
    auth_header = request.META.get('HTTP_AUTHORIZATION', '')

    if not auth_header:
        return None

    parts = auth_header.split()

    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None

    return parts[1]


def authenticate(request: HttpRequest) -> None:
    """
    Validate the request's bearer token and attach request.user_claims.

    Raises:
        AuthError: If the header is missing or the token is invalid
    """
    token = get_token_from_request(request)

    if not token:
        raise AuthError("Authorization header missing or invalid", code='MISSING_TOKEN')

    claims = validate_token(token)
    request.user_claims = claims
    logger.debug(f"Authenticated user: sub={claims.sub}")


def auth_required(view_func: Callable) -> Callable:
    """
    Decorator that requires a valid JWT token on an async view.

    Validates the token and attaches the claims to request.user_claims.

    Usage:
        @auth_required
        async def my_view(request):
            user_id = request.user_claims.sub
            ...
    """
    @wraps(view_func)
    async def wrapper(request: HttpRequest, *args, **kwargs):
        try:
            authenticate(request)
        except AuthError as e:
            logger.warning(f"JWT validation failed: {e.message}")
            audit_auth_rejected(request, e.code)
            return error_response(e)

        return await view_func(request, *args, **kwargs)

    return wrapper
