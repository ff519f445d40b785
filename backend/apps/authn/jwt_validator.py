"""
JWT validation for bearer tokens.

Tokens are issued elsewhere (registration and login are not part of this
service); here they are only verified: HS256 signature against JWT_SECRET,
expiry, and a non-empty 'sub' claim, which becomes the tenant id.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

import jwt
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.rag.errors import AuthError

logger = logging.getLogger(__name__)


class JWTValidationError(AuthError):
    """Raised when JWT validation fails."""
    code = 'INVALID_TOKEN'


@dataclass
class TokenClaims:
    """Validated token claims."""
    sub: str  # Subject (user ID), the tenant key for every owned row
    email: Optional[str]
    raw_claims: Dict[str, Any]


def validate_token(token: str) -> TokenClaims:
    """
    Validate a bearer token.

    Args:
        token: The JWT token string (without 'Bearer ' prefix)

    Returns:
        TokenClaims with validated claims

    Raises:
        JWTValidationError: If validation fails
    """
    secret = getattr(settings, 'JWT_SECRET', '')
    if not secret:
        raise ImproperlyConfigured("JWT_SECRET not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=getattr(settings, 'JWT_ALGORITHMS', ['HS256']),
            options={
                'verify_signature': True,
                'verify_exp': True,
                'require': ['sub'],
            }
        )
    except jwt.ExpiredSignatureError:
        raise JWTValidationError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise JWTValidationError(f"Invalid token: {e}")

    sub = claims.get('sub')
    if not sub or not isinstance(sub, str):
        raise JWTValidationError("Token subject missing")

    return TokenClaims(
        sub=sub,
        email=claims.get('email'),
        raw_claims=claims
    )
