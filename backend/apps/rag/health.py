"""
Health check endpoints for Kubernetes/Docker probes.

- /healthz - Liveness (is process running?)
- /readyz - Readiness (can we serve traffic?)
"""
import logging
from datetime import datetime, timezone

import httpx
import redis
from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.views.decorators.http import require_GET
from django.views.decorators.csrf import csrf_exempt

logger = logging.getLogger(__name__)


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


@csrf_exempt
@require_GET
def healthz(request):
    """
    Liveness probe endpoint.

    Returns 200 if the Django process is running; dependencies are
    not checked here.
    """
    return JsonResponse({
        'status': 'healthy',
        'timestamp': get_timestamp()
    })


def check_database() -> tuple[str, bool]:
    """Check database connectivity (PostgreSQL in production)."""
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
            cursor.fetchone()
        return 'ok', True
    except DatabaseError as e:
        logger.error(f"Database health check failed: {e}")
        return f'error: {str(e)[:50]}', False


def check_redis() -> tuple[str, bool]:
    """Check Redis connectivity."""
    try:
        redis_url = getattr(settings, 'REDIS_URL', 'redis://redis:6379/0')
        client = redis.from_url(redis_url, socket_timeout=3)
        client.ping()
        return 'ok', True
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return f'error: {str(e)[:50]}', False


def check_model_host() -> tuple[str, bool]:
    """
    Check the generation/embedding host (never blocks readiness).

    A model host outage only fails questions and uploads; documents and
    chats can still be listed.
    """
    if getattr(settings, 'LLM_PROVIDER', 'ollama') == 'openai':
        url = f"{settings.OPENAI_BASE_URL.rstrip('/')}/models"
        headers = {'Authorization': f'Bearer {settings.OPENAI_API_KEY}'}
    else:
        url = f"{settings.OLLAMA_BASE_URL.rstrip('/')}/api/version"
        headers = {}

    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(url, headers=headers)
        if response.status_code == 200:
            return 'ok', True
        return f'status: {response.status_code}', True
    except httpx.HTTPError as e:
        logger.warning(f"Model host health check failed: {e}")
        return f'degraded: {str(e)[:30]}', True


@csrf_exempt
@require_GET
def readyz(request):
    """
    Readiness probe endpoint.

    Returns 200 only if all critical dependencies are reachable. Redis is
    critical only while rate limiting is enabled.
    """
    checks = {}
    all_ok = True

    status, ok = check_database()
    checks['database'] = status
    all_ok = all_ok and ok

    if getattr(settings, 'RATELIMIT_ENABLED', True):
        status, ok = check_redis()
        checks['redis'] = status
        all_ok = all_ok and ok

    status, _ = check_model_host()
    checks['model_host'] = status

    response_data = {
        'status': 'ready' if all_ok else 'not_ready',
        'timestamp': get_timestamp(),
        'checks': checks
    }

    return JsonResponse(response_data, status=200 if all_ok else 503)
