"""
Core views providing infrastructure endpoints.

This module contains views that are not part of the chat domain but are
essential for running it, such as health checks.
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _check_database() -> str:
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError as exc:
        logger.error(f"Health check database failure: {exc}")
        return "disconnected"
    return "connected"


def _check_cache() -> str:
    # django-redis is configured with IGNORE_EXCEPTIONS, so an unreachable
    # Redis shows up as a failed round trip rather than an exception.
    cache.set("health_check", "ok", timeout=1)
    if cache.get("health_check") == "ok":
        return "connected"
    return "disconnected"


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected" (degraded, not fatal)

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable
    """
    database = _check_database()
    cache_status = _check_cache()
    is_healthy = database == "connected"

    return JsonResponse(
        {
            "status": "healthy" if is_healthy else "unhealthy",
            "database": database,
            "cache": cache_status,
        },
        status=200 if is_healthy else 503,
    )
