"""
Core views providing infrastructure endpoints.
"""

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check endpoint for load balancers and orchestration.

    The database is required. The cache only backs the gateway circuit
    breaker, so a cache outage reports "degraded" but still answers 200.

    Example Response:
        {"status": "healthy", "database": "connected", "cache": "connected"}
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }
    status_code = 200

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        status_code = 503

    try:
        cache.set("health_check", "ok", timeout=1)
        connected = cache.get("health_check") == "ok"
    except Exception:
        connected = False
    health_status["cache"] = "connected" if connected else "disconnected"
    if not connected and status_code == 200:
        health_status["status"] = "degraded"

    return JsonResponse(health_status, status=status_code)
