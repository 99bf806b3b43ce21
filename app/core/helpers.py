"""
Request helpers with no model dependencies.

Usage:
    from core.helpers import get_client_ip, get_user_agent
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest


def get_client_ip(request: HttpRequest) -> str | None:
    """
    Extract client IP from request, handling proxies.

    Takes the first hop of X-Forwarded-For when present, otherwise
    REMOTE_ADDR. Returns None when neither is available.
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # Take the first IP in the chain (original client)
        return x_forwarded_for.split(",")[0].strip() or None
    return request.META.get("REMOTE_ADDR") or None


def get_user_agent(request: HttpRequest, max_length: int = 500) -> str:
    """Return the User-Agent header truncated to fit the column."""
    return request.META.get("HTTP_USER_AGENT", "")[:max_length]
