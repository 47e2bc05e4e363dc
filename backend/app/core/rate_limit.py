"""Rate limiting configuration using SlowAPI."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings


def get_user_identifier(request: Request) -> str:
    """
    Get rate limit identifier from request.

    Priority order:
    1. User ID (if set on request state by the auth dependency)
    2. IP address

    Args:
        request: FastAPI request object

    Returns:
        Unique identifier string for rate limiting
    """
    if hasattr(request.state, "user") and request.state.user:
        user_id = getattr(request.state.user, "id", None)
        if user_id:
            return f"user:{user_id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_identifier,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_API_DEFAULT],
    headers_enabled=False,
)

# Order creation and client-side verification
payments_limit = limiter.limit(settings.RATE_LIMIT_PAYMENTS)

# Admin endpoints
admin_limit = limiter.limit(settings.RATE_LIMIT_ADMIN)
