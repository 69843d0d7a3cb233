"""
Rate limiting configuration for protecting the authentication endpoints from
brute force. Uses slowapi (Flask-Limiter port for FastAPI/Starlette).
"""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_429_TOO_MANY_REQUESTS


# Initialize rate limiter with default key function (IP address)
limiter = Limiter(key_func=get_remote_address)

# All limits are per IP address
LOGIN_POST_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "5 per minute")
REGISTER_POST_LIMIT = os.getenv("REGISTER_RATE_LIMIT", "3 per minute")


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Returns the standard {message} error body with a 429 status."""
    response = JSONResponse(
        status_code=HTTP_429_TOO_MANY_REQUESTS,
        content={"message": f"Too many requests. Limit: {exc.detail}"},
    )

    # Inject rate limit headers if available
    limiter_state = getattr(request.app.state, "limiter", None)
    view_rate_limit = getattr(request.state, "view_rate_limit", None)
    if limiter_state is not None and view_rate_limit is not None:
        response = limiter_state._inject_headers(response, view_rate_limit)

    return response
