"""
Request ID Middleware for tracing and debugging.

Assigns a request ID to each HTTP request (reusing an incoming X-Request-ID
header when the caller sent one) and exposes it to log records and the
response headers.
"""
import re
import uuid
import logging
import contextvars
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from fastapi import Request

logger = logging.getLogger(__name__)

# Context variable to store request ID for logging
_request_id_context: contextvars.ContextVar[str] = contextvars.ContextVar('request_id', default=None)

# Incoming ids are echoed into logs, so only short token-like values are accepted
_VALID_INCOMING_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def get_request_id() -> str:
    """Returns the current request ID, or 'no-request-id' outside a request."""
    return _request_id_context.get(None) or "no-request-id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that tags every request with an ID.

    - Reuses a well-formed incoming X-Request-ID, otherwise generates one
    - Stores it in request.state.request_id
    - Adds it to the X-Request-ID response header
    - Makes it available to the logging filter through a contextvar
    """

    async def dispatch(self, request: Request, call_next: ASGIApp):
        incoming = request.headers.get("X-Request-ID", "")
        if incoming and _VALID_INCOMING_ID.match(incoming):
            request_id = incoming
        else:
            request_id = str(uuid.uuid4())[:8]

        request.state.request_id = request_id
        token = _request_id_context.set(request_id)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.debug(
                f"Request completed: {request.method} {request.url.path} -> {response.status_code}"
            )
            return response
        finally:
            _request_id_context.reset(token)
