"""Request correlation ID middleware.

Every request carries an ID (taken from the client or generated) that is
stored in a context variable so log records emitted while handling the
request can be tied back to it.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar

from aiohttp import web

logger = logging.getLogger(__name__)

_NO_REQUEST_ID = "no-request-id"

# Header names checked in order before a fresh ID is generated
_INBOUND_ID_HEADERS = ("X-Request-ID", "X-Correlation-ID")

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _inbound_request_id(request: web.Request) -> str:
    for header in _INBOUND_ID_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    return str(uuid.uuid4())


@web.middleware
async def correlation_id_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Tag the request with a correlation ID and echo it as ``X-Request-ID``."""
    correlation_id = _inbound_request_id(request)
    request["correlation_id"] = correlation_id
    token = request_id_var.set(correlation_id)
    try:
        response = await handler(request)
        logger.debug("%s %s -> %d", request.method, request.path, response.status)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = correlation_id
    return response


def get_request_id() -> str:
    """Current request's correlation ID, or a placeholder outside a request."""
    return request_id_var.get() or _NO_REQUEST_ID
