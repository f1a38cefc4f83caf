"""Request correlation ID middleware.

Each request gets an id taken from ``X-Request-ID`` / ``X-Correlation-ID``
(or a new UUID). It is stored in a context variable so log records emitted
while handling the request carry it, and echoed in the response headers.
"""

import uuid
from collections.abc import Callable
from contextvars import ContextVar
from typing import Any

from aiohttp import web

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


@web.middleware
async def correlation_id_middleware(
    request: web.Request, handler: Callable[[web.Request], Any]
) -> web.StreamResponse:
    """Attach a correlation id to the request context and the response.

    Priority for the id:
    1. X-Request-ID from client
    2. X-Correlation-ID from client
    3. Generated UUID
    """
    correlation_id = (
        request.headers.get(REQUEST_ID_HEADER)
        or request.headers.get("X-Correlation-ID")
        or str(uuid.uuid4())
    )
    token = request_id_var.set(correlation_id)
    request["correlation_id"] = correlation_id

    try:
        response = await handler(request)
    except web.HTTPException as exc:
        # Router-level errors (404, 405) are raised rather than returned
        exc.headers[REQUEST_ID_HEADER] = correlation_id
        raise
    finally:
        request_id_var.reset(token)

    response.headers[REQUEST_ID_HEADER] = correlation_id
    return response


def get_request_id() -> str:
    """Get current request correlation ID from context.

    Returns:
        Current request correlation ID, or "no-request-id" if not set
    """
    request_id = request_id_var.get()
    return request_id if request_id else "no-request-id"
