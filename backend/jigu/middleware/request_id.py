"""
Jigu Server: Request ID Middleware
==================================

What:  Gives every request a correlation id and echoes it in `X-Request-ID`.
How:   A client-provided `X-Request-ID` is reused (so the SPA can correlate
       its own error reports); otherwise a short random id is generated.
       The id is stored in a ContextVar for loggers and exception handlers,
       and on `request.state` for route handlers.
When:  Outermost application middleware, before RequestLoggingMiddleware.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Coroutine-local: concurrent requests on one loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
