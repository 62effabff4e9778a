"""
Jigu Server: HTTP Access Logging Middleware
===========================================

What:  Records one `http` LogEntry per request through the LogService.
How:   Measures the request, picks a level from the outcome, and logs method,
       path, status and duration as metadata. The entry goes through the
       normal routing table, so by default it reaches the console and, for
       4xx/5xx/slow requests, the database as well.
When:  Inside RequestIDMiddleware, so the request id is already assigned.
       The entry is handed to LogService.log_in_background once the response
       (or the exception) is known; the response never waits for the write.

Level selection:
    exception or 5xx  → error
    4xx or slow       → warn
    anything else     → info

Privacy:
    Request headers are only logged when HTTP_LOG_HEADERS is on, and then
    with credentials (authorization, cookies, tokens, secrets) masked as ***.
    Bodies are never logged.
"""

import logging
import time
import traceback
from typing import Any, Dict, Iterable, Mapping, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from jigu.middleware.request_id import request_id_var
from jigu.models.log_entry import LogLevel, LogType

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
REDACTED = "***"
SENSITIVE_HEADER_MARKERS = ("authorization", "cookie", "token", "secret", "password", "api-key", "apikey")


def should_exclude_path(path: str, exclude_paths: Iterable[str]) -> bool:
    """Exact match or prefix match ("/health" also excludes "/health/db")."""
    return any(path == p or path.startswith(p.rstrip("/") + "/") for p in exclude_paths)


def get_client_ip(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """
    First hop of x-forwarded-for, then x-real-ip, then cf-connecting-ip,
    then the socket peer, then "unknown".
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for name in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(name)
        if value:
            return value.strip()
    return fallback or "unknown"


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    redacted = {}
    for name, value in headers.items():
        lowered = name.lower()
        if any(marker in lowered for marker in SENSITIVE_HEADER_MARKERS):
            redacted[lowered] = REDACTED
        else:
            redacted[lowered] = value
    return redacted


def choose_level(status: int, is_slow: bool, failed: bool) -> LogLevel:
    if failed or status >= 500:
        return LogLevel.ERROR
    if status >= 400 or is_slow:
        return LogLevel.WARN
    return LogLevel.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Args:
        enabled: turns the whole middleware into a pass-through when False.
        log_headers: include redacted request headers in the metadata.
        slow_request_ms: requests slower than this are logged at warn.
        exclude_paths: paths never logged (health checks).
    """

    def __init__(
        self,
        app: ASGIApp,
        enabled: bool = True,
        log_headers: bool = False,
        slow_request_ms: int = 1000,
        exclude_paths: Iterable[str] = ("/health", "/ping"),
    ):
        super().__init__(app)
        self.enabled = enabled
        self.log_headers = log_headers
        self.slow_request_ms = slow_request_ms
        self.exclude_paths = tuple(exclude_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not self.enabled or should_exclude_path(path, self.exclude_paths):
            return await call_next(request)

        start_time = time.perf_counter()
        status = 500
        error: Optional[BaseException] = None
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        except Exception as e:
            error = e
            raise
        finally:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            self._record(request, status, duration_ms, response, error)

    def _record(
        self,
        request: Request,
        status: int,
        duration_ms: float,
        response: Optional[Response],
        error: Optional[BaseException],
    ) -> None:
        ctx = getattr(request.app.state, "context", None)
        if ctx is None:
            return

        method = request.method
        path = request.url.path
        is_slow = duration_ms > self.slow_request_ms
        level = choose_level(status, is_slow, error is not None)

        metadata: Dict[str, Any] = {
            "method": method,
            "path": path,
            "url": str(request.url),
            "status": status,
            "duration": duration_ms,
            "is_slow_request": is_slow,
        }
        content_length = response.headers.get("content-length") if response is not None else None
        if content_length and content_length.isdigit():
            metadata["content_length"] = int(content_length)
        if self.log_headers:
            metadata["request_headers"] = redact_headers(request.headers)
        if error is not None:
            metadata["error_name"] = type(error).__name__
            metadata["error_message"] = str(error)

        stack = None
        if error is not None:
            message = f"{method} {path} - Request failed: {error}"
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message = f"{method} {path} - {status}"

        client_host = request.client.host if request.client else None
        try:
            ctx.log_service.log_in_background(
                message[:MAX_MESSAGE_LENGTH],
                level,
                LogType.HTTP,
                metadata=metadata,
                request_id=request_id_var.get() or None,
                ip=get_client_ip(request.headers, client_host),
                user_agent=request.headers.get("user-agent", "unknown"),
                stack=stack,
            )
        except Exception as e:
            # Access logging must never change the response
            logger.error("Failed to schedule HTTP log for %s %s: %s", method, path, e)
