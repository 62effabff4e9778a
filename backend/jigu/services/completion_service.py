"""
Jigu Server: Completions Proxy Service
======================================

What:  Opens a streaming chat completion on the configured upstream and hands
       the open response back to the route, which relays it as SSE.
How:   httpx streams the upstream body. Opening the stream is retried with
       exponential backoff + jitter (tenacity) on transport errors, and the
       whole call is guarded by a circuit breaker so a dead upstream fails
       fast instead of tying up requests.
Who:   Built by AppContext; called by routes/completions.py.

Error Handling Chain:
    transport error → tenacity retries (retry_max_attempts, backoff)
    → retries exhausted or upstream 5xx → record circuit breaker failure
    → threshold reached → further calls rejected with CircuitBreakerOpenError
    → recovery timeout elapsed → one trial call (HALF_OPEN)
    → trial succeeds → CLOSED again
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from jigu.config import Settings
from jigu.exceptions import (
    CircuitBreakerOpenError,
    ConfigurationError,
    UpstreamServiceError,
)
from jigu.schemas.scripts import CompletionRequest

logger = logging.getLogger(__name__)

UPSTREAM_COMPLETIONS_PATH = "/api/v1/chat/completions"


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    CLOSED → (failure_threshold consecutive failures) → OPEN
    OPEN → (recovery_timeout seconds) → HALF_OPEN
    HALF_OPEN → success → CLOSED, failure → OPEN

    Not shared across processes; each uvicorn worker keeps its own state.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Raises:
            CircuitBreakerOpenError: OPEN and the recovery timeout has not elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.monotonic() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = max(int(self.recovery_timeout - elapsed), 1)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (upstream recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (trial request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning("Circuit breaker OPENING after %d consecutive failures", self.failure_count)
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Completion Service
# ══════════════════════════════════════════════════════════════════════════

class CompletionService:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.completions_timeout_seconds, connect=10.0)
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    @property
    def configured(self) -> bool:
        return self._settings.completions_configured

    def build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        """Upstream request body (the upstream API expects camelCase keys)."""
        return {
            "chatId": request.chat_id or uuid.uuid4().hex,
            "stream": True,
            "detail": False,
            "messages": [m.model_dump() for m in request.messages],
        }

    async def open_stream(self, request: CompletionRequest) -> httpx.Response:
        """
        Returns an open, streaming upstream response. The caller must close it.

        Raises:
            ConfigurationError: upstream URL or secret not configured.
            CircuitBreakerOpenError: too many recent upstream failures.
            UpstreamServiceError: upstream unreachable or answering 5xx.
        """
        if not self.configured:
            logger.error("Completions upstream is not configured")
            raise ConfigurationError(
                context={
                    "COMPLETIONS_API_BASE_URL": bool(self._settings.completions_api_base_url),
                    "COMPLETIONS_APP_SECRET": bool(self._settings.completions_app_secret),
                }
            )

        self.circuit_breaker.can_execute()

        url = self._settings.completions_api_base_url.rstrip("/") + UPSTREAM_COMPLETIONS_PATH
        payload = self.build_payload(request)
        start_time = time.perf_counter()

        try:
            response = await self._send_with_retry(url, payload)
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            logger.error("Completions upstream unreachable: %s", e)
            raise UpstreamServiceError(
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"chat_id": payload["chatId"], "error_type": type(e).__name__},
            ) from e

        if response.status_code >= 500:
            await response.aclose()
            self.circuit_breaker.record_failure()
            logger.error("Completions upstream answered %d", response.status_code)
            raise UpstreamServiceError(
                context={"chat_id": payload["chatId"], "upstream_status": response.status_code},
            )

        self.circuit_breaker.record_success()
        logger.info(
            "Completions stream opened in %.0fms (chat %s, status %d)",
            (time.perf_counter() - start_time) * 1000,
            payload["chatId"],
            response.status_code,
        )
        return response

    async def _send_with_retry(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        s = self._settings
        headers = {"Authorization": f"Bearer {s.completions_app_secret}"}
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(s.retry_max_attempts),
            wait=wait_exponential_jitter(initial=s.retry_min_wait, max=s.retry_max_wait, jitter=1),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                request = self._client.build_request("POST", url, json=payload, headers=headers)
                return await self._client.send(request, stream=True)
        raise UpstreamServiceError()  # unreachable: reraise=True re-raises the last error

    async def close(self) -> None:
        await self._client.aclose()
