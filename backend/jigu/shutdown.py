"""
Jigu Server: Graceful Shutdown Coordinator
==========================================

What:  Registry of cleanup callbacks that are driven to completion when the
       process is asked to stop (signal, fatal fault or manual call).
How:   At most one shutdown sequence ever runs. Callbacks of the same phase
       run concurrently; phases run in ascending order. A failing callback
       is logged and swallowed. The whole sequence is raced against a
       timeout; callbacks are not cancelled when it expires, the coordinator
       simply stops waiting and reports failure.
Who:   Built by AppContext. The log service, the MongoDB client and the HTTP
       server register their cleanups here.

State machine:
    IDLE ──(signal / fault / shutdown())──▶ SHUTTING_DOWN ──▶ TERMINATED

Phases used by the server:
    0  HTTP server      stop accepting requests
    1  log service      drain buffered entries into their sinks
    2  MongoDB          close the client the log sink writes through
"""

import asyncio
import inspect
import logging
import signal
import sys
from dataclasses import dataclass
from enum import Enum
from itertools import groupby
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CleanupCallback = Callable[[], Union[Awaitable[Any], Any]]

SHUTDOWN_SIGNALS = ("SIGTERM", "SIGINT", "SIGUSR2")


class ShutdownState(str, Enum):
    IDLE = "idle"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class CleanupRegistration:
    callback: CleanupCallback
    name: str
    phase: int = 0


class GracefulShutdown:
    """
    Args:
        timeout_ms: upper bound for the whole cleanup sequence.
        exit_func: called with 0 or 1 once `shutdown()` finishes
            (sys.exit by default; tests inject a recorder).
    """

    def __init__(
        self,
        timeout_ms: int = 30000,
        exit_func: Callable[[int], Any] = sys.exit,
    ):
        self._timeout_ms = timeout_ms
        self._exit_func = exit_func
        self._registrations: List[CleanupRegistration] = []
        self._state = ShutdownState.IDLE
        self.attempted: List[str] = []
        self.failed: Dict[str, BaseException] = {}
        self._shutdown_task: Optional["asyncio.Future[None]"] = None

    # ── Registration ──────────────────────────────────────────────────────

    def register_cleanup(
        self,
        callback: CleanupCallback,
        name: Optional[str] = None,
        phase: int = 0,
    ) -> None:
        """Adds a callback; there is no way to remove it again."""
        label = name or getattr(callback, "__qualname__", None) or "unnamed cleanup"
        self._registrations.append(CleanupRegistration(callback, label, phase))
        logger.debug("Registered cleanup '%s' (phase %d)", label, phase)

    @property
    def registrations(self) -> List[CleanupRegistration]:
        return list(self._registrations)

    def set_shutdown_timeout(self, timeout_ms: int) -> None:
        self._timeout_ms = timeout_ms
        logger.debug("Shutdown timeout set to %dms", timeout_ms)

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def is_shutting_down(self) -> bool:
        return self._state is not ShutdownState.IDLE

    @property
    def shutdown_task(self) -> Optional["asyncio.Future[None]"]:
        """The shutdown started by a signal or a fault, if any."""
        return self._shutdown_task

    # ── Cleanup ───────────────────────────────────────────────────────────

    async def run_cleanup(self, reason: Optional[str] = None) -> Optional[bool]:
        """
        Runs every registered callback once.

        Returns:
            True   every callback settled within the timeout
            False  the timeout expired first
            None   a shutdown had already started; this call did nothing
        """
        if self._state is not ShutdownState.IDLE:
            logger.warning("Shutdown already in progress, ignoring repeated request (%s)", reason)
            return None

        self._state = ShutdownState.SHUTTING_DOWN
        logger.info("Starting graceful shutdown%s", f" ({reason})" if reason else "")

        sequence = asyncio.ensure_future(self._run_phases())
        done, _ = await asyncio.wait({sequence}, timeout=self._timeout_ms / 1000)
        self._state = ShutdownState.TERMINATED

        if sequence in done:
            logger.info("Graceful shutdown complete")
            return True

        logger.error("Shutdown timed out after %dms", self._timeout_ms)
        return False

    async def _run_phases(self) -> None:
        if not self._registrations:
            logger.info("No cleanup callbacks registered")
            return

        logger.info("Running %d cleanup callbacks", len(self._registrations))
        ordered = sorted(self._registrations, key=lambda r: r.phase)
        for _, group in groupby(ordered, key=lambda r: r.phase):
            await asyncio.gather(*(self._run_one(reg) for reg in group))
        logger.info("All cleanup callbacks settled")

    async def _run_one(self, registration: CleanupRegistration) -> None:
        self.attempted.append(registration.name)
        logger.info("Running cleanup: %s", registration.name)
        try:
            result = registration.callback()
            if inspect.isawaitable(result):
                await result
            logger.info("Cleanup finished: %s", registration.name)
        except Exception as e:
            self.failed[registration.name] = e
            logger.error("Cleanup failed: %s: %s", registration.name, e, exc_info=True)

    async def shutdown(self, reason: Optional[str] = None) -> None:
        """Runs the cleanup sequence, then exits 0 on success or 1 on timeout."""
        completed = await self.run_cleanup(reason)
        if completed is None:
            return
        self._exit_func(0 if completed else 1)

    # ── Triggers ──────────────────────────────────────────────────────────

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Routes SIGTERM, SIGINT and SIGUSR2 (where the platform has them) to
        `shutdown()`, and unhandled task exceptions to `handle_fault()`.
        """
        loop = loop or asyncio.get_running_loop()
        installed = []
        for name in SHUTDOWN_SIGNALS:
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, self._on_signal, name)
                installed.append(name)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler
                continue

        loop.set_exception_handler(self._on_loop_exception)
        logger.debug("Signal handlers installed: %s", ", ".join(installed) or "none")

    def _on_signal(self, name: str) -> None:
        logger.info("Received signal %s", name)
        self._schedule_shutdown(name)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            loop.default_exception_handler(context)
            return
        self.handle_fault(exc, "unhandled task exception")

    def handle_fault(
        self, exc: BaseException, origin: str = "uncaught exception"
    ) -> Optional["asyncio.Future[None]"]:
        """
        Logs a fatal fault and starts the shutdown sequence.

        Returns the scheduled shutdown so a caller that owns the loop can
        await it; None when a shutdown is already running.
        """
        logger.critical("Fatal fault (%s): %s", origin, exc, exc_info=exc)
        if self.is_shutting_down:
            return None
        return self._schedule_shutdown(origin)

    def _schedule_shutdown(self, reason: str) -> "asyncio.Future[None]":
        if self._shutdown_task is None or self._shutdown_task.done():
            self._shutdown_task = asyncio.ensure_future(self.shutdown(reason))
        return self._shutdown_task
