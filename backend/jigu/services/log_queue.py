"""
Jigu Server: Log Batch Queue
============================

What:  Buffers log entries in memory and hands them to a dispatch coroutine
       in batches.
How:   A batch is flushed when the buffer reaches `batch_size` or when the
       interval timer fires, whichever comes first. A flush takes the whole
       buffer before its first await, so entries enqueued while it runs land
       in the next batch and are never lost or written twice.
Who:   Owned by LogService; `dispatch` is LogService's route-and-write step.

Bounds:
    pending = buffered + in flight, never above `max_pending`
        block        enqueue() waits until a slot frees
        drop_oldest  the oldest buffered entry is discarded (or the new one,
                     if everything pending is already in flight)
    in-flight dispatches across all flushes ≤ `max_concurrency`

Ordering:
    Within one batch, dispatches start in enqueue order. Two batches (size-
    triggered and timer-triggered) may overlap, so there is no ordering
    guarantee across batch boundaries.
"""

import asyncio
import contextlib
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Literal, Optional

from jigu.models.log_entry import LogEntry

logger = logging.getLogger(__name__)

OverflowPolicy = Literal["block", "drop_oldest"]
Dispatch = Callable[[LogEntry], Awaitable[object]]


class LogBatchQueue:
    def __init__(
        self,
        dispatch: Dispatch,
        batch_size: int = 100,
        max_pending: int = 10000,
        overflow_policy: OverflowPolicy = "block",
        max_concurrency: int = 16,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        if overflow_policy not in ("block", "drop_oldest"):
            raise ValueError(f"Unknown overflow policy '{overflow_policy}'")

        self._dispatch = dispatch
        self.batch_size = batch_size
        self.max_pending = max_pending
        self.overflow_policy = overflow_policy

        self._buffer: Deque[LogEntry] = deque()
        self._in_flight = 0
        self._dropped = 0
        self._batches = 0
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._capacity = asyncio.Condition()
        self._timer_task: Optional[asyncio.Task] = None

    # ── Introspection ─────────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        return len(self._buffer) + self._in_flight

    @property
    def buffered_count(self) -> int:
        return len(self._buffer)

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def batches_flushed(self) -> int:
        return self._batches

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    # ── Producer side ─────────────────────────────────────────────────────

    async def enqueue(self, entry: LogEntry) -> None:
        """
        Appends `entry`; reaching `batch_size` triggers one immediate flush.

        With the `block` policy this waits while the queue is at capacity.
        """
        if self.pending_count >= self.max_pending:
            if self.overflow_policy == "drop_oldest":
                self._dropped += 1
                if not self._buffer:
                    logger.warning("Log queue full (%d in flight), dropping new entry", self._in_flight)
                    return
                self._buffer.popleft()
                if self._dropped == 1 or self._dropped % 1000 == 0:
                    logger.warning("Log queue full, %d entries dropped so far", self._dropped)
            else:
                await self._wait_for_capacity()

        self._buffer.append(entry)
        if len(self._buffer) >= self.batch_size:
            await self.flush()

    async def _wait_for_capacity(self) -> None:
        while self.pending_count >= self.max_pending:
            if self._buffer:
                # Nothing in flight will free a slot for buffered entries
                await self.flush()
                continue
            async with self._capacity:
                await self._capacity.wait_for(lambda: self.pending_count < self.max_pending)

    # ── Consumer side ─────────────────────────────────────────────────────

    async def flush(self) -> None:
        """Dispatches every buffered entry and waits for all to settle. Never raises."""
        if not self._buffer:
            return

        batch = list(self._buffer)
        self._buffer.clear()
        self._in_flight += len(batch)
        self._batches += 1

        await asyncio.gather(*(self._dispatch_one(entry) for entry in batch))

    async def _dispatch_one(self, entry: LogEntry) -> None:
        try:
            async with self._semaphore:
                await self._dispatch(entry)
        except Exception as e:
            logger.error("Failed to dispatch log %s: %s", entry.id, e, exc_info=True)
        finally:
            self._in_flight -= 1
            async with self._capacity:
                self._capacity.notify_all()

    # ── Timer ─────────────────────────────────────────────────────────────

    def start(self, interval_ms: int) -> None:
        """Starts the periodic flush. Calling it while running is a no-op."""
        if self.is_running:
            return
        self._timer_task = asyncio.create_task(
            self._run_timer(interval_ms / 1000), name="log-batch-timer"
        )
        logger.debug("Log batch timer started (every %dms)", interval_ms)

    async def _run_timer(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                # Shielded: stop() cancels the timer, not a batch in progress
                await asyncio.shield(self.flush())
            except Exception as e:
                logger.error("Timed log flush failed: %s", e, exc_info=True)

    async def stop(self) -> None:
        """
        Cancels the timer and drains: returns once nothing is buffered or in
        flight, including batches started by other callers.
        """
        task, self._timer_task = self._timer_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self.flush()
        async with self._capacity:
            await self._capacity.wait_for(lambda: self._in_flight == 0)
        logger.debug("Log queue drained (%d dropped in total)", self._dropped)
