"""
Jigu Server: Log Writer
=======================

What:  Writes one LogEntry to the sinks its StoragePolicy names.
How:   Sinks are attempted independently and concurrently. A failing sink is
       reported on the diagnostics logger and recorded as False in the
       outcome; it never stops the other sinks and never reaches the caller.
Who:   Called by LogService directly (sync mode) or through the batch queue.

Sinks:
    console   the `jigu.console` stdlib logger, at the entry's mapped level
    database  one insert_one into the `logs` collection
    file      one JSON line appended to {log_dir}/{YYYY-MM-DD}-{type}.log

File appends use real append mode and are serialised per log type by an
asyncio.Lock, so two flushes writing the same file cannot interleave lines.
There is one lock per type whatever the date, so the lock table stays bounded.
"""

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Tuple

import aiofiles
import aiofiles.os
from pymongo.asynchronous.collection import AsyncCollection

from jigu.models.log_entry import LogEntry, LogType, Sink, StoragePolicy

logger = logging.getLogger(__name__)
console_logger = logging.getLogger("jigu.console")

CollectionProvider = Callable[[], AsyncCollection]


class LogWriter:
    """
    Args:
        collection_provider: returns the `logs` collection; called per write
            so the writer works even if the database connects later.
        log_dir: directory for the JSON-lines files (created on demand).
    """

    def __init__(self, collection_provider: CollectionProvider, log_dir: str):
        self._collection_provider = collection_provider
        self.log_dir = log_dir
        self._file_locks: Dict[LogType, asyncio.Lock] = {}

    async def write(self, entry: LogEntry, policy: StoragePolicy) -> Dict[Sink, bool]:
        """
        Returns:
            {sink: succeeded} for every sink the policy includes.
        """
        targets: List[Tuple[Sink, Callable[[LogEntry], Awaitable[None]]]] = []
        sinks = policy.sinks
        if Sink.CONSOLE in sinks:
            targets.append((Sink.CONSOLE, self._write_console))
        if Sink.DATABASE in sinks:
            targets.append((Sink.DATABASE, self._write_database))
        if Sink.FILE in sinks:
            targets.append((Sink.FILE, self._write_file))

        results = await asyncio.gather(
            *(self._attempt(sink, fn, entry) for sink, fn in targets)
        )
        return {sink: ok for (sink, _), ok in zip(targets, results)}

    async def _attempt(
        self,
        sink: Sink,
        fn: Callable[[LogEntry], Awaitable[None]],
        entry: LogEntry,
    ) -> bool:
        try:
            await fn(entry)
            return True
        except Exception as e:
            logger.error(
                "Failed to write log %s to %s sink: %s",
                entry.id,
                sink.value,
                e,
                exc_info=True,
            )
            return False

    # ── Sinks ─────────────────────────────────────────────────────────────

    async def _write_console(self, entry: LogEntry) -> None:
        extra: Dict[str, Any] = {"id": entry.id, "timestamp": entry.timestamp.isoformat()}
        if entry.metadata:
            extra["metadata"] = entry.metadata
        line = f"[{entry.type.value.upper()}] {entry.message} {json.dumps(extra, default=str)}"
        if entry.stack:
            line = f"{line}\n{entry.stack}"
        console_logger.log(entry.level.python_level, line)

    async def _write_database(self, entry: LogEntry) -> None:
        await self._collection_provider().insert_one(entry.to_document())

    async def _write_file(self, entry: LogEntry) -> None:
        path = self.file_path_for(entry)
        lock = self._file_locks.setdefault(entry.type, asyncio.Lock())
        async with lock:
            await aiofiles.os.makedirs(self.log_dir, exist_ok=True)
            async with aiofiles.open(path, mode="a", encoding="utf-8") as f:
                await f.write(entry.to_json_line())

    def file_path_for(self, entry: LogEntry) -> str:
        date = entry.timestamp.strftime("%Y-%m-%d")
        return os.path.join(self.log_dir, f"{date}-{entry.type.value}.log")

