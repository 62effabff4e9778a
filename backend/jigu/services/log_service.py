"""
Jigu Server: Log Service
========================

What:  Public API of the structured log subsystem: record entries, query
       them, aggregate statistics, and sweep expired entries.
How:   `log()` fills in id, timestamp, service and environment, then either
       enqueues the entry (async mode) or routes and writes it immediately
       (sync mode). Reads go straight to the `logs` collection.
Who:   Used by the HTTP access-log middleware, the /api/logs routes and any
       service that wants to record an application event.
When:  Built by AppContext; its queue timer starts with the app and is
       drained by the shutdown coordinator.

Pipeline:
    log() → LogBatchQueue → decide_storage() → LogWriter.write()
                               (policy)          (console / db / file)

Failure policy:
    Writes never fail the caller (see LogWriter). query(), get_stats() and
    cleanup() log the driver error and raise DatabaseError; they do not retry.
"""

import asyncio
import logging
import os
import re
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import aiofiles.os
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from jigu.config import Settings
from jigu.exceptions import DatabaseError, ValidationError
from jigu.models.log_entry import LogEntry, LogLevel, LogType, Sink, StoragePolicy
from jigu.schemas.logs import HourBucket, LogQuery, LogQueryResult, LogStats
from jigu.services.log_queue import LogBatchQueue, OverflowPolicy
from jigu.services.log_routing import decide_storage
from jigu.services.log_writer import CollectionProvider, LogWriter

logger = logging.getLogger(__name__)

_LOG_FILE_DATE = re.compile(r"^(\d{4}-\d{2}-\d{2})-.+\.log$")


class LogServiceConfig(BaseModel):
    """Everything LogService needs from Settings, nothing else."""

    service: str = "jigu-server"
    environment: str = "development"
    default_storage: StoragePolicy = StoragePolicy.CONSOLE_DB
    log_dir: str = "./logs"
    async_mode: bool = True
    db_retention_days: int = 30
    file_retention_days: int = 7
    batch_size: int = 100
    batch_interval_ms: int = 5000
    max_pending: int = 10000
    overflow_policy: OverflowPolicy = "block"
    max_concurrent_writes: int = 16

    @classmethod
    def from_settings(cls, s: Settings) -> "LogServiceConfig":
        return cls(
            service=s.service_name,
            environment=s.environment,
            default_storage=s.default_storage_policy,
            log_dir=s.log_dir,
            async_mode=s.log_async,
            db_retention_days=s.log_db_retention_days,
            file_retention_days=s.log_file_retention_days,
            batch_size=s.log_batch_size,
            batch_interval_ms=s.log_batch_interval_ms,
            max_pending=s.log_max_pending,
            overflow_policy=s.log_overflow_policy,
            max_concurrent_writes=s.log_max_concurrent_writes,
        )


def build_query_filter(query: LogQuery) -> Dict[str, Any]:
    """
    Translates a LogQuery into a MongoDB filter.

    Example:
        LogQuery(levels=[LogLevel.ERROR], keyword="timeout") →
        {"level": {"$in": ["error"]},
         "$or": [{"message": {"$regex": "timeout", "$options": "i"}},
                 {"metadata.error_name": {"$regex": "timeout", "$options": "i"}}]}
    """
    mongo_filter: Dict[str, Any] = {}

    time_range = _time_range(query.start_time, query.end_time)
    if time_range:
        mongo_filter["timestamp"] = time_range
    if query.levels:
        mongo_filter["level"] = {"$in": [level.value for level in query.levels]}
    if query.types:
        mongo_filter["type"] = {"$in": [t.value for t in query.types]}
    if query.services:
        mongo_filter["service"] = {"$in": list(query.services)}
    if query.user_id:
        mongo_filter["user_id"] = query.user_id
    if query.request_id:
        mongo_filter["request_id"] = query.request_id
    if query.keyword:
        pattern = {"$regex": re.escape(query.keyword), "$options": "i"}
        mongo_filter["$or"] = [
            {"message": pattern},
            {"metadata.error_name": pattern},
        ]
    return mongo_filter


def _time_range(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, datetime]:
    bounds: Dict[str, datetime] = {}
    if start:
        bounds["$gte"] = start
    if end:
        bounds["$lte"] = end
    return bounds


def build_stats_pipeline(
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    pipeline: List[Dict[str, Any]] = []
    time_range = _time_range(start_time, end_time)
    if time_range:
        pipeline.append({"$match": {"timestamp": time_range}})
    pipeline.append(
        {
            "$facet": {
                "total": [{"$count": "count"}],
                "by_level": [{"$group": {"_id": "$level", "count": {"$sum": 1}}}],
                "by_type": [{"$group": {"_id": "$type", "count": {"$sum": 1}}}],
                "by_hour": [
                    {
                        "$group": {
                            "_id": {
                                "$dateToString": {
                                    "format": "%Y-%m-%d %H:00:00",
                                    "date": "$timestamp",
                                }
                            },
                            "count": {"$sum": 1},
                        }
                    },
                    {"$sort": {"_id": 1}},
                    {"$project": {"_id": 0, "hour": "$_id", "count": 1}},
                ],
                "error_count": [
                    {"$match": {"level": {"$in": [level.value for level in LogLevel if level.is_error]}}},
                    {"$count": "count"},
                ],
                "avg_response_time": [
                    {
                        "$match": {
                            "type": LogType.HTTP.value,
                            "metadata.duration": {"$type": "number"},
                        }
                    },
                    {"$group": {"_id": None, "avg": {"$avg": "$metadata.duration"}}},
                ],
            }
        }
    )
    return pipeline


def stats_from_facets(facets: Optional[Dict[str, Any]]) -> LogStats:
    """Shapes the `$facet` document; a missing document means no entries."""
    facets = facets or {}

    def first_count(key: str) -> int:
        rows = facets.get(key) or []
        return int(rows[0].get("count", 0)) if rows else 0

    total = first_count("total")
    error_count = first_count("error_count")

    level_counts = {row.get("_id"): row.get("count", 0) for row in facets.get("by_level") or []}
    type_counts = {row.get("_id"): row.get("count", 0) for row in facets.get("by_type") or []}

    avg_rows = facets.get("avg_response_time") or []
    avg = avg_rows[0].get("avg") if avg_rows else None

    return LogStats(
        total=total,
        by_level={level.value: int(level_counts.get(level.value, 0)) for level in LogLevel},
        by_type={t.value: int(type_counts.get(t.value, 0)) for t in LogType},
        by_hour=[HourBucket(**row) for row in facets.get("by_hour") or []],
        error_rate=(error_count / total) * 100 if total > 0 else 0.0,
        avg_response_time=float(avg) if avg is not None else None,
    )


class LogService:
    """
    Args:
        config: LogServiceConfig (use `LogServiceConfig.from_settings`).
        collection_provider: returns the `logs` collection.
        writer: sink writer; built from the config when omitted.
        queue: batch queue; built from the config when omitted.
    """

    def __init__(
        self,
        config: LogServiceConfig,
        collection_provider: CollectionProvider,
        writer: Optional[LogWriter] = None,
        queue: Optional[LogBatchQueue] = None,
    ):
        self.config = config
        self._collection_provider = collection_provider
        self.writer = writer or LogWriter(collection_provider, config.log_dir)
        self.queue = queue or LogBatchQueue(
            self._dispatch,
            batch_size=config.batch_size,
            max_pending=config.max_pending,
            overflow_policy=config.overflow_policy,
            max_concurrency=config.max_concurrent_writes,
        )
        self._background: Set[asyncio.Task] = set()

    # ══════════════════════════════════════════════════════════════════════
    # Recording
    # ══════════════════════════════════════════════════════════════════════

    async def log(
        self,
        message: str,
        level: LogLevel,
        log_type: LogType = LogType.APP,
        **context: Any,
    ) -> LogEntry:
        """
        Records one entry.

        `context` accepts the optional LogEntry fields (metadata, request_id,
        user_id, session_id, ip, user_agent, stack).

        Raises:
            ValidationError: the message is empty or longer than 1000 chars,
                or a context field has the wrong type.
        """
        try:
            entry = LogEntry(
                level=level,
                type=log_type,
                message=message,
                service=self.config.service,
                environment=self.config.environment,
                **context,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                message="Invalid log entry",
                context={"errors": e.errors(include_url=False)},
            ) from e

        if self.config.async_mode:
            await self.queue.enqueue(entry)
        else:
            await self._dispatch(entry)
        return entry

    def log_in_background(
        self,
        message: str,
        level: LogLevel,
        log_type: LogType = LogType.APP,
        **context: Any,
    ) -> "asyncio.Task[None]":
        """
        Schedules `log()` without waiting for it.

        Failures are logged, never raised. The task is kept until it finishes
        and `stop()` waits for every outstanding one before draining the queue.
        """
        task = asyncio.create_task(self._log_quietly(message, level, log_type, context))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _log_quietly(
        self, message: str, level: LogLevel, log_type: LogType, context: Dict[str, Any]
    ) -> None:
        try:
            await self.log(message, level, log_type, **context)
        except Exception as e:
            logger.error("Failed to record %s log '%s': %s", log_type.value, message[:100], e)

    async def join_background(self) -> None:
        """Waits for every entry handed to `log_in_background` so far."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def debug(self, message: str, metadata: Optional[Dict[str, Any]] = None,
                    log_type: LogType = LogType.APP) -> LogEntry:
        return await self.log(message, LogLevel.DEBUG, log_type, metadata=metadata)

    async def info(self, message: str, metadata: Optional[Dict[str, Any]] = None,
                   log_type: LogType = LogType.APP) -> LogEntry:
        return await self.log(message, LogLevel.INFO, log_type, metadata=metadata)

    async def warn(self, message: str, metadata: Optional[Dict[str, Any]] = None,
                   log_type: LogType = LogType.APP) -> LogEntry:
        return await self.log(message, LogLevel.WARN, log_type, metadata=metadata)

    async def error(self, message: str, error: Optional[BaseException] = None,
                    metadata: Optional[Dict[str, Any]] = None,
                    log_type: LogType = LogType.APP) -> LogEntry:
        return await self._log_failure(LogLevel.ERROR, message, error, metadata, log_type)

    async def fatal(self, message: str, error: Optional[BaseException] = None,
                    metadata: Optional[Dict[str, Any]] = None,
                    log_type: LogType = LogType.APP) -> LogEntry:
        return await self._log_failure(LogLevel.FATAL, message, error, metadata, log_type)

    async def _log_failure(
        self,
        level: LogLevel,
        message: str,
        error: Optional[BaseException],
        metadata: Optional[Dict[str, Any]],
        log_type: LogType,
    ) -> LogEntry:
        merged = dict(metadata or {})
        stack = None
        if error is not None:
            merged["error_name"] = type(error).__name__
            merged["error_message"] = str(error)
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return await self.log(message, level, log_type, metadata=merged or None, stack=stack)

    async def _dispatch(self, entry: LogEntry) -> Dict[Sink, bool]:
        policy = decide_storage(entry.level, entry.type, self.config.default_storage)
        return await self.writer.write(entry, policy)

    # ══════════════════════════════════════════════════════════════════════
    # Reading
    # ══════════════════════════════════════════════════════════════════════

    async def query(self, query: LogQuery) -> LogQueryResult:
        """
        Filtered, paginated, sorted read of stored entries.

        The page and the total come from two concurrent calls, so they are
        not a consistent snapshot under concurrent writes.
        """
        mongo_filter = build_query_filter(query)
        direction = ASCENDING if query.sort_order == "asc" else DESCENDING
        skip = (query.page - 1) * query.limit

        try:
            collection = self._collection_provider()
            cursor = (
                collection.find(mongo_filter, {"_id": 0})
                .sort(query.sort_by, direction)
                .skip(skip)
                .limit(query.limit)
            )
            logs, total = await asyncio.gather(
                cursor.to_list(length=None),
                collection.count_documents(mongo_filter),
            )
        except PyMongoError as e:
            logger.error("Failed to query logs: %s", e)
            raise DatabaseError(context={"operation": "query_logs", "error": str(e)}) from e

        return LogQueryResult(logs=logs, total=total, page=query.page, limit=query.limit)

    async def get_stats(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> LogStats:
        pipeline = build_stats_pipeline(start_time, end_time)
        try:
            cursor = await self._collection_provider().aggregate(pipeline)
            rows = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Failed to get log stats: %s", e)
            raise DatabaseError(context={"operation": "log_stats", "error": str(e)}) from e

        return stats_from_facets(rows[0] if rows else None)

    # ══════════════════════════════════════════════════════════════════════
    # Retention
    # ══════════════════════════════════════════════════════════════════════

    async def cleanup(self) -> int:
        """Deletes entries older than `db_retention_days`; returns the count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.config.db_retention_days)
        try:
            result = await self._collection_provider().delete_many({"timestamp": {"$lt": cutoff}})
        except PyMongoError as e:
            logger.error("Failed to clean up logs: %s", e)
            raise DatabaseError(context={"operation": "cleanup_logs", "error": str(e)}) from e

        logger.info("Cleaned up %d log entries older than %s", result.deleted_count, cutoff.isoformat())
        return result.deleted_count

    async def cleanup_files(self) -> int:
        """
        Deletes `{date}-{type}.log` files whose date is older than
        `file_retention_days`. Files that cannot be removed are skipped.
        """
        log_dir = self.config.log_dir
        if not await aiofiles.os.path.isdir(log_dir):
            return 0

        cutoff = (datetime.now(timezone.utc) - timedelta(days=self.config.file_retention_days)).date()
        removed = 0
        for name in await aiofiles.os.listdir(log_dir):
            match = _LOG_FILE_DATE.match(name)
            if not match:
                continue
            try:
                file_date = datetime.strptime(match.group(1), "%Y-%m-%d").date()
            except ValueError:
                continue
            if file_date >= cutoff:
                continue
            try:
                await aiofiles.os.remove(os.path.join(log_dir, name))
                removed += 1
            except OSError as e:
                logger.warning("Could not remove expired log file %s: %s", name, e)

        if removed:
            logger.info("Removed %d log files older than %s", removed, cutoff.isoformat())
        return removed

    # ══════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ══════════════════════════════════════════════════════════════════════

    @property
    def pending_count(self) -> int:
        return self.queue.pending_count + len(self._background)

    def start(self) -> None:
        if self.config.async_mode:
            self.queue.start(self.config.batch_interval_ms)

    async def stop(self) -> None:
        """Stops the timer and drains every buffered entry into its sinks."""
        await self.join_background()
        await self.queue.stop()
        logger.info("Log service stopped")
