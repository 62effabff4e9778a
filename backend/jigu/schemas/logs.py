"""
Jigu Server: Log API Schemas
============================

What:  Request and response models for the /api/logs endpoints.
How:   Query parameters arrive as strings; `LogQuery.from_params()` turns the
       comma-separated lists into enum lists (unknown values dropped) and
       clamps the page size, so LogService always receives a clean query.
Who:   Built by routes/logs.py; consumed by LogService.query/get_stats.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from jigu.models.log_entry import LogLevel, LogType

MAX_QUERY_LIMIT = 1000
DEFAULT_QUERY_LIMIT = 50


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class CreateLogRequest(BaseModel):
    """
    Body of POST /api/logs.

    `id`, `timestamp`, `service` and `environment` are filled in by the
    server; a client cannot set them.
    """

    message: str = Field(min_length=1, max_length=1000)
    level: LogLevel
    type: LogType
    metadata: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    stack: Optional[str] = None


class LogQuery(BaseModel):
    """Filters, pagination and sort for LogService.query()."""

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    levels: Optional[List[LogLevel]] = None
    types: Optional[List[LogType]] = None
    services: Optional[List[str]] = None
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    keyword: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT)
    sort_by: str = Field(default="timestamp")
    sort_order: Literal["asc", "desc"] = Field(default="desc")

    @classmethod
    def from_params(
        cls,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        levels: Optional[str] = None,
        types: Optional[str] = None,
        services: Optional[str] = None,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        keyword: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> "LogQuery":
        """
        Builds a query from raw query-string values.

        Unknown level/type names are silently dropped, `limit` is clamped to
        1..1000 and a non-positive `page` falls back to 1.
        """
        if limit is None:
            limit = DEFAULT_QUERY_LIMIT
        return cls(
            start_time=start_time,
            end_time=end_time,
            levels=_parse_enum_list(levels, LogLevel),
            types=_parse_enum_list(types, LogType),
            services=_split_csv(services),
            user_id=user_id or None,
            request_id=request_id or None,
            keyword=keyword or None,
            page=page if page and page > 0 else 1,
            limit=min(max(limit, 1), MAX_QUERY_LIMIT),
            sort_by=sort_by or "timestamp",
            sort_order="asc" if sort_order == "asc" else "desc",
        )


def _split_csv(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_enum_list(raw: Optional[str], enum_cls):
    parts = _split_csv(raw)
    if parts is None:
        return None
    allowed = {member.value for member in enum_cls}
    return [enum_cls(part) for part in parts if part in allowed]


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class LogQueryResult(BaseModel):
    logs: List[Dict[str, Any]]
    total: int
    page: int
    limit: int


class HourBucket(BaseModel):
    hour: str = Field(description="Bucket label, formatted YYYY-MM-DD HH:00:00")
    count: int


class LogStats(BaseModel):
    """
    Aggregate counts over an optional time range.

    `by_level` and `by_type` always contain every enum member (zero-filled).
    `error_rate` is a percentage of error+fatal entries, 0 when `total` is 0.
    `avg_response_time` is the mean `metadata.duration` (ms) of http entries,
    null when no http entry carries a duration.
    """

    total: int
    by_level: Dict[str, int]
    by_type: Dict[str, int]
    by_hour: List[HourBucket]
    error_rate: float
    avg_response_time: Optional[float] = None


class CleanupResult(BaseModel):
    deleted_count: int
    deleted_files: int
