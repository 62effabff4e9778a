"""
Jigu Server: Log Routes
=======================

Endpoints:
    GET    /api/logs           query stored entries
    GET    /api/logs/stats     aggregate counts over a time range
    DELETE /api/logs/cleanup   retention sweep (database and files)
    POST   /api/logs           record an entry from a client

Query string example:
    /api/logs?levels=error,fatal&types=http&keyword=timeout&page=2&limit=20

List parameters are comma separated; unknown level/type names are dropped
rather than rejected, and `limit` is clamped to 1..1000.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from jigu.context import get_log_service
from jigu.schemas.common import ok
from jigu.schemas.logs import CleanupResult, CreateLogRequest, LogQuery
from jigu.services.log_service import LogService

router = APIRouter(prefix="/api/logs", tags=["Logs"])


@router.get("", summary="Query logs")
@router.get("/", include_in_schema=False)
async def query_logs(
    start_time: Optional[datetime] = Query(default=None),
    end_time: Optional[datetime] = Query(default=None),
    levels: Optional[str] = Query(default=None, description="Comma list, e.g. warn,error"),
    types: Optional[str] = Query(default=None, description="Comma list, e.g. http,app"),
    services: Optional[str] = Query(default=None, description="Comma list of service names"),
    user_id: Optional[str] = Query(default=None),
    request_id: Optional[str] = Query(default=None),
    keyword: Optional[str] = Query(default=None, max_length=200),
    page: Optional[int] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    sort_by: Optional[str] = Query(default=None),
    sort_order: Optional[str] = Query(default=None),
    service: LogService = Depends(get_log_service),
):
    query = LogQuery.from_params(
        start_time=start_time,
        end_time=end_time,
        levels=levels,
        types=types,
        services=services,
        user_id=user_id,
        request_id=request_id,
        keyword=keyword,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = await service.query(query)
    return ok(result.model_dump(mode="json"), message="Logs retrieved successfully")


@router.get("/stats", summary="Log statistics")
async def log_stats(
    start_time: Optional[datetime] = Query(default=None),
    end_time: Optional[datetime] = Query(default=None),
    service: LogService = Depends(get_log_service),
):
    stats = await service.get_stats(start_time, end_time)
    return ok(stats.model_dump(mode="json"), message="Log statistics retrieved successfully")


@router.delete("/cleanup", summary="Delete expired logs")
async def cleanup_logs(service: LogService = Depends(get_log_service)):
    deleted = await service.cleanup()
    deleted_files = await service.cleanup_files()
    result = CleanupResult(deleted_count=deleted, deleted_files=deleted_files)
    return ok(
        result.model_dump(),
        message=f"Successfully cleaned up {deleted} log entries and {deleted_files} files",
    )


@router.post("", summary="Record a log entry")
@router.post("/", include_in_schema=False)
async def record_log(
    body: CreateLogRequest,
    request: Request,
    service: LogService = Depends(get_log_service),
):
    fields = body.model_dump(exclude={"message", "level", "type"}, exclude_none=True)
    await service.log(
        body.message,
        body.level,
        body.type,
        request_id=getattr(request.state, "request_id", None),
        **fields,
    )
    return ok(message="Log recorded successfully")
