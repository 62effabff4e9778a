"""
Jigu Server: Health Check Route
===============================

What:  Liveness/readiness check for Docker and load balancers.
How:   Pings MongoDB and reports the lifecycle state and the number of log
       entries still buffered. Answers 503 while unhealthy or draining so a
       balancer stops routing to an instance that is going away.

Status levels:
    healthy         database reachable, lifecycle READY     (200)
    unhealthy       database unreachable                    (503)
    shutting_down   lifecycle DRAINING or CLOSED            (503)
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from jigu import __version__
from jigu.context import AppContext, LifecycleState, get_context
from jigu.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(ctx: AppContext = Depends(get_context)):
    db_ok = await ctx.mongo.ping()
    state = ctx.state

    if state in (LifecycleState.DRAINING, LifecycleState.CLOSED):
        overall = "shutting_down"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "healthy"

    body = HealthResponse(
        status=overall,
        version=__version__,
        database="connected" if db_ok else "disconnected",
        lifecycle=state.value,
        pending_logs=ctx.log_service.pending_count,
        uptime_seconds=ctx.uptime_seconds,
        checked_at=datetime.now(timezone.utc),
    )
    return JSONResponse(
        status_code=200 if overall == "healthy" else 503,
        content=body.model_dump(mode="json"),
    )
