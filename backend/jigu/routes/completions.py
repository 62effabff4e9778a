"""
Jigu Server: Completions Route
==============================

POST /api/v1/completions relays the upstream event stream unchanged, with the
upstream status code, as `text/event-stream`. Failures before the stream
opens (bad configuration, open circuit, unreachable upstream) go through the
global handlers and answer with the usual JSON envelope.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from jigu.context import get_completion_service
from jigu.schemas.scripts import CompletionRequest
from jigu.services.completion_service import CompletionService

router = APIRouter(prefix="/api/v1/completions", tags=["Completions"])


@router.post("", summary="Stream a chat completion")
@router.post("/", include_in_schema=False)
async def create_completion(
    body: CompletionRequest,
    service: CompletionService = Depends(get_completion_service),
):
    upstream = await service.open_stream(body)
    return StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
        background=BackgroundTask(upstream.aclose),
    )
