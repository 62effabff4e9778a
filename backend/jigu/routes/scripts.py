"""
Jigu Server: Script Routes
==========================

Endpoints (all answer with the `{code, data, message}` envelope):
    GET    /api/v1/scripts?search=       list, optionally filtered
    GET    /api/v1/scripts/stats/overview   total + last update
    GET    /api/v1/scripts/{id}          one script
    POST   /api/v1/scripts               create → {"id": "..."}
    PUT    /api/v1/scripts/{id}          partial update
    DELETE /api/v1/scripts/{id}          delete

Missing scripts raise NotFoundError (404 / 4004) and malformed ids or bodies
ValidationError (400 / 4000); the handlers in main.py build the envelope.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from jigu.context import get_script_service
from jigu.schemas.common import ok
from jigu.schemas.scripts import CreateScriptRequest, UpdateScriptRequest
from jigu.services.script_service import ScriptService

router = APIRouter(prefix="/api/v1/scripts", tags=["Scripts"])


@router.get("", summary="List scripts")
@router.get("/", include_in_schema=False)
async def list_scripts(
    search: Optional[str] = Query(default=None, max_length=255, description="Name or content substring"),
    service: ScriptService = Depends(get_script_service),
):
    scripts = await service.list_scripts(search=search)
    return ok([s.model_dump(mode="json") for s in scripts])


# Declared before /{script_id} so "stats" is not taken for an id
@router.get("/stats/overview", summary="Script statistics")
async def script_stats(service: ScriptService = Depends(get_script_service)):
    stats = await service.get_stats()
    return ok(stats.model_dump(mode="json"))


@router.get("/{script_id}", summary="Get one script")
async def get_script(script_id: str, service: ScriptService = Depends(get_script_service)):
    script = await service.get_script(script_id)
    return ok(script.model_dump(mode="json"))


@router.post("", summary="Create a script")
@router.post("/", include_in_schema=False)
async def create_script(
    body: CreateScriptRequest,
    service: ScriptService = Depends(get_script_service),
):
    script_id = await service.create_script(body)
    return ok({"id": script_id}, message="Script created successfully")


@router.put("/{script_id}", summary="Update a script")
async def update_script(
    script_id: str,
    body: UpdateScriptRequest,
    service: ScriptService = Depends(get_script_service),
):
    await service.update_script(script_id, body)
    return ok(message="Script updated successfully")


@router.delete("/{script_id}", summary="Delete a script")
async def delete_script(script_id: str, service: ScriptService = Depends(get_script_service)):
    await service.delete_script(script_id)
    return ok(message="Script deleted successfully")
