"""
Jigu Server: Script Service
===========================

What:  Business rules for the script workbench (CRUD, search, stats).
How:   Delegates persistence to ScriptsDAL and converts documents into
       ScriptResponse models. Driver errors become DatabaseError so the
       routes only ever see the application's own exceptions.
Who:   Called by routes/scripts.py through the AppContext.

Search semantics:
    `list_scripts(search="deploy")` returns scripts whose name OR content
    contains "deploy" (case-insensitive). Name matches come first; a script
    matching both appears once, at its first position.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from jigu.dal.scripts import ScriptsDAL
from jigu.database import MongoManager
from jigu.exceptions import DatabaseError, NotFoundError, ValidationError
from jigu.models.script import script_from_document
from jigu.schemas.scripts import (
    CreateScriptRequest,
    ScriptResponse,
    ScriptStats,
    UpdateScriptRequest,
)

logger = logging.getLogger(__name__)


class ScriptService:
    def __init__(self, mongo: MongoManager, dal: Optional[ScriptsDAL] = None):
        self.dal = dal or ScriptsDAL(mongo)

    async def list_scripts(self, search: Optional[str] = None) -> List[ScriptResponse]:
        try:
            if search:
                by_name = await self.dal.search_by_name(search)
                by_content = await self.dal.search_by_content(search)
                docs = _unique_by_id(by_name + by_content)
            else:
                docs = await self.dal.find_all()
        except PyMongoError as e:
            raise self._db_error("list_scripts", e) from e
        return [script_from_document(doc) for doc in docs]

    async def get_script(self, script_id: str) -> ScriptResponse:
        """
        Raises:
            ValidationError: malformed id.
            NotFoundError: no script with that id.
        """
        try:
            doc = await self.dal.find_by_id(script_id)
        except PyMongoError as e:
            raise self._db_error("get_script", e) from e
        if doc is None:
            raise NotFoundError(resource="script", resource_id=script_id)
        return script_from_document(doc)

    async def create_script(self, data: CreateScriptRequest) -> str:
        try:
            script_id = await self.dal.create(data.model_dump())
        except PyMongoError as e:
            raise self._db_error("create_script", e) from e
        logger.info("Created script %s (%s)", script_id, data.name)
        return script_id

    async def update_script(self, script_id: str, data: UpdateScriptRequest) -> None:
        """
        Partial update; only the fields present in `data` change.

        Raises:
            ValidationError: nothing to update, or malformed id.
            NotFoundError: no script with that id.
        """
        changes = data.changes()
        if not changes:
            raise ValidationError(message="No fields to update")
        try:
            matched = await self.dal.update_by_id(script_id, changes)
        except PyMongoError as e:
            raise self._db_error("update_script", e) from e
        if not matched:
            raise NotFoundError(resource="script", resource_id=script_id)

    async def delete_script(self, script_id: str) -> None:
        try:
            deleted = await self.dal.delete_by_id(script_id)
        except PyMongoError as e:
            raise self._db_error("delete_script", e) from e
        if not deleted:
            raise NotFoundError(resource="script", resource_id=script_id)
        logger.info("Deleted script %s", script_id)

    async def get_stats(self) -> ScriptStats:
        """Total count plus the most recent `updated_at` (null when empty)."""
        try:
            total = await self.dal.count()
            latest = await self.dal.find_latest_updated()
        except PyMongoError as e:
            raise self._db_error("script_stats", e) from e
        return ScriptStats(
            total_scripts=total,
            last_updated_at=latest.get("updated_at") if latest else None,
        )

    @staticmethod
    def _db_error(operation: str, e: Exception) -> DatabaseError:
        logger.error("Script %s failed: %s", operation, e)
        return DatabaseError(context={"operation": operation, "error": str(e)})


def _unique_by_id(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    unique = []
    for doc in docs:
        key = str(doc.get("_id"))
        if key in seen:
            continue
        seen.add(key)
        unique.append(doc)
    return unique
