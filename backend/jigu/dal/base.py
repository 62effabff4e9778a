"""
Jigu Server: Generic Data Access Base Class
===========================================

What:  CRUD operations shared by every collection.
How:   Subclasses set `collection_name`; the collection is looked up through
       the MongoManager on every call, so a DAL can be built before the
       database is connected.
Who:   Subclassed by ScriptsDAL; used by ScriptService.

Timestamps:
    create()        stamps created_at and updated_at with the same instant
    update_by_id()  refreshes updated_at, never touches created_at
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.asynchronous.collection import AsyncCollection

from jigu.database import CollectionName, MongoManager
from jigu.exceptions import DatabaseError, ValidationError

SortSpec = Sequence[Tuple[str, int]]


def to_object_id(value: Any) -> ObjectId:
    """
    Parses a client-supplied id.

    Raises:
        ValidationError: the value is not a 24-char hex ObjectId.
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(message=f"Invalid id '{value}'", field="id") from None


class BaseDAL:
    """Generic async CRUD over one collection."""

    collection_name: CollectionName

    def __init__(self, mongo: MongoManager):
        self._mongo = mongo

    @property
    def collection(self) -> AsyncCollection:
        return self._mongo.get_collection(self.collection_name)

    async def find_all(
        self,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[SortSpec] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.collection.find(filter or {})
        if sort:
            cursor = cursor.sort(list(sort))
        return await cursor.to_list(length=None)

    async def find_by_id(self, id: Any) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"_id": to_object_id(id)})

    async def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one(filter)

    async def create(self, doc: Dict[str, Any]) -> str:
        """Inserts `doc` with fresh timestamps and returns the new id."""
        now = datetime.now(timezone.utc)
        payload = {k: v for k, v in doc.items() if k not in ("_id", "created_at", "updated_at")}
        payload["created_at"] = now
        payload["updated_at"] = now

        result = await self.collection.insert_one(payload)
        if not result.inserted_id:
            raise DatabaseError(
                message="Failed to create document",
                context={"collection": self.collection_name.value},
            )
        return str(result.inserted_id)

    async def update_by_id(self, id: Any, updates: Dict[str, Any]) -> bool:
        """`$set` the given fields; True when a document matched the id."""
        oid = to_object_id(id)
        changes = {k: v for k, v in updates.items() if k not in ("_id", "created_at")}
        changes["updated_at"] = datetime.now(timezone.utc)

        result = await self.collection.update_one({"_id": oid}, {"$set": changes})
        return result.matched_count > 0

    async def delete_by_id(self, id: Any) -> bool:
        result = await self.collection.delete_one({"_id": to_object_id(id)})
        return result.deleted_count > 0

    async def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        return await self.collection.count_documents(filter or {})
