"""Queries specific to the `scripts` collection."""

import re
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING

from jigu.dal.base import BaseDAL
from jigu.database import CollectionName


class ScriptsDAL(BaseDAL):
    collection_name = CollectionName.SCRIPTS

    async def search_by_name(self, query: str) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on `name` (regex input escaped)."""
        return await self.find_all({"name": {"$regex": re.escape(query), "$options": "i"}})

    async def search_by_content(self, query: str) -> List[Dict[str, Any]]:
        return await self.find_all({"content": {"$regex": re.escape(query), "$options": "i"}})

    async def find_latest_updated(self) -> Optional[Dict[str, Any]]:
        cursor = self.collection.find({}).sort("updated_at", DESCENDING).limit(1)
        docs = await cursor.to_list(length=1)
        return docs[0] if docs else None
