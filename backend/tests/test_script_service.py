"""
Jigu Backend: Script Service Unit Tests
=======================================

What:  Tests for ScriptService business logic and the DAL beneath it.
How:   A mock MongoManager hands out a mock `scripts` collection.

What we test:
    ✅ Create stamps timestamps and returns the new id
    ✅ Get raises NotFoundError / ValidationError as appropriate
    ✅ Search merges name and content matches without duplicates
    ✅ Update rejects empty bodies and unknown ids
    ✅ Stats report the most recent update
    ✅ Driver errors become DatabaseError
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from conftest import make_cursor
from jigu.exceptions import DatabaseError, NotFoundError, ValidationError
from jigu.schemas.scripts import CreateScriptRequest, UpdateScriptRequest
from jigu.services.script_service import ScriptService

SCRIPT_ID = "665f1c2e9b1d4a0012345678"


def script_doc(name="deploy.sh", content="make deploy", oid=SCRIPT_ID, updated_at=None):
    now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    return {
        "_id": ObjectId(oid),
        "name": name,
        "content": content,
        "opened_at": now,
        "created_at": now,
        "updated_at": updated_at or now,
    }


class TestScriptServiceCrud:
    def setup_method(self):
        self.collection = MagicMock()
        self.collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId(SCRIPT_ID)))
        self.collection.find_one = AsyncMock(return_value=None)
        self.collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        self.collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
        self.collection.count_documents = AsyncMock(return_value=0)
        self.collection.find = MagicMock(return_value=make_cursor([]))

        mongo = MagicMock()
        mongo.get_collection.return_value = self.collection
        self.service = ScriptService(mongo)

    @pytest.mark.asyncio
    async def test_create_returns_id_and_stamps_timestamps(self):
        script_id = await self.service.create_script(
            CreateScriptRequest(name="deploy.sh", content="make deploy")
        )

        assert script_id == SCRIPT_ID
        doc = self.collection.insert_one.await_args.args[0]
        assert doc["name"] == "deploy.sh"
        assert doc["created_at"] == doc["updated_at"]
        assert doc["opened_at"].tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_returns_script(self):
        self.collection.find_one = AsyncMock(return_value=script_doc())

        script = await self.service.get_script(SCRIPT_ID)

        assert script.id == SCRIPT_ID
        assert script.name == "deploy.sh"
        self.collection.find_one.assert_awaited_once_with({"_id": ObjectId(SCRIPT_ID)})

    @pytest.mark.asyncio
    async def test_get_missing_raises_not_found(self):
        with pytest.raises(NotFoundError):
            await self.service.get_script(SCRIPT_ID)

    @pytest.mark.asyncio
    async def test_get_malformed_id_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.get_script("not-an-object-id")
        assert exc_info.value.field == "id"
        self.collection.find_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_sets_only_sent_fields(self):
        await self.service.update_script(SCRIPT_ID, UpdateScriptRequest(content="make test"))

        query, update = self.collection.update_one.await_args.args
        assert query == {"_id": ObjectId(SCRIPT_ID)}
        assert update["$set"]["content"] == "make test"
        assert "name" not in update["$set"]
        assert "updated_at" in update["$set"]
        assert "created_at" not in update["$set"]

    @pytest.mark.asyncio
    async def test_update_with_empty_body_is_rejected(self):
        with pytest.raises(ValidationError):
            await self.service.update_script(SCRIPT_ID, UpdateScriptRequest())
        self.collection.update_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_unknown_id_raises_not_found(self):
        self.collection.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        with pytest.raises(NotFoundError):
            await self.service.update_script(SCRIPT_ID, UpdateScriptRequest(name="x"))

    @pytest.mark.asyncio
    async def test_delete_unknown_id_raises_not_found(self):
        self.collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
        with pytest.raises(NotFoundError):
            await self.service.delete_script(SCRIPT_ID)

    @pytest.mark.asyncio
    async def test_driver_error_becomes_database_error(self):
        self.collection.find_one = AsyncMock(side_effect=PyMongoError("socket closed"))
        with pytest.raises(DatabaseError) as exc_info:
            await self.service.get_script(SCRIPT_ID)
        assert exc_info.value.context["operation"] == "get_script"


class TestScriptServiceQueries:
    def setup_method(self):
        self.collection = MagicMock()
        mongo = MagicMock()
        mongo.get_collection.return_value = self.collection
        self.service = ScriptService(mongo)

    @pytest.mark.asyncio
    async def test_search_merges_name_and_content_matches(self):
        both = script_doc("deploy.sh", "deploy all", oid="665f1c2e9b1d4a0000000001")
        content_only = script_doc("release.sh", "then deploy", oid="665f1c2e9b1d4a0000000002")
        self.collection.find = MagicMock(side_effect=[
            make_cursor([both]),
            make_cursor([both, content_only]),
        ])

        scripts = await self.service.list_scripts(search="deploy")

        assert [s.name for s in scripts] == ["deploy.sh", "release.sh"]
        name_filter = self.collection.find.call_args_list[0].args[0]
        assert name_filter == {"name": {"$regex": "deploy", "$options": "i"}}

    @pytest.mark.asyncio
    async def test_search_escapes_regex_characters(self):
        self.collection.find = MagicMock(return_value=make_cursor([]))
        await self.service.list_scripts(search="a+b")
        name_filter = self.collection.find.call_args_list[0].args[0]
        assert name_filter["name"]["$regex"] == r"a\+b"

    @pytest.mark.asyncio
    async def test_list_without_search_returns_all(self):
        self.collection.find = MagicMock(return_value=make_cursor([script_doc()]))
        scripts = await self.service.list_scripts()
        assert len(scripts) == 1
        self.collection.find.assert_called_once_with({})

    @pytest.mark.asyncio
    async def test_stats_report_latest_update(self):
        latest = datetime(2025, 2, 1, tzinfo=timezone.utc)
        cursor = make_cursor([script_doc(updated_at=latest)])
        self.collection.find = MagicMock(return_value=cursor)
        self.collection.count_documents = AsyncMock(return_value=4)

        stats = await self.service.get_stats()

        assert stats.total_scripts == 4
        assert stats.last_updated_at == latest
        cursor.sort.assert_called_once_with("updated_at", DESCENDING)

    @pytest.mark.asyncio
    async def test_stats_on_empty_collection(self):
        self.collection.find = MagicMock(return_value=make_cursor([]))
        self.collection.count_documents = AsyncMock(return_value=0)

        stats = await self.service.get_stats()

        assert stats.total_scripts == 0
        assert stats.last_updated_at is None
