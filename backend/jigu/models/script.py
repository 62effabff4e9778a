"""
Jigu Server: Script Document Model
==================================

What:  Shape of a document in the `scripts` collection and its conversion to
       the API representation.

Document layout:
    {
        "_id": ObjectId("665f1c..."),
        "name": "deploy.sh",
        "content": "#!/bin/sh ...",
        "opened_at": ISODate(...),
        "created_at": ISODate(...),
        "updated_at": ISODate(...)
    }

The API never sees `_id`; it gets the same value as the string `id`.
"""

from typing import Any, Dict

from jigu.schemas.scripts import ScriptResponse


def script_from_document(doc: Dict[str, Any]) -> ScriptResponse:
    return ScriptResponse(
        id=str(doc["_id"]),
        name=doc.get("name", ""),
        content=doc.get("content", ""),
        opened_at=doc.get("opened_at"),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )
