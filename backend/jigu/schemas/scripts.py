"""
Jigu Server: Script and Completion Schemas
==========================================

What:  Pydantic models defining the /api/v1 contract.
Who:   Used by routes/scripts.py and routes/completions.py for validation,
       and by ScriptService for the shape it returns.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# Scripts
# ══════════════════════════════════════════════════════════════════════════


class CreateScriptRequest(BaseModel):
    """
    Body of POST /api/v1/scripts.

    Example:
        {"name": "deploy.sh", "content": "#!/bin/sh\\nmake deploy"}
    """

    name: str = Field(min_length=1, max_length=255, description="Script name")
    content: str = Field(min_length=1, description="Script source")
    opened_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Script name is required")
        return v


class UpdateScriptRequest(BaseModel):
    """Body of PUT /api/v1/scripts/{id}. Every field is optional."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = Field(default=None, min_length=1)
    opened_at: Optional[datetime] = None

    def changes(self) -> dict:
        """Only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class ScriptResponse(BaseModel):
    id: str
    name: str
    content: str
    opened_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ScriptStats(BaseModel):
    total_scripts: int
    last_updated_at: Optional[datetime] = None


# ══════════════════════════════════════════════════════════════════════════
# Completions
# ══════════════════════════════════════════════════════════════════════════


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"] = "user"
    content: str = Field(min_length=1)


class CompletionRequest(BaseModel):
    """Body of POST /api/v1/completions. A chat id is generated when absent."""

    messages: List[ChatMessage] = Field(min_length=1)
    chat_id: Optional[str] = None
