"""
Jigu Server: Log Entry Model
============================

What:  The record written by the log subsystem, plus the closed enumerations
       it is built from (level, type, storage policy, sink).
How:   LogEntry is a frozen Pydantic model. It is created once inside a log
       call, optionally buffered, written to zero or more sinks, then dropped.
Who:   LogService creates entries; LogWriter serialises them; the logs router
       returns stored documents in the same shape.

Document layout (collection `logs`, one JSON line per entry in files):
    {
        "id": "0b7c...",
        "level": "warn",
        "type": "app",
        "message": "Script import took 2.3s",
        "timestamp": ISODate("2025-01-15T12:00:00Z"),
        "service": "jigu-server",
        "environment": "production",
        "metadata": {"duration": 2300},
        "request_id": "a1b2c3d4"
    }
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    """Severity of a log entry, from debug up to fatal."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def python_level(self) -> int:
        """Matching stdlib logging level (fatal maps to CRITICAL)."""
        return _PYTHON_LEVELS[self]

    @property
    def is_error(self) -> bool:
        return self in (LogLevel.ERROR, LogLevel.FATAL)


_PYTHON_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}


class LogType(str, Enum):
    """Category of a log entry, independent of its severity."""

    HTTP = "http"
    APP = "app"
    DB = "db"
    AUTH = "auth"
    SECURITY = "security"
    PERFORMANCE = "performance"
    SYSTEM = "system"


class Sink(str, Enum):
    CONSOLE = "console"
    DATABASE = "database"
    FILE = "file"


class StoragePolicy(str, Enum):
    """Which sinks an entry goes to. Derived per entry, never stored."""

    CONSOLE_ONLY = "console_only"
    DATABASE_ONLY = "database_only"
    FILE_ONLY = "file_only"
    CONSOLE_DB = "console_db"
    CONSOLE_FILE = "console_file"
    ALL = "all"

    @property
    def sinks(self) -> FrozenSet[Sink]:
        return SINKS_BY_POLICY[self]


# Every policy must appear here; LogWriter relies on the lookup never missing.
SINKS_BY_POLICY: Dict[StoragePolicy, FrozenSet[Sink]] = {
    StoragePolicy.CONSOLE_ONLY: frozenset({Sink.CONSOLE}),
    StoragePolicy.DATABASE_ONLY: frozenset({Sink.DATABASE}),
    StoragePolicy.FILE_ONLY: frozenset({Sink.FILE}),
    StoragePolicy.CONSOLE_DB: frozenset({Sink.CONSOLE, Sink.DATABASE}),
    StoragePolicy.CONSOLE_FILE: frozenset({Sink.CONSOLE, Sink.FILE}),
    StoragePolicy.ALL: frozenset({Sink.CONSOLE, Sink.DATABASE, Sink.FILE}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogEntry(BaseModel):
    """
    One record of something that happened.

    `id` and `timestamp` are generated at construction and the model is
    frozen, so neither changes after creation.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    level: LogLevel
    type: LogType
    message: str = Field(min_length=1, max_length=1000)
    timestamp: datetime = Field(default_factory=_utcnow)
    service: str
    environment: str

    metadata: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    stack: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """MongoDB document: enums as strings, datetimes kept native, None dropped."""
        doc = self.model_dump(exclude_none=True)
        doc["level"] = self.level.value
        doc["type"] = self.type.value
        return doc

    def to_json_line(self) -> str:
        return self.model_dump_json(exclude_none=True) + "\n"
