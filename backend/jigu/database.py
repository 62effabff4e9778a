"""
Jigu Server: MongoDB Connection Management
==========================================

What:  Owns the single async MongoDB client and hands out collections.
How:   `MongoManager.connect()` creates an `AsyncMongoClient` and pings the
       server, retrying with exponential backoff (tenacity) so a database
       that is still booting next to us does not fail the whole startup.
Who:   Created by AppContext; read by the DAL and by LogService through
       `get_collection()`; closed exactly once by the shutdown coordinator.
When:  Connected during the lifespan startup, closed in the last shutdown
       phase (after the log queue has drained into it).
"""

import logging
from enum import Enum
from typing import Optional

from pymongo import AsyncMongoClient
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from jigu.config import Settings
from jigu.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class CollectionName(str, Enum):
    """Logical collection names. The DAL never spells a collection by hand."""

    SCRIPTS = "scripts"
    LOGS = "logs"


class MongoManager:
    """
    Lifecycle wrapper around one AsyncMongoClient.

    States:
        disconnected → connect() → connected → close() → disconnected

    `get_collection()` raises DatabaseError while disconnected, so callers
    fail with the uniform 500 envelope instead of an AttributeError.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: Optional[AsyncMongoClient] = None
        self._db: Optional[AsyncDatabase] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """
        Creates the client and waits until the server answers a ping.

        Raises:
            DatabaseError: every attempt failed.
        """
        if self._client is not None:
            return

        s = self._settings
        client = AsyncMongoClient(
            s.mongodb_uri,
            serverSelectionTimeoutMS=s.mongo_server_selection_timeout_ms,
            tz_aware=True,
        )

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(PyMongoError),
                stop=stop_after_attempt(s.mongo_connect_attempts),
                wait=wait_exponential_jitter(
                    initial=s.mongo_connect_min_wait,
                    max=s.mongo_connect_max_wait,
                    jitter=1,
                ),
                before_sleep=before_sleep_log(logger, logging.WARNING),
            ):
                with attempt:
                    await client.admin.command("ping")
        except RetryError as e:
            await client.close()
            last = e.last_attempt.exception() if e.last_attempt else None
            logger.error("MongoDB unreachable after %d attempts: %s", s.mongo_connect_attempts, last)
            raise DatabaseError(
                message="Unable to connect to the database",
                context={"attempts": s.mongo_connect_attempts, "error": str(last)},
            ) from e

        self._client = client
        self._db = client[s.mongodb_db_name]
        logger.info("Connected to MongoDB database '%s'", s.mongodb_db_name)

    def get_database(self) -> AsyncDatabase:
        if self._db is None:
            raise DatabaseError(
                message="Database is not connected",
                context={"hint": "MongoManager.connect() has not completed"},
            )
        return self._db

    def get_collection(self, name: CollectionName) -> AsyncCollection:
        return self.get_database()[CollectionName(name).value]

    async def ping(self) -> bool:
        """True when the server answers; never raises."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("MongoDB ping failed: %s", e)
            return False

    async def close(self) -> None:
        """Closes the client. Safe to call more than once."""
        if self._client is None:
            return
        client, self._client, self._db = self._client, None, None
        await client.close()
        logger.info("MongoDB connection closed")
