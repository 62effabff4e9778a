"""
Jigu Server: Application Context
================================

What:  The one object that owns every long-lived resource of the server.
How:   Built once by `create_app()` and stored on `app.state.context`. Route
       dependencies read it from the request, so nothing in the request path
       touches module-level globals and tests can build their own context
       with mocked parts.
Who:   Created by main.create_app(); started and stopped by the lifespan and
       the runner.

Lifecycle:
    INIT ──start()──▶ READY ──(shutdown begins)──▶ DRAINING ──▶ CLOSED
"""

import logging
import sys
import time
from enum import Enum
from typing import Callable, Optional

from fastapi import Request

from jigu.config import Settings
from jigu.database import CollectionName, MongoManager
from jigu.services.completion_service import CompletionService
from jigu.services.log_service import LogService, LogServiceConfig
from jigu.services.script_service import ScriptService
from jigu.shutdown import GracefulShutdown, ShutdownState

logger = logging.getLogger(__name__)

LOG_FLUSH_PHASE = 1
DATABASE_CLOSE_PHASE = 2


class LifecycleState(str, Enum):
    INIT = "init"
    READY = "ready"
    DRAINING = "draining"
    CLOSED = "closed"


class AppContext:
    def __init__(
        self,
        settings: Settings,
        mongo: Optional[MongoManager] = None,
        log_service: Optional[LogService] = None,
        script_service: Optional[ScriptService] = None,
        completion_service: Optional[CompletionService] = None,
        shutdown: Optional[GracefulShutdown] = None,
        exit_func: Optional[Callable[[int], object]] = None,
    ):
        self.settings = settings
        self.mongo = mongo or MongoManager(settings)
        self.log_service = log_service or LogService(
            LogServiceConfig.from_settings(settings),
            collection_provider=lambda: self.mongo.get_collection(CollectionName.LOGS),
        )
        self.script_service = script_service or ScriptService(self.mongo)
        self.completion_service = completion_service or CompletionService(settings)
        self.shutdown = shutdown or GracefulShutdown(
            settings.shutdown_timeout_ms, exit_func or sys.exit
        )
        self.started_at = time.time()
        self._started = False

    @property
    def state(self) -> LifecycleState:
        shutdown_state = self.shutdown.state
        if shutdown_state is ShutdownState.TERMINATED:
            return LifecycleState.CLOSED
        if shutdown_state is ShutdownState.SHUTTING_DOWN:
            return LifecycleState.DRAINING
        return LifecycleState.READY if self._started else LifecycleState.INIT

    @property
    def uptime_seconds(self) -> float:
        return round(time.time() - self.started_at, 2)

    async def start(self) -> None:
        """
        Validates configuration, connects MongoDB, starts the log timer and
        registers the cleanups. Idempotent.

        Raises:
            ConfigurationError: a required setting is missing.
            DatabaseError: MongoDB stayed unreachable through every retry.
        """
        if self._started:
            return

        self.settings.validate_required_for_startup()
        await self.mongo.connect()
        self.log_service.start()

        self.shutdown.register_cleanup(self.log_service.stop, "log service", phase=LOG_FLUSH_PHASE)
        self.shutdown.register_cleanup(self.completion_service.close, "completions client",
                                       phase=LOG_FLUSH_PHASE)
        self.shutdown.register_cleanup(self.mongo.close, "MongoDB connection",
                                       phase=DATABASE_CLOSE_PHASE)

        self._started = True
        self.started_at = time.time()
        logger.info("Application context ready")


def get_context(request: Request) -> AppContext:
    """FastAPI dependency: the AppContext of the app serving this request."""
    return request.app.state.context


def get_log_service(request: Request) -> LogService:
    return get_context(request).log_service


def get_script_service(request: Request) -> ScriptService:
    return get_context(request).script_service


def get_completion_service(request: Request) -> CompletionService:
    return get_context(request).completion_service
