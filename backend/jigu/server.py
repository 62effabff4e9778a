"""
Jigu Server: Process Runner
===========================

What:  Runs the app under uvicorn with the GracefulShutdown coordinator in
       charge of signals, instead of uvicorn's own handlers.
How:   The HTTP server is registered as the phase 0 cleanup, so on SIGTERM /
       SIGINT the coordinator first stops accepting requests, then drains the
       log queue (phase 1), then closes MongoDB (phase 2), and finally
       reports an exit code: 0 when every cleanup settled in time, 1 otherwise.
Who:   `python -m jigu` or the `jigu-server` console script.

Running `uvicorn jigu.main:app` directly also works; uvicorn then owns the
signals and the lifespan shutdown runs the same cleanup sequence.
"""

import asyncio
import contextlib
import logging
import sys
from typing import List, Optional

import uvicorn

from jigu.config import Settings, settings as default_settings
from jigu.main import create_app, setup_logging
from jigu.shutdown import ShutdownState

logger = logging.getLogger(__name__)

HTTP_SERVER_PHASE = 0


class JiguServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to GracefulShutdown."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


async def serve(config: Optional[Settings] = None) -> int:
    """
    Serves until a shutdown completes and returns the process exit code.

    Exit codes:
        0  shutdown finished within its timeout
        1  shutdown timed out, or the server never started
    """
    cfg = config or default_settings
    setup_logging(cfg)

    exit_codes: List[int] = []
    exited = asyncio.Event()

    def record_exit(code: int) -> None:
        exit_codes.append(code)
        exited.set()

    application = create_app(cfg, exit_func=record_exit)
    ctx = application.state.context

    server = JiguServer(
        uvicorn.Config(
            application,
            host=cfg.server_host,
            port=cfg.server_port,
            lifespan="on",
            log_config=None,
        )
    )
    ctx.shutdown.install_signal_handlers()
    serve_task = asyncio.ensure_future(server.serve())

    async def stop_http_server() -> None:
        server.should_exit = True
        await serve_task

    ctx.shutdown.register_cleanup(stop_http_server, "HTTP server", phase=HTTP_SERVER_PHASE)

    try:
        await serve_task
    except Exception as e:
        fault = ctx.shutdown.handle_fault(e, "HTTP server crashed")
        if fault is not None:
            await fault

    if ctx.shutdown.state is ShutdownState.SHUTTING_DOWN:
        await exited.wait()

    if exit_codes:
        return exit_codes[0]
    if not server.started:
        logger.error("Server failed to start")
        return 1
    return 0


def run() -> None:
    sys.exit(asyncio.run(serve()))
