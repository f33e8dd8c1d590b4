"""Worker Runner — one uvicorn server bound to a WorkerLifecycle.

Invariants:
    - The lifecycle's listener is the uvicorn server itself: closing it sets
      should_exit, which stops accepting and lets in-flight requests finish
    - Graceful shutdown is bounded by server.shutdown_timeout_seconds
    - Exit code is 1 after a fatal fault, 0 after a normal shutdown
"""

import logging
import socket

import uvicorn

from geocode_tool.config import Settings
from geocode_tool.infrastructure.observability import setup_logging
from geocode_tool.main import create_app
from geocode_tool.runtime.lifecycle import (
    FAULT_EXIT_CODE, SupervisorHandle, WorkerLifecycle,
)

logger = logging.getLogger(__name__)


class UvicornListener:
    """Stops a uvicorn server from accepting new connections."""

    def __init__(self, server: uvicorn.Server):
        self._server = server

    def close(self) -> None:
        if not self._server.should_exit:
            logger.warning("Stopping listener, draining in-flight requests")
        self._server.should_exit = True


class StandaloneSupervisorHandle:
    """Used when no supervisor process exists (single in-process worker)."""

    def disconnect(self) -> None:
        logger.warning(
            "No supervisor process, relying on the host to restart this worker",
        )


def run_worker(
    settings: Settings,
    supervisor: SupervisorHandle | None = None,
    sockets: list[socket.socket] | None = None,
) -> int:
    """Serve until shutdown; returns the process exit code."""
    setup_logging(settings.log_level, settings.log_format)
    lifecycle = WorkerLifecycle(
        supervisor=supervisor or StandaloneSupervisorHandle(),
        shutdown_timeout=settings.server.shutdown_timeout_seconds,
    )
    app = create_app(settings, lifecycle)
    config = uvicorn.Config(
        app,
        host=settings.server.hostname,
        port=settings.server.port,
        timeout_graceful_shutdown=settings.server.shutdown_timeout_seconds,
        log_config=None,
        access_log=False,
    )
    server = uvicorn.Server(config)
    lifecycle.attach_listener(UvicornListener(server))

    server.run(sockets=sockets)
    lifecycle.mark_terminated()
    return FAULT_EXIT_CODE if lifecycle.faulted else 0
