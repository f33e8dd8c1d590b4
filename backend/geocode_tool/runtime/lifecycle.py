"""Worker Lifecycle — explicit accepting → draining → terminated state machine.

Invariants:
    - State only moves forward: ACCEPTING → DRAINING → TERMINATED
    - begin_drain() runs its side effects once per worker lifetime:
      arm deadline, close listener, notify supervisor (in that order)
    - The deadline timer is a daemon thread: it never keeps the process alive
    - A failing side effect is logged at EMERGENCY and never stops the others

Design Decisions:
    - Listener and supervisor are injected handles, not captured globals:
      uvicorn, a parent process or a test fake all fit the same protocol
    - Deadline on a thread, not loop.call_later: it must still fire when the
      event loop is wedged by the very fault that triggered the drain
"""

import logging
import os
import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Protocol

from geocode_tool.core.errors import status_of
from geocode_tool.infrastructure.observability import EMERGENCY

logger = logging.getLogger(__name__)

FAULT_EXIT_CODE = 1


class WorkerState(str, Enum):
    ACCEPTING = "accepting"
    DRAINING = "draining"
    TERMINATED = "terminated"


class Listener(Protocol):
    """Anything that can stop accepting new connections."""
    def close(self) -> None: ...


class SupervisorHandle(Protocol):
    """Channel to whoever replaces this worker."""
    def disconnect(self) -> None: ...


@dataclass
class FaultRecord:
    """The single fault captured for one request."""
    error: BaseException
    message: str
    status: int | None = None
    trace: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FaultRecord":
        trace = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__),
        )
        return cls(
            error=exc,
            message=str(exc) or type(exc).__name__,
            status=status_of(exc),
            trace=trace or None,
        )

    @property
    def fatal(self) -> bool:
        return self.status is None


class WorkerLifecycle:
    """Owns worker state, the listener handle and the supervisor handle."""

    def __init__(
        self,
        supervisor: SupervisorHandle | None = None,
        listener: Listener | None = None,
        shutdown_timeout: float = 5.0,
        exit_process: Callable[[int], None] = os._exit,
    ):
        self._state = WorkerState.ACCEPTING
        self._supervisor = supervisor
        self._listener = listener
        self.shutdown_timeout = shutdown_timeout
        self._exit_process = exit_process
        self._deadline: threading.Timer | None = None
        self.fault: FaultRecord | None = None

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def faulted(self) -> bool:
        return self.fault is not None

    def attach_listener(self, listener: Listener) -> None:
        self._listener = listener

    def attach_supervisor(self, supervisor: SupervisorHandle) -> None:
        self._supervisor = supervisor

    def begin_drain(self, fault: FaultRecord) -> bool:
        """Start the drain-and-replace sequence. Returns False if already started."""
        if self._state is not WorkerState.ACCEPTING:
            logger.warning(
                f"Fault while {self._state.value}, drain already in progress",
                extra={"worker_state": self._state.value},
            )
            return False
        self._state = WorkerState.DRAINING
        self.fault = fault
        self._arm_deadline()
        self._close_listener()
        self._notify_supervisor()
        return True

    def mark_terminated(self) -> None:
        """Graceful shutdown finished; the forced exit is no longer needed."""
        if self._deadline is not None:
            self._deadline.cancel()
        self._state = WorkerState.TERMINATED
        logger.info(
            "Worker terminated", extra={"worker_state": self._state.value},
        )

    def _arm_deadline(self) -> None:
        self._deadline = threading.Timer(
            self.shutdown_timeout, self._force_exit,
        )
        self._deadline.daemon = True
        self._deadline.start()

    def _force_exit(self) -> None:
        logger.critical(
            f"Graceful shutdown exceeded {self.shutdown_timeout}s, forcing exit",
            extra={"worker_state": self._state.value},
        )
        self._exit_process(FAULT_EXIT_CODE)

    def _close_listener(self) -> None:
        if self._listener is None:
            logger.warning("No listener attached, nothing to stop")
            return
        try:
            self._listener.close()
        except Exception:
            logger.log(EMERGENCY, "Failed to close listener", exc_info=True)

    def _notify_supervisor(self) -> None:
        if self._supervisor is None:
            logger.warning("No supervisor attached, worker will not be replaced")
            return
        try:
            self._supervisor.disconnect()
        except Exception:
            logger.log(EMERGENCY, "Failed to notify supervisor", exc_info=True)
