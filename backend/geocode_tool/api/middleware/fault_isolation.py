"""Fault Isolation — per-request error boundary with drain-and-replace on fatal faults.

Invariants:
    - Every request runs inside its own FaultScope, reachable explicitly as
      request.state.fault_scope and implicitly through spawn(); tasks started
      either way report their exceptions to that scope
    - Exactly one fault is recorded per request; later ones are logged and dropped
    - Fault with an HTTP status → error envelope, worker keeps accepting
    - Fault without one → CRITICAL log, lifecycle.begin_drain(), best-effort
      error envelope to the triggering request; a failure there is logged at
      EMERGENCY and never retried
    - Other in-flight requests are never touched

Design Decisions:
    - Downstream app runs as a child task raced against the scope's fault
      channel: a background failure ends the request even while the handler is
      still awaiting something unrelated
    - A fault reported after the response went out still drains the worker,
      it just has no request left to answer
"""

import asyncio
import logging
from contextvars import ContextVar
from typing import Any, Callable, Coroutine

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from geocode_tool.api.error_handlers import send_error_response
from geocode_tool.api.middleware.access_log import request_url
from geocode_tool.infrastructure.observability import EMERGENCY
from geocode_tool.runtime.lifecycle import FaultRecord, WorkerLifecycle

logger = logging.getLogger(__name__)

_current_scope: ContextVar["FaultScope | None"] = ContextVar(
    "geocode_tool_fault_scope", default=None,
)


class FaultScope:
    """Error channel for a single request."""

    def __init__(self) -> None:
        self.channel: asyncio.Future = asyncio.get_running_loop().create_future()
        self._late_handler: Callable[[BaseException], None] | None = None
        self._tasks: set[asyncio.Task] = set()

    def report(self, exc: BaseException) -> None:
        if self.channel.done():
            logger.error(
                f"Secondary fault dropped: {exc!r}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            return
        self.channel.set_result(exc)
        if self._late_handler is not None:
            self._late_handler(exc)

    def settle(self, late_handler: Callable[[BaseException], None]) -> None:
        """The response is complete; route later faults to late_handler."""
        if not self.channel.done():
            self._late_handler = late_handler

    def spawn(
        self, coro: Coroutine[Any, Any, Any], *, name: str | None = None,
    ) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.report(exc)


def current_fault_scope() -> FaultScope | None:
    return _current_scope.get()


def spawn(
    coro: Coroutine[Any, Any, Any], *, name: str | None = None,
) -> asyncio.Task:
    """Start background work whose failure counts against the current request."""
    scope = _current_scope.get()
    if scope is None:
        coro.close()
        raise RuntimeError("spawn() called outside of a request")
    return scope.spawn(coro, name=name)


class FaultIsolationMiddleware:
    def __init__(self, app: ASGIApp, *, lifecycle: WorkerLifecycle) -> None:
        self.app = app
        self.lifecycle = lifecycle

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Body parsing faults skip route dispatch entirely
        body_fault = scope.get("state", {}).get("body_fault")
        if body_fault is not None:
            await self._respond(scope, receive, send, body_fault, False)
            return

        response_started = False

        async def send_tracking(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        fault_scope = FaultScope()
        scope.setdefault("state", {})["fault_scope"] = fault_scope
        token = _current_scope.set(fault_scope)
        try:
            app_task = asyncio.ensure_future(
                self.app(scope, receive, send_tracking),
            )
        finally:
            _current_scope.reset(token)

        try:
            await asyncio.wait(
                {app_task, fault_scope.channel},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            app_task.cancel()
            raise

        if fault_scope.channel.done():
            exc = fault_scope.channel.result()
            await _cancel(app_task)
        else:
            exc = app_task.exception()
            if exc is None:
                fault_scope.settle(self._late_fault_handler(scope))
                return
            fault_scope.report(exc)

        record = FaultRecord.from_exception(exc)
        if record.fatal:
            self._fail(scope, record)
        await self._respond(scope, receive, send_tracking, exc, response_started)

    def _fail(self, scope: Scope, record: FaultRecord) -> None:
        logger.critical(
            f"Uncaught exception on {scope['method']} {request_url(scope)}: "
            f"{record.message}",
            exc_info=(type(record.error), record.error, record.error.__traceback__),
            extra={
                "method": scope["method"],
                "url": request_url(scope),
                "worker_state": self.lifecycle.state.value,
            },
        )
        self.lifecycle.begin_drain(record)

    def _late_fault_handler(self, scope: Scope) -> Callable[[BaseException], None]:
        def handle(exc: BaseException) -> None:
            record = FaultRecord.from_exception(exc)
            if record.fatal:
                self._fail(scope, record)
            else:
                logger.error(
                    f"Background fault after response on {request_url(scope)}: "
                    f"{record.message}",
                )
        return handle

    async def _respond(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        exc: BaseException,
        response_started: bool,
    ) -> None:
        try:
            await send_error_response(
                scope, receive, send, exc, response_started=response_started,
            )
        except Exception:
            logger.log(
                EMERGENCY,
                f"Failed to send error response for {request_url(scope)}",
                exc_info=True,
            )


async def _cancel(task: asyncio.Task) -> None:
    if task.done():
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Secondary fault dropped: {task.exception()!r}")
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error(f"Secondary fault dropped: {e!r}")
