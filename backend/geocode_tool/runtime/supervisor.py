"""Worker Supervisor — keeps N worker processes serving one shared socket.

Invariants:
    - The listening socket is bound once, here, and inherited by every worker
    - A worker that sends "disconnect" or dies is replaced exactly once
    - A replaced worker keeps draining in the background until it exits
    - SIGINT/SIGTERM stop the supervisor: workers get SIGTERM, then SIGKILL
      after shutdown_timeout_seconds

Design Decisions:
    - spawn context: workers never inherit the parent's event loop or locks
    - One Pipe per worker: the child only ever sends a single message, the
      parent also watches the process sentinel for crashes without a message
"""

import logging
import multiprocessing as mp
import os
import signal
import socket
import sys
import threading
import time
from dataclasses import dataclass, field
from multiprocessing.connection import Connection, wait

import uvicorn

from geocode_tool.config import Settings

logger = logging.getLogger(__name__)

DISCONNECT = "disconnect"
MIN_UPTIME_SECONDS = 1.0


class PipeSupervisorHandle:
    """Worker-side end of the pipe to the supervisor."""

    def __init__(self, conn: Connection, worker_id: int):
        self._conn = conn
        self.worker_id = worker_id
        self._sent = False

    def disconnect(self) -> None:
        if self._sent:
            return
        self._sent = True
        self._conn.send((DISCONNECT, self.worker_id, os.getpid()))
        self._conn.close()


def _worker_main(
    settings: Settings, conn: Connection, worker_id: int,
    sockets: list[socket.socket],
) -> None:
    from geocode_tool.runtime.worker import run_worker

    sys.exit(run_worker(settings, PipeSupervisorHandle(conn, worker_id), sockets))


@dataclass
class _WorkerSlot:
    worker_id: int
    process: mp.process.BaseProcess
    conn: Connection
    started_at: float = field(default_factory=time.monotonic)


class WorkerSupervisor:
    """Spawns workers and replaces the ones that disconnect or die."""

    def __init__(self, settings: Settings, workers: int | None = None):
        self.settings = settings
        self.workers = workers or settings.server.workers
        self._ctx = mp.get_context("spawn")
        self._slots: dict[int, _WorkerSlot] = {}
        self._retired: list[mp.process.BaseProcess] = []
        self._sockets: list[socket.socket] = []
        self._should_exit = threading.Event()

    def run(self) -> int:
        config = uvicorn.Config(
            "geocode_tool.main:app",
            host=self.settings.server.hostname,
            port=self.settings.server.port,
        )
        self._sockets = [config.bind_socket()]
        self._install_signal_handlers()
        logger.info(
            f"Supervisor {os.getpid()} starting {self.workers} workers on "
            f"{self.settings.server.hostname}:{self.settings.server.port}",
        )
        try:
            for worker_id in range(self.workers):
                self._spawn(worker_id)
            while not self._should_exit.is_set():
                self.poll(timeout=0.5)
        finally:
            self._terminate_all()
            for sock in self._sockets:
                sock.close()
        return 0

    def stop(self) -> None:
        self._should_exit.set()

    def poll(self, timeout: float) -> None:
        """Wait for worker messages or exits and handle them."""
        owners: dict[object, _WorkerSlot] = {}
        for slot in self._slots.values():
            owners[slot.conn] = slot
            owners[slot.process.sentinel] = slot
        for ready in wait(list(owners), timeout):
            slot = owners[ready]
            if self._slots.get(slot.worker_id) is not slot:
                continue
            if ready is slot.conn:
                self._handle_message(slot)
            else:
                self._replace(
                    slot, f"exited with code {slot.process.exitcode}",
                )
        self._reap_retired()

    def _handle_message(self, slot: _WorkerSlot) -> None:
        try:
            message = slot.conn.recv()
        except (EOFError, OSError):
            message = None
        if message and message[0] == DISCONNECT:
            self._replace(slot, f"disconnected (pid {message[2]})")
        else:
            self._replace(slot, "lost its supervisor pipe")

    def _spawn(self, worker_id: int) -> None:
        parent_conn, child_conn = self._ctx.Pipe(duplex=False)
        process = self._ctx.Process(
            target=_worker_main,
            args=(self.settings, child_conn, worker_id, self._sockets),
            name=f"geocode-tool-worker-{worker_id}",
        )
        process.start()
        child_conn.close()
        self._slots[worker_id] = _WorkerSlot(worker_id, process, parent_conn)
        logger.info(
            f"Worker {worker_id} started (pid {process.pid})",
            extra={"worker_id": worker_id},
        )

    def _replace(self, slot: _WorkerSlot, reason: str) -> None:
        del self._slots[slot.worker_id]
        slot.conn.close()
        self._retired.append(slot.process)
        logger.warning(
            f"Worker {slot.worker_id} {reason}, starting replacement",
            extra={"worker_id": slot.worker_id},
        )
        if self._should_exit.is_set():
            return
        if time.monotonic() - slot.started_at < MIN_UPTIME_SECONDS:
            # died during startup
            time.sleep(MIN_UPTIME_SECONDS)
        self._spawn(slot.worker_id)

    def _reap_retired(self) -> None:
        for process in list(self._retired):
            if not process.is_alive():
                process.join()
                self._retired.remove(process)

    def _terminate_all(self) -> None:
        processes = [s.process for s in self._slots.values()] + self._retired
        for process in processes:
            if process.is_alive():
                process.terminate()
        deadline = time.monotonic() + self.settings.server.shutdown_timeout_seconds
        for process in processes:
            process.join(max(0.0, deadline - time.monotonic()))
            if process.is_alive():
                logger.error(f"Worker pid {process.pid} ignored SIGTERM, killing")
                process.kill()
                process.join()
        for slot in self._slots.values():
            slot.conn.close()
        self._slots.clear()
        self._retired.clear()

    def _install_signal_handlers(self) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda signum, frame: self.stop())
