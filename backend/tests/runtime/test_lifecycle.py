"""Tests for WorkerLifecycle — drain ordering, idempotency, forced-exit deadline."""

import logging
import threading

import pytest

from geocode_tool.infrastructure.observability import EMERGENCY
from geocode_tool.runtime.lifecycle import (
    FAULT_EXIT_CODE, FaultRecord, WorkerLifecycle, WorkerState,
)
from tests.fakes import FakeListener, FakeSupervisor, TeapotError


class ExplodingListener:
    def close(self):
        raise OSError("socket already gone")


@pytest.fixture
def fault():
    try:
        raise RuntimeError("kaboom")
    except RuntimeError as e:
        return FaultRecord.from_exception(e)


def make_lifecycle(**kwargs):
    kwargs.setdefault("shutdown_timeout", 30.0)
    kwargs.setdefault("exit_process", lambda code: None)
    return WorkerLifecycle(**kwargs)


def test_fault_record_from_exception(fault):
    assert fault.fatal is True
    assert fault.message == "kaboom"
    assert "RuntimeError: kaboom" in fault.trace
    assert FaultRecord.from_exception(KeyError()).message == "KeyError"
    assert FaultRecord.from_exception(TeapotError()).fatal is False


def test_drain_closes_listener_before_notifying_supervisor(fault):
    log = []
    lifecycle = make_lifecycle(
        listener=FakeListener(log), supervisor=FakeSupervisor(log),
    )
    try:
        assert lifecycle.begin_drain(fault) is True
        assert lifecycle.state is WorkerState.DRAINING
        assert lifecycle.fault is fault
        assert log == ["listener.close", "supervisor.disconnect"]
    finally:
        lifecycle.mark_terminated()


def test_drain_runs_once(fault, listener, supervisor):
    lifecycle = make_lifecycle(listener=listener, supervisor=supervisor)
    try:
        assert lifecycle.begin_drain(fault) is True
        assert lifecycle.begin_drain(FaultRecord.from_exception(ValueError("again"))) is False
        assert listener.closed == 1
        assert supervisor.disconnects == 1
        assert lifecycle.fault is fault
    finally:
        lifecycle.mark_terminated()


def test_failing_listener_still_notifies_supervisor(fault, supervisor, caplog):
    lifecycle = make_lifecycle(listener=ExplodingListener(), supervisor=supervisor)
    try:
        with caplog.at_level(logging.WARNING):
            lifecycle.begin_drain(fault)
        assert supervisor.disconnects == 1
        assert any(
            r.levelno == EMERGENCY and "listener" in r.getMessage()
            for r in caplog.records
        )
    finally:
        lifecycle.mark_terminated()


def test_missing_handles_are_tolerated(fault, caplog):
    lifecycle = make_lifecycle()
    try:
        with caplog.at_level(logging.WARNING):
            assert lifecycle.begin_drain(fault) is True
        assert "No listener attached" in caplog.text
        assert "No supervisor attached" in caplog.text
    finally:
        lifecycle.mark_terminated()


def test_deadline_forces_exit(fault, listener, supervisor):
    fired = threading.Event()
    codes = []

    def exit_process(code):
        codes.append(code)
        fired.set()

    lifecycle = WorkerLifecycle(
        supervisor=supervisor, listener=listener,
        shutdown_timeout=0.01, exit_process=exit_process,
    )
    lifecycle.begin_drain(fault)
    assert fired.wait(timeout=5)
    assert codes == [FAULT_EXIT_CODE]


def test_terminated_worker_cancels_deadline(fault, listener, supervisor):
    codes = []
    lifecycle = WorkerLifecycle(
        supervisor=supervisor, listener=listener,
        shutdown_timeout=0.2, exit_process=codes.append,
    )
    lifecycle.begin_drain(fault)
    deadline = lifecycle._deadline
    lifecycle.mark_terminated()
    deadline.join(timeout=5)
    assert codes == []
    assert lifecycle.state is WorkerState.TERMINATED


def test_attach_handles_after_construction(fault, listener, supervisor):
    lifecycle = make_lifecycle()
    lifecycle.attach_listener(listener)
    lifecycle.attach_supervisor(supervisor)
    try:
        lifecycle.begin_drain(fault)
        assert (listener.closed, supervisor.disconnects) == (1, 1)
    finally:
        lifecycle.mark_terminated()
