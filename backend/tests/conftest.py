"""Root conftest — shared fakes and an app wired to them.

Invariants:
    - No test talks to a real geocoder, socket, supervisor or process exit
    - Every app gets a fresh WorkerLifecycle; its deadline timer is cancelled on teardown
    - Test-only routes live under {api_prefix}/test and exercise the pipeline

Design Decisions:
    - httpx ASGITransport instead of a live server: the pipeline is pure ASGI,
      lifespan is not needed for request handling
    - No static dir by default: a "/" mount would shadow routes added later
"""

import asyncio
import os

import httpx
import pytest
from fastapi import APIRouter, Request
from httpx import ASGITransport, AsyncClient

# Ensure tests don't accidentally use real API keys
os.environ.setdefault("GEOCODER__API_KEY", "test-fake-key")
os.environ.setdefault("LOG_FORMAT", "text")

from geocode_tool.api.middleware.fault_isolation import spawn  # noqa: E402
from geocode_tool.config import GeocoderSettings, ServerSettings, Settings  # noqa: E402
from geocode_tool.core.envelope import success  # noqa: E402
from geocode_tool.core.errors import GeocodeToolError  # noqa: E402
from geocode_tool.infrastructure.geocode_client import ResilientGeocodeClient  # noqa: E402
from geocode_tool.main import create_app  # noqa: E402
from geocode_tool.runtime.lifecycle import WorkerLifecycle  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeListener, FakeSupervisor, ForeignNotFoundError, TeapotError, yandex_payload,
)


def default_provider(request: httpx.Request) -> httpx.Response:
    query = request.url.params["geocode"]
    if query == "nowhere":
        return httpx.Response(200, json=yandex_payload())
    return httpx.Response(
        200, json=yandex_payload((f"Russia, {query}", "37.617635 55.755814")),
    )


def build_test_router() -> APIRouter:
    router = APIRouter(prefix="/test")

    @router.post("/echo")
    async def echo(request: Request):
        return success({"body": request.state.json_body})

    @router.api_route("/count", methods=["GET", "OPTIONS"])
    async def count(request: Request):
        request.app.state.hits += 1
        return success({"hits": request.app.state.hits})

    @router.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    @router.get("/not-found")
    async def not_found():
        raise GeocodeToolError("No such layer", status=404, title="Not Found")

    @router.get("/teapot")
    async def teapot():
        raise TeapotError("short and stout")

    @router.get("/foreign-not-found")
    async def foreign_not_found():
        raise ForeignNotFoundError("no tile at 12/2476/1283")

    @router.get("/slow")
    async def slow(request: Request):
        request.app.state.slow_started.set()
        await request.app.state.gate.wait()
        return success({"slow": True})

    @router.get("/background-boom")
    async def background_boom():
        async def fail_soon():
            await asyncio.sleep(0)
            raise ValueError("lost in a callback")

        spawn(fail_soon())
        await asyncio.sleep(30)
        return success({"unreachable": True})

    @router.get("/late-boom")
    async def late_boom(request: Request):
        release = request.app.state.late_release

        async def fail_later():
            await release.wait()
            raise KeyError("after the response")

        request.state.fault_scope.spawn(fail_later())
        return success({"answered": True})

    return router


@pytest.fixture
def listener():
    return FakeListener()


@pytest.fixture
def supervisor():
    return FakeSupervisor()


@pytest.fixture
def exit_codes():
    return []


@pytest.fixture
def lifecycle(listener, supervisor, exit_codes):
    lc = WorkerLifecycle(
        supervisor=supervisor,
        listener=listener,
        shutdown_timeout=30.0,
        exit_process=exit_codes.append,
    )
    yield lc
    lc.mark_terminated()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        static_dir=str(tmp_path / "no-static"),
        server=ServerSettings(body_limit_bytes=16_384),
        geocoder=GeocoderSettings(
            base_url="https://geocoder.test/1.x/",
            max_retries=2, base_delay_ms=1, max_delay_ms=2,
        ),
    )


@pytest.fixture
def provider():
    """Mutable provider handler; tests replace provider["handler"]."""
    calls = []
    state = {"handler": default_provider, "calls": calls}

    def dispatch(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return state["handler"](request)

    state["transport"] = httpx.MockTransport(dispatch)
    return state


@pytest.fixture
async def geocode_client(settings, provider):
    geocoder = settings.geocoder
    client = ResilientGeocodeClient(
        base_url=geocoder.base_url,
        api_key=geocoder.api_key,
        max_retries=geocoder.max_retries,
        base_delay_ms=geocoder.base_delay_ms,
        max_delay_ms=geocoder.max_delay_ms,
        concurrency=2,
        transport=provider["transport"],
    )
    yield client
    await client.aclose()


@pytest.fixture
def app(settings, lifecycle, geocode_client):
    application = create_app(settings, lifecycle, geocode_client)
    application.include_router(build_test_router(), prefix=settings.api_prefix)
    application.state.hits = 0
    application.state.gate = asyncio.Event()
    application.state.slow_started = asyncio.Event()
    application.state.late_release = asyncio.Event()
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c
