"""Pipeline Stage Tests — body parsing, access log, CORS, envelope shape.

Invariants:
    - Well-formed JSON under the ceiling reaches routes unchanged
    - Malformed/oversized bodies become 400/413 envelopes, worker keeps accepting
    - Origin → CORS headers on success and error paths
    - OPTIONS short-circuits before any route runs
"""

import json
import logging

import pytest

from geocode_tool.runtime.lifecycle import WorkerState
from tests.fakes import PREFIX

ORIGIN = {"Origin": "http://map.example"}


# -- body parsing ----------------------------------------------------------------


@pytest.mark.parametrize("payload", [
    {"queries": ["Москва, Тверская 7"], "nested": {"a": [1, 2.5, None, True]}},
    [1, "two", {"three": 3}],
    "just a string",
    0,
])
async def test_json_body_round_trips(client, payload):
    resp = await client.post(f"{PREFIX}/test/echo", json=payload)
    assert resp.status_code == 200
    assert resp.json() == {"data": {"body": payload}, "error": None}


async def test_non_json_body_is_not_parsed(client):
    resp = await client.post(
        f"{PREFIX}/test/echo", content=b"a=1",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert resp.json()["data"] == {"body": None}


async def test_vendor_json_content_type_is_parsed(client):
    resp = await client.post(
        f"{PREFIX}/test/echo", content=b'{"type": "FeatureCollection"}',
        headers={"Content-Type": "application/geo+json"},
    )
    assert resp.json()["data"] == {"body": {"type": "FeatureCollection"}}


async def test_malformed_json_is_a_recoverable_400(client, lifecycle, supervisor):
    resp = await client.post(
        f"{PREFIX}/test/echo", content=b'{"queries": [',
        headers={"Content-Type": "application/json", **ORIGIN},
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["data"] is None
    assert body["error"]["status"] == 400
    assert body["error"]["code"] == "MALFORMED_BODY"
    assert resp.headers["access-control-allow-origin"] == "*"
    assert lifecycle.state is WorkerState.ACCEPTING
    assert supervisor.disconnects == 0


async def test_body_over_ceiling_is_413(client, lifecycle):
    resp = await client.post(
        f"{PREFIX}/test/echo", json={"blob": "x" * 20_000},
    )
    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"
    assert lifecycle.state is WorkerState.ACCEPTING


async def test_streamed_body_over_ceiling_is_413(client):
    async def chunks():
        for _ in range(20):
            yield b" " * 1000
        yield b"{}"

    resp = await client.post(
        f"{PREFIX}/test/echo", content=chunks(),
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 413


async def test_body_fault_skips_routes(client, app):
    await client.post(
        f"{PREFIX}/test/count", content=b"{",
        headers={"Content-Type": "application/json"},
    )
    assert app.state.hits == 0


# -- access log ------------------------------------------------------------------


async def test_access_log_records_method_url_and_body(client, caplog):
    caplog.set_level(logging.INFO, logger="geocode_tool.access")
    await client.post(f"{PREFIX}/test/echo?trace=1", json={"q": "Kazan"})
    records = [r for r in caplog.records if r.name == "geocode_tool.access"]
    assert len(records) == 1
    assert records[0].method == "POST"
    assert records[0].url == f"{PREFIX}/test/echo?trace=1"
    assert records[0].body == {"q": "Kazan"}


async def test_access_log_runs_for_preflight(client, caplog):
    caplog.set_level(logging.INFO, logger="geocode_tool.access")
    await client.options(f"{PREFIX}/test/count", headers=ORIGIN)
    assert any(r.method == "OPTIONS" for r in caplog.records if r.name == "geocode_tool.access")


# -- CORS ------------------------------------------------------------------------


async def test_cors_headers_on_success(client):
    resp = await client.get(f"{PREFIX}/test/count", headers=ORIGIN)
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"
    assert resp.headers["access-control-allow-methods"] == "GET, PUT, POST, DELETE, OPTIONS"
    assert resp.headers["access-control-allow-headers"] == "Content-Type, Accept, X-Requested-With"


async def test_cors_headers_on_typed_error(client):
    resp = await client.get(f"{PREFIX}/test/not-found", headers=ORIGIN)
    assert resp.status_code == 404
    assert resp.headers["access-control-allow-origin"] == "*"


async def test_no_cors_headers_without_origin(client):
    resp = await client.get(f"{PREFIX}/test/count")
    assert "access-control-allow-origin" not in resp.headers


async def test_preflight_short_circuits(client, app):
    resp = await client.options(f"{PREFIX}/test/count", headers=ORIGIN)
    assert resp.status_code == 200
    assert resp.content == b""
    assert resp.headers["access-control-allow-origin"] == "*"
    assert app.state.hits == 0


async def test_options_without_origin_still_ends_immediately(client, app):
    resp = await client.options(f"{PREFIX}/test/count")
    assert resp.status_code == 200
    assert resp.content == b""
    assert "access-control-allow-origin" not in resp.headers
    assert app.state.hits == 0


# -- envelope --------------------------------------------------------------------


async def test_exactly_one_of_data_error_is_set(client):
    responses = [
        await client.get(f"{PREFIX}/test/count"),
        await client.get(f"{PREFIX}/test/not-found"),
        await client.get(f"{PREFIX}/nope"),
        await client.post(f"{PREFIX}/test/echo", json={"k": "v"}),
        await client.post(
            f"{PREFIX}/test/echo", content=b"]",
            headers={"Content-Type": "application/json"},
        ),
    ]
    for resp in responses:
        body = resp.json()
        assert set(body) == {"data", "error"}
        assert (body["data"] is None) != (body["error"] is None)


async def test_json_is_indented(client):
    resp = await client.get(f"{PREFIX}/test/count")
    assert resp.text == json.dumps(
        {"data": {"hits": 1}, "error": None}, indent=2,
    )
