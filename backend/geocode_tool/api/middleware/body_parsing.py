"""Body Parsing — decode JSON request bodies once, up to a byte ceiling.

Invariants:
    - scope["state"]["json_body"] is the decoded body, or None when absent/non-JSON
    - A malformed or oversized body is recorded as scope["state"]["body_fault"];
      it is raised later, inside the fault-isolation stage, so CORS and
      logging still see the request
    - Downstream stages receive the exact bytes that were read
"""

import json

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from geocode_tool.core.errors import MalformedBodyError, PayloadTooLargeError


def is_json_content_type(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class JSONBodyMiddleware:
    def __init__(self, app: ASGIApp, *, limit_bytes: int) -> None:
        self.app = app
        self.limit_bytes = limit_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        state["json_body"] = None
        headers = Headers(scope=scope)
        if not is_json_content_type(headers.get("content-type", "")):
            await self.app(scope, receive, send)
            return

        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.limit_bytes:
            state["body_fault"] = PayloadTooLargeError(self.limit_bytes)
            await self.app(scope, receive, send)
            return

        raw, disconnected = await self._read_body(receive)
        if disconnected:
            return
        if raw is None:
            state["body_fault"] = PayloadTooLargeError(self.limit_bytes)
            await self.app(scope, receive, send)
            return

        if raw.strip():
            try:
                state["json_body"] = json.loads(raw)
            except ValueError as e:
                state["body_fault"] = MalformedBodyError(str(e))

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": raw, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    async def _read_body(self, receive: Receive) -> tuple[bytes | None, bool]:
        """Returns (body, disconnected); body is None past the ceiling."""
        chunks: list[bytes] = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return None, True
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.limit_bytes:
                return None, False
            chunks.append(chunk)
            if not message.get("more_body", False):
                return b"".join(chunks), False
