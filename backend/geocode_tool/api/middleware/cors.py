"""CORS — permissive headers for any request with an Origin, preflight short-circuit.

Invariants:
    - Origin present → CORS headers on every response (success, error, fatal)
    - OPTIONS → 200 with empty body, downstream stages never run
"""

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, PUT, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept, X-Requested-With",
}


class PermissiveCORSMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        has_origin = "origin" in Headers(scope=scope)
        if scope["method"] == "OPTIONS":
            response = Response(
                status_code=200, headers=CORS_HEADERS if has_origin else None,
            )
            await response(scope, receive, send)
            return
        if not has_origin:
            await self.app(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.update(CORS_HEADERS)
            await send(message)

        await self.app(scope, receive, send_with_cors)
