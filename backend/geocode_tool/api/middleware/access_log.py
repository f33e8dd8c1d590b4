"""Access Log — one INFO line per request with method, URL and parsed body."""

import logging

from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("geocode_tool.access")


def request_url(scope: Scope) -> str:
    query = scope.get("query_string", b"").decode("latin-1")
    path = scope.get("root_path", "") + scope["path"]
    return f"{path}?{query}" if query else path


class AccessLogMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            method, url = scope["method"], request_url(scope)
            logger.info(
                f"{method} {url}",
                extra={
                    "method": method,
                    "url": url,
                    "body": scope.get("state", {}).get("json_body"),
                },
            )
        await self.app(scope, receive, send)
