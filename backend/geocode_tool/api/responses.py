"""Envelope responses — indented JSON, shared by routes and error handlers."""

import json
from typing import Any

from starlette.responses import JSONResponse


class EnvelopeJSONResponse(JSONResponse):
    """JSONResponse with 2-space indented output."""

    def render(self, content: Any) -> bytes:
        return json.dumps(
            content, ensure_ascii=False, allow_nan=False, indent=2,
        ).encode("utf-8")
