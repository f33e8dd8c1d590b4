"""Error Hierarchy — typed exceptions carrying the envelope's error object.

Invariants:
    - Every GeocodeToolError has status (int), title (str), detail (str), code (str)
    - to_error() is the exact object placed under "error" in the envelope
    - An exception is recoverable iff status_of() finds a 4xx/5xx status on it
    - Unexpected errors render as {"status", "title": "Internal Error", "detail": traceback}

Design Decisions:
    - Single hierarchy with GeocodeToolError base: one handler renders them all
    - status_of() duck-types .status / .status_code so third-party errors that
      already know their HTTP status stay recoverable
"""

import traceback
from http import HTTPStatus
from typing import Any

INTERNAL_ERROR_TITLE = "Internal Error"


class GeocodeToolError(Exception):
    """Base exception for all expected, request-scoped failures."""

    def __init__(
        self,
        detail: str,
        status: int = 500,
        title: str | None = None,
        code: str = "APPLICATION_ERROR",
        extra: dict[str, Any] | None = None,
    ):
        super().__init__(detail)
        self.detail = detail
        self.status = status
        self.title = title or _reason_phrase(status)
        self.code = code
        self.extra = extra or {}

    def to_error(self) -> dict:
        """Convert to the envelope's error object."""
        return {
            "status": self.status,
            "title": self.title,
            "detail": self.detail,
            "code": self.code,
            **self.extra,
        }


# ─── Client Errors (400-level) ──────────────────────────────────

class MalformedBodyError(GeocodeToolError):
    """Request body is not valid JSON."""
    def __init__(self, reason: str):
        super().__init__(
            f"Malformed JSON body: {reason}", 400, "Bad Request",
            "MALFORMED_BODY",
        )


class PayloadTooLargeError(GeocodeToolError):
    """Request body exceeds the configured ceiling."""
    def __init__(self, limit_bytes: int):
        super().__init__(
            f"Request body exceeds {limit_bytes} bytes", 413,
            "Payload Too Large", "PAYLOAD_TOO_LARGE",
        )
        self.limit_bytes = limit_bytes


class RequestValidationFailed(GeocodeToolError):
    """Parsed body failed schema validation."""
    def __init__(self, fields: list[dict]):
        super().__init__(
            "Invalid request data", 400, "Bad Request", "VALIDATION_ERROR",
            extra={"fields": fields},
        )
        self.fields = fields


# ─── Upstream Errors (500-level) ────────────────────────────────

class GeocodeProviderError(GeocodeToolError):
    """Upstream geocoding provider failed or returned garbage."""
    def __init__(self, detail: str, provider_error_type: str, status: int = 502):
        super().__init__(
            f"Geocoder error ({provider_error_type}): {detail}", status,
            code="GEOCODER_ERROR",
        )
        self.provider_error_type = provider_error_type


# ─── Rendering ──────────────────────────────────────────────────

def status_of(exc: BaseException) -> int | None:
    """Return the HTTP error status an exception carries, if any."""
    for attr in ("status", "status_code"):
        raw = getattr(exc, attr, None)
        if raw is None or isinstance(raw, bool):
            continue
        try:
            status = int(raw)
        except (TypeError, ValueError):
            continue
        if 400 <= status <= 599:
            return status
    return None


def internal_error(exc: BaseException, status: int = 500) -> dict:
    """Error object for an exception that has no envelope of its own."""
    detail = "".join(
        traceback.format_exception(type(exc), exc, exc.__traceback__),
    ).strip() or repr(exc)
    return {"status": status, "title": INTERNAL_ERROR_TITLE, "detail": detail}


def build_error_body(exc: BaseException) -> tuple[int, dict]:
    """Compute (http_status, error_object) for any exception."""
    if isinstance(exc, GeocodeToolError):
        return exc.status, exc.to_error()
    status = status_of(exc)
    if status is None:
        return 500, internal_error(exc)
    title = getattr(exc, "title", None)
    detail = getattr(exc, "detail", None)
    if not isinstance(title, str) and detail is None:
        # only a status: the rest is unknown, render like an unexpected error
        return status, internal_error(exc, status)
    if not isinstance(title, str):
        title = _reason_phrase(status)
    if detail is None:
        detail = str(exc) or title
    return status, {"status": status, "title": title, "detail": str(detail)}


def _reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Error"
