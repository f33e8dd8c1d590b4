"""Response Envelope — the fixed {data, error} wrapper for every JSON response.

Invariants:
    - Exactly one of "data" / "error" is non-null
"""

from typing import Any


def success(data: Any) -> dict:
    if data is None:
        raise ValueError("success envelope requires non-null data")
    return {"data": data, "error": None}


def failure(error: dict) -> dict:
    return {"data": None, "error": error}
