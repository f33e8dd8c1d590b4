"""Health Probe — liveness endpoint reporting the worker's lifecycle state.

Invariants:
    - GET /health always answers 200 while the process serves requests;
      "state" says whether this worker is still accepting or already draining
"""

import os

from fastapi import APIRouter, Request

from geocode_tool.core.envelope import success

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe with worker state."""
    lifecycle = request.app.state.lifecycle
    return success({
        "status": "healthy",
        "service": "geocode-tool",
        "version": request.app.version,
        "pid": os.getpid(),
        "state": lifecycle.state.value,
    })
