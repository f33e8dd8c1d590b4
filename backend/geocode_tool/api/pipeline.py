"""Request Pipeline — fixed middleware order around the route table.

Invariants:
    - Order: body parsing → access log → CORS → fault isolation →
      routes/static → error handlers
    - Stages never reorder or skip one another at runtime
"""

from starlette.middleware import Middleware

from geocode_tool.api.middleware.access_log import AccessLogMiddleware
from geocode_tool.api.middleware.body_parsing import JSONBodyMiddleware
from geocode_tool.api.middleware.cors import PermissiveCORSMiddleware
from geocode_tool.api.middleware.fault_isolation import FaultIsolationMiddleware
from geocode_tool.runtime.lifecycle import WorkerLifecycle


def build_pipeline(
    lifecycle: WorkerLifecycle, body_limit_bytes: int,
) -> list[Middleware]:
    """Middleware stack, outermost first."""
    return [
        Middleware(JSONBodyMiddleware, limit_bytes=body_limit_bytes),
        Middleware(AccessLogMiddleware),
        Middleware(PermissiveCORSMiddleware),
        Middleware(FaultIsolationMiddleware, lifecycle=lifecycle),
    ]
