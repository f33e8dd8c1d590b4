"""Geocode Routes — forward address batches to the provider, expose run statistics.

Invariants:
    - POST /geocode responds {"data": {"result": [...]}} in input order
    - Provider failures surface as GeocodeProviderError (502/503/504), never raw
    - Every processed query is counted exactly once in GeocodeStats
"""

import logging

from fastapi import APIRouter, Depends, Request

from geocode_tool.core.envelope import success
from geocode_tool.core.stats import GeocodeStats
from geocode_tool.infrastructure.geocode_client import ResilientGeocodeClient
from geocode_tool.schemas.geocode import GeocodeRequest

logger = logging.getLogger(__name__)
router = APIRouter(tags=["geocode"])


def get_geocode_client(request: Request) -> ResilientGeocodeClient:
    return request.app.state.geocode_client


def get_stats(request: Request) -> GeocodeStats:
    return request.app.state.stats


@router.post("/geocode")
async def geocode(
    body: GeocodeRequest,
    client: ResilientGeocodeClient = Depends(get_geocode_client),
    stats: GeocodeStats = Depends(get_stats),
):
    """Geocode a batch of queries."""
    stats.record_request(len(body.queries))
    try:
        results = await client.geocode_many(body.queries, lang=body.lang)
    except Exception:
        stats.record_failure(len(body.queries))
        raise
    stats.record_results(results)
    logger.info(
        f"Geocoded {sum(r.found for r in results)}/{len(results)} queries",
    )
    return success({"result": [r.to_dict() for r in results]})


@router.get("/stat")
async def stat(stats: GeocodeStats = Depends(get_stats)):
    """Counters for the statistics panel."""
    return success(stats.snapshot())
