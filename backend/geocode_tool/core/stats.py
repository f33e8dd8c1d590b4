"""Geocode Statistics — per-worker counters behind the statistics panel.

Invariants:
    - queries == found + not_found + failed once every request has settled
    - Counters only grow; they reset when the worker is replaced
"""

from dataclasses import dataclass, asdict
from typing import Iterable

from geocode_tool.core.geocode_result import GeocodeResult


@dataclass
class GeocodeStats:
    requests: int = 0
    queries: int = 0
    found: int = 0
    not_found: int = 0
    failed: int = 0

    def record_request(self, query_count: int) -> None:
        self.requests += 1
        self.queries += query_count

    def record_results(self, results: Iterable[GeocodeResult]) -> None:
        for result in results:
            if result.found:
                self.found += 1
            else:
                self.not_found += 1

    def record_failure(self, query_count: int) -> None:
        self.failed += query_count

    def snapshot(self) -> dict:
        return asdict(self)
