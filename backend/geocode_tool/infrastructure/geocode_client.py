"""Resilient Geocode Client — wraps httpx.AsyncClient with retry, backoff, and error mapping.

Invariants:
    - Rate limits (429): exponential backoff with jitter, respects Retry-After header
    - Transient errors (5xx, connection): max_retries retries with exponential backoff
    - Client errors (4xx except 429) and timeouts: immediate failure, no retry
    - All failures mapped to GeocodeProviderError (core/errors.py)
    - geocode_many() preserves input order and never runs more than
      `concurrency` provider calls at once

Design Decisions:
    - Wrapper over raw client: isolates retry logic from route handlers
    - ±25% jitter on backoff: prevents thundering herd on shared rate limits
    - transport injectable: tests use httpx.MockTransport, no network
"""

import asyncio
import random
import logging

import httpx

from geocode_tool.core.errors import GeocodeProviderError
from geocode_tool.core.geocode_result import (
    GeocodeResult, MalformedProviderPayload, parse_provider_response,
)

logger = logging.getLogger(__name__)


class ResilientGeocodeClient:
    """Wraps the provider HTTP API with retry logic, timeouts, and error mapping."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        lang: str = "ru_RU",
        max_retries: int = 3,
        base_delay_ms: int = 200,
        max_delay_ms: int = 5_000,
        timeout_seconds: float = 10.0,
        concurrency: int = 8,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(
            timeout=timeout_seconds, transport=transport,
        )
        self.base_url = base_url
        self.api_key = api_key
        self.lang = lang
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.concurrency = concurrency

    async def geocode(self, query: str, lang: str | None = None) -> GeocodeResult:
        """Geocode one query with automatic retry on transient failures."""
        params = {
            "geocode": query,
            "format": "json",
            "results": 1,
            "lang": lang or self.lang,
        }
        if self.api_key:
            params["apikey"] = self.api_key

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.get(self.base_url, params=params)
            except httpx.TimeoutException:
                raise GeocodeProviderError(
                    "provider did not answer in time", "timeout", status=504,
                )
            except httpx.TransportError as e:
                await self._handle_transient_error(e, attempt)
                continue

            if response.status_code == 429:
                await self._handle_rate_limit(response, attempt)
                continue
            if response.status_code >= 500:
                await self._handle_transient_error(
                    f"HTTP {response.status_code}", attempt,
                )
                continue
            if response.is_error:
                raise GeocodeProviderError(
                    f"provider rejected request with HTTP {response.status_code}",
                    "client_error",
                )
            return self._parse(query, response, attempt)

    async def geocode_many(
        self, queries: list[str], lang: str | None = None,
    ) -> list[GeocodeResult]:
        """Geocode queries concurrently; the first failure fails the batch."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(query: str) -> GeocodeResult:
            async with semaphore:
                return await self.geocode(query, lang=lang)

        outcomes = await asyncio.gather(
            *(bounded(q) for q in queries), return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)

    async def aclose(self) -> None:
        await self.client.aclose()

    def _parse(
        self, query: str, response: httpx.Response, attempt: int,
    ) -> GeocodeResult:
        try:
            result = parse_provider_response(query, response.json())
        except (ValueError, MalformedProviderPayload) as e:
            raise GeocodeProviderError(str(e), "malformed_response")
        logger.debug(
            "Geocoder success",
            extra={"attempt": attempt + 1, "query": query},
        )
        return result

    async def _handle_rate_limit(
        self, response: httpx.Response, attempt: int,
    ) -> None:
        """Handle rate limit response with retry or raise."""
        if attempt >= self.max_retries:
            raise GeocodeProviderError(
                "rate limit exceeded after retries", "rate_limit", status=503,
            )
        delay = self._extract_retry_after(response) or self._backoff(attempt)
        logger.warning(
            f"Rate limit hit, retry after {delay}ms (attempt {attempt + 1})",
        )
        await asyncio.sleep(delay / 1000)

    async def _handle_transient_error(self, e: object, attempt: int) -> None:
        """Handle transient errors with retry or raise."""
        if attempt >= self.max_retries:
            raise GeocodeProviderError(
                f"transient failure after {self.max_retries} retries: {e}",
                "connection_error",
            )
        delay = self._backoff(attempt)
        logger.warning(f"Transient error, retry after {delay}ms: {e}")
        await asyncio.sleep(delay / 1000)

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    def _extract_retry_after(self, response: httpx.Response) -> int | None:
        """Extract Retry-After header (returns milliseconds)."""
        val = response.headers.get("retry-after", "")
        if val.isdigit():
            return int(val) * 1000
        return None
