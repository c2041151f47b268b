"""
Async HTTP client wrapper for upstream source requests.
Includes retry logic, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import ParseMismatch, SourceTimeout, UpstreamRateLimited, UpstreamUnavailable
from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_REQUESTS

logger = get_logger(__name__)


class SourceHTTPClient:
    """
    Async HTTP client tailored for fixture and broadcast upstreams.

    Maps transport failures onto the aggregator error taxonomy:
    429 -> UpstreamRateLimited (never retried), timeouts -> SourceTimeout,
    other transport errors and non-2xx -> UpstreamUnavailable,
    undecodable JSON -> ParseMismatch.
    """

    def __init__(
        self,
        source_name: str,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int = 2,
        retry_base_delay_s: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._source = source_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.source_timeout_s
        self._connect_timeout = settings.http_connect_timeout_s
        self._max_retries = max(1, max_retries)
        self._retry_base_delay_s = retry_base_delay_s
        self._default_headers = {"User-Agent": settings.user_agent, **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def source(self) -> str:
        return self._source

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SourceHTTPClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def get_text(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        resp = await self.request("GET", path, params=params, headers=headers)
        return resp.text

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        resp = await self.request("GET", path, params=params, headers=headers)
        return _decode_json(resp, self._source)

    async def post_json(
        self,
        path: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> Any:
        resp = await self.request("POST", path, json=payload, headers=headers)
        return _decode_json(resp, self._source)

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform a request with retry, metrics, and structured logging.

        Raises:
            UpstreamRateLimited: On HTTP 429.
            SourceTimeout: If every attempt timed out.
            UpstreamUnavailable: On other transport errors or non-2xx answers.
        """
        if not self._client:
            await self.start()
        assert self._client is not None

        last_exc: Optional[Exception] = None

        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "unknown"
            try:
                resp = await self._client.request(
                    method, path, params=params, json=json, headers=headers
                )
                status = str(resp.status_code)

                if resp.status_code == 429:
                    logger.warning(
                        "source_rate_limited",
                        source=self._source,
                        path=path,
                        attempt=attempt,
                    )
                    raise UpstreamRateLimited(f"{self._source}: HTTP 429 for {path}")

                if resp.status_code >= 500:
                    last_exc = UpstreamUnavailable(
                        f"{self._source}: HTTP {resp.status_code} for {path}",
                        status_code=resp.status_code,
                    )
                    logger.warning(
                        "source_server_error",
                        source=self._source,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(self._retry_base_delay_s * attempt)
                        continue
                    raise last_exc

                if resp.status_code >= 400:
                    # Client errors are not retried
                    raise UpstreamUnavailable(
                        f"{self._source}: HTTP {resp.status_code} for {path}",
                        status_code=resp.status_code,
                    )

                logger.debug(
                    "source_request_success",
                    source=self._source,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = SourceTimeout(f"{self._source}: timed out on {path}")
                logger.warning("source_timeout", source=self._source, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_base_delay_s * attempt)
                    continue
                raise last_exc from exc

            except httpx.HTTPError as exc:
                status = "error"
                last_exc = UpstreamUnavailable(f"{self._source}: {exc}")
                logger.warning(
                    "source_request_error",
                    source=self._source,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_base_delay_s * attempt)
                    continue
                raise last_exc from exc

            finally:
                SOURCE_REQUESTS.labels(source=self._source, status=status).inc()

        # All retries exhausted
        if last_exc:
            raise last_exc
        raise UpstreamUnavailable(f"{self._source}: request failed after {self._max_retries} attempts")


def _decode_json(resp: httpx.Response, source: str) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise ParseMismatch(f"{source}: response was not valid JSON") from exc
