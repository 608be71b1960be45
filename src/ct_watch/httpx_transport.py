"""Shared httpx transport with per-host request accounting."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from .config import DEFAULT_MAX_CONNECTIONS, DEFAULT_MAX_KEEPALIVE_CONNECTIONS

logger = logging.getLogger(__name__)

# Request rate is logged every N requests per host
RATE_LOG_EVERY = 1_000


@dataclass
class HostData:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    first_request_time: Optional[float] = None
    request_count: int = 0
    total_requests: int = 0
    rate_limited: int = 0


class StatsTransport(httpx.AsyncHTTPTransport):
    """
    httpx transport shared by every log client.

    Caps the connection pool and keeps per-host request counters. HTTP 429
    answers are counted and logged but handed back unchanged: the caller
    fails that poll and tries again on its next tick.
    """

    def __init__(
        self,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections: int = DEFAULT_MAX_KEEPALIVE_CONNECTIONS,
        **kwargs
    ):
        super().__init__(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            **kwargs
        )
        self._host_data: Dict[str, HostData] = {}

    def _get_host_data(self, host: str) -> HostData:
        """Get or create host tracking data."""
        if host not in self._host_data:
            self._host_data[host] = HostData()
        return self._host_data[host]

    def request_counts(self) -> Dict[str, int]:
        return {host: data.total_requests for host, data in self._host_data.items()}

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        host_data = self._get_host_data(host)

        async with host_data.lock:
            if host_data.first_request_time is None:
                host_data.first_request_time = time.monotonic()
            host_data.request_count += 1
            host_data.total_requests += 1

            if host_data.request_count % RATE_LOG_EVERY == 0:
                elapsed = time.monotonic() - host_data.first_request_time
                if elapsed > 0:
                    actual_rate = host_data.request_count / elapsed
                    logger.info(
                        f"[{host}] Rate stats: {host_data.request_count} reqs "
                        f"in {elapsed:.2f}s ({actual_rate:.2f} req/s)"
                    )
                host_data.first_request_time = None
                host_data.request_count = 0

        response = await super().handle_async_request(request)

        if response.status_code == 429:
            async with host_data.lock:
                host_data.rate_limited += 1
                count = host_data.rate_limited
            retry_after = response.headers.get("Retry-After", "unset")
            logger.warning(
                f"[{host}] Rate limited (429), {count} so far, Retry-After={retry_after}"
            )

        return response


class SharedTransportView(httpx.AsyncBaseTransport):
    """
    Per-client handle on a transport owned by someone else.

    Closing an httpx client closes its transport; this view makes that a
    no-op so one failing log cannot tear down the pool shared by the rest.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport):
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        pass
