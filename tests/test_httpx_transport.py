"""Tests for the shared transport helpers."""

import httpx
import pytest

from ct_watch.httpx_transport import SharedTransportView, StatsTransport


@pytest.mark.asyncio
async def test_stats_transport_counts_requests_and_returns_429(monkeypatch):
    async def fake_request(self, request):
        return httpx.Response(429, headers={"Retry-After": "3"})

    monkeypatch.setattr(httpx.AsyncHTTPTransport, "handle_async_request", fake_request)
    transport = StatsTransport(max_connections=4, max_keepalive_connections=2)

    async with httpx.AsyncClient(transport=transport) as client:
        first = await client.get("https://ct.example/ct/v1/get-sth")
        await client.get("https://ct.example/ct/v1/get-sth")

    assert first.status_code == 429
    assert transport.request_counts() == {"ct.example": 2}


@pytest.mark.asyncio
async def test_shared_view_leaves_owner_transport_open():
    class TrackingTransport(httpx.MockTransport):
        closed = False

        async def aclose(self):
            self.closed = True

    inner = TrackingTransport(lambda request: httpx.Response(200, text="ok"))
    async with httpx.AsyncClient(transport=SharedTransportView(inner)) as client:
        response = await client.get("https://ct.example/")
    assert response.text == "ok"
    assert not inner.closed
