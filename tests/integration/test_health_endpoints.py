"""Integration tests for the health and metrics HTTP endpoints."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from tests.helpers.fakes import FakeConnection, RecordingNotifier
from voicerelay.health import BANNER, setup_health_routes
from voicerelay.hub import ConnectionHub
from voicerelay.metrics import MetricsCollector
from voicerelay.registry import SessionRegistry


@pytest.fixture
def hub(metrics: MetricsCollector) -> ConnectionHub:
    return ConnectionHub(metrics=metrics)


@pytest_asyncio.fixture
async def client(
    registry: SessionRegistry, hub: ConnectionHub, metrics: MetricsCollector
) -> AsyncGenerator[TestClient, None]:
    app = web.Application()
    setup_health_routes(app, registry, hub, metrics)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


@pytest.mark.integration
@pytest.mark.asyncio
async def test_index_banner(client: TestClient) -> None:
    resp = await client.get("/")
    assert resp.status == 200
    assert await resp.text() == BANNER


@pytest.mark.integration
@pytest.mark.asyncio
async def test_health_reports_sessions_and_connections(
    client: TestClient, registry: SessionRegistry, hub: ConnectionHub
) -> None:
    hub.register(FakeConnection("c1"))
    await registry.join("abc", "c1", "en-US")

    resp = await client.get("/health")

    assert resp.status == 200
    data = await resp.json()
    assert data["status"] == "healthy"
    assert data["sessions"] == 1
    assert data["connections"] == 1
    assert data["uptime_seconds"] >= 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_liveness(client: TestClient) -> None:
    resp = await client.get("/liveness")
    assert resp.status == 200
    assert (await resp.json())["status"] == "alive"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_metrics_prometheus_format(
    client: TestClient, registry: SessionRegistry, notifier: RecordingNotifier
) -> None:
    await registry.join("abc", "c1", "en-US")

    resp = await client.get("/metrics")

    assert resp.status == 200
    assert resp.content_type.startswith("text/plain")
    text = await resp.text()
    assert "# TYPE sessions_active gauge" in text
    assert "sessions_active 1.0" in text
    assert "relay_latency_seconds_count 0" in text


@pytest.mark.integration
@pytest.mark.asyncio
async def test_metrics_summary(client: TestClient, metrics: MetricsCollector) -> None:
    metrics.record_relay_delivered(0.2, synthesized=True)

    resp = await client.get("/metrics/summary")

    assert resp.status == 200
    data = await resp.json()
    assert data["status"] == "ok"
    assert data["metrics"]["relays_total"] == 1
    assert data["metrics"]["relays_synthesized"] == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_health_without_registry_or_hub(metrics: MetricsCollector) -> None:
    app = web.Application()
    setup_health_routes(app, metrics=metrics)

    async with TestClient(TestServer(app)) as test_client:
        resp = await test_client.get("/health")
        data = await resp.json()

    assert resp.status == 200
    assert data["sessions"] == 0
    assert data["connections"] == 0
