"""
Integration tests for /metrics endpoint and metrics collection.
"""

import pytest
from httpx import AsyncClient, ASGITransport

from mediaportal.api.app import app
from mediaportal.lib.metrics import get_metrics_collector


@pytest.mark.integration
async def test_metrics_endpoint_returns_prometheus_format():
    """Test /metrics endpoint returns Prometheus text format."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; version=0.0.4; charset=utf-8"


@pytest.mark.integration
async def test_metrics_endpoint_empty_when_no_metrics():
    """Test /metrics endpoint returns empty when no metrics recorded."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.text == ""


@pytest.mark.integration
async def test_metrics_endpoint_exports_after_activity():
    """Test /metrics endpoint exports counters after activity."""
    # Simulate some activity
    metrics = get_metrics_collector()
    metrics.increment_job_runs("watchlist-sync", "success", amount=5)
    metrics.increment_deliveries("discord", "failed", amount=3)
    metrics.increment_rate_limit_rejections("lockout")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    output = response.text

    assert 'job_runs_total{job="watchlist-sync",status="success"} 5' in output
    assert 'notification_deliveries_total{channel="discord",status="failed"} 3' in output
    assert 'rate_limit_rejections_total{kind="lockout"} 1' in output
