"""
Unit tests for metrics collection and Prometheus export.
"""

import pytest
from mediaportal.lib.metrics import MetricsCollector, get_metrics_collector, reset_metrics


@pytest.fixture
def metrics():
    """Fresh metrics collector for each test."""
    collector = MetricsCollector()
    return collector


@pytest.mark.unit
def test_metrics_collector_initialization(metrics):
    """Test metrics collector initializes with empty counters."""
    output = metrics.export_prometheus()
    assert output == ""  # No metrics yet


@pytest.mark.unit
def test_increment_job_runs(metrics):
    """Test incrementing job run counter, status is lower-cased."""
    metrics.increment_job_runs(job="watchlist-sync", status="SUCCESS")
    metrics.increment_job_runs(job="watchlist-sync", status="success", amount=2)

    value = metrics.get_counter_value(
        "job_runs_total",
        {"job": "watchlist-sync", "status": "success"}
    )
    assert value == 3


@pytest.mark.unit
def test_increment_deliveries_different_labels(metrics):
    """Test counters are separate for different label combinations."""
    metrics.increment_deliveries(channel="Discord", status="success")
    metrics.increment_deliveries(channel="discord", status="failed")
    metrics.increment_deliveries(channel="webpush", status="gone")

    assert metrics.get_counter_value(
        "notification_deliveries_total", {"channel": "discord", "status": "success"}
    ) == 1
    assert metrics.get_counter_value(
        "notification_deliveries_total", {"channel": "discord", "status": "failed"}
    ) == 1
    assert metrics.get_counter_value(
        "notification_deliveries_total", {"channel": "webpush", "status": "gone"}
    ) == 1


@pytest.mark.unit
def test_increment_rate_limit_rejections(metrics):
    metrics.increment_rate_limit_rejections("lockout")

    assert metrics.get_counter_value("rate_limit_rejections_total", {"kind": "lockout"}) == 1
    assert metrics.get_counter_value("rate_limit_rejections_total", {"kind": "rate_limit"}) == 0


@pytest.mark.unit
def test_export_prometheus_format(metrics):
    """Test Prometheus text output has HELP, TYPE and sorted labels."""
    metrics.increment_job_runs(job="job-history-prune", status="failed")
    metrics.increment_deliveries(channel="slack", status="success")

    output = metrics.export_prometheus()

    assert "# HELP job_runs_total Total number of completed background job runs" in output
    assert "# TYPE job_runs_total counter" in output
    assert 'job_runs_total{job="job-history-prune",status="failed"} 1' in output
    assert 'notification_deliveries_total{channel="slack",status="success"} 1' in output
    # Metric families are emitted in name order
    assert output.index("job_runs_total") < output.index("notification_deliveries_total")


@pytest.mark.unit
def test_reset_all(metrics):
    """Test reset clears every counter."""
    metrics.increment_job_runs("watchlist-sync", "success")
    metrics.reset_all()

    assert metrics.export_prometheus() == ""


@pytest.mark.unit
def test_global_collector_singleton():
    """Test get_metrics_collector returns the same instance and reset_metrics clears it."""
    first = get_metrics_collector()
    second = get_metrics_collector()
    assert first is second

    first.increment_rate_limit_rejections("rate_limit")
    reset_metrics()
    assert second.get_counter_value("rate_limit_rejections_total", {"kind": "rate_limit"}) == 0
