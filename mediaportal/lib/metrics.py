"""
Prometheus-compatible metrics for observability.

Tracks the background core's outcomes:
- Job runs (by job name and status)
- Notification deliveries (by channel and status)
- Rate limit and lockout rejections

Usage:
    from mediaportal.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_job_runs(job="watchlist-sync", status="success")
    metrics.increment_deliveries(channel="discord", status="failed")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Optional, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector for the mediaportal core.

    Counters:
    - job_runs_total: Completed job executions (labels: job, status)
    - notification_deliveries_total: Adapter sends (labels: channel, status)
    - rate_limit_rejections_total: Rejected calls (labels: kind)

    Thread-safe for concurrent increments.
    """

    def __init__(self):
        self._lock = Lock()

        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        sorted_labels = tuple(sorted(labels.items()))
        return (metric_name, sorted_labels)

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def _get_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    # ===== Job Metrics =====

    def increment_job_runs(self, job: str, status: str, amount: int = 1):
        """
        Increment job runs counter.

        Args:
            job: Job name (e.g. watchlist-sync)
            status: Run outcome (success, failed)
            amount: Increment amount (default 1)
        """
        labels = {
            "job": job,
            "status": status.lower()
        }
        self._increment("job_runs_total", labels, amount)

    # ===== Notification Metrics =====

    def increment_deliveries(self, channel: str, status: str, amount: int = 1):
        """
        Increment notification deliveries counter.

        Args:
            channel: Endpoint type (discord, email, webpush, ...)
            status: Delivery outcome (success, failed, gone)
            amount: Increment amount
        """
        labels = {
            "channel": channel.lower(),
            "status": status.lower()
        }
        self._increment("notification_deliveries_total", labels, amount)

    # ===== Rate Limit Metrics =====

    def increment_rate_limit_rejections(self, kind: str, amount: int = 1):
        """Increment rejections counter (kind: rate_limit or lockout)."""
        self._increment("rate_limit_rejections_total", {"kind": kind.lower()}, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        # Group counters by metric name
        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                if metric_name not in metrics_by_name:
                    metrics_by_name[metric_name] = []
                metrics_by_name[metric_name].append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            help_text = self._get_help_text(metric_name)
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                output_lines.append(f"{metric_name}{{{labels_str}}} {value}")

            output_lines.append("")  # Blank line between metrics

        return "\n".join(output_lines)

    def _get_help_text(self, metric_name: str) -> str:
        """Get help text for metric."""
        help_texts = {
            "job_runs_total": "Total number of completed background job runs",
            "notification_deliveries_total": "Total number of notification delivery attempts",
            "rate_limit_rejections_total": "Total number of calls rejected by rate limiting or lockout",
        }
        return help_texts.get(metric_name, "Counter metric")

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """
        Get current value of a specific counter.

        Args:
            metric_name: Name of the metric
            labels: Label filters

        Returns:
            Current counter value
        """
        return self._get_value(metric_name, labels)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: Optional[MetricsCollector] = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    global _metrics_collector
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
