"""
Prometheus-compatible metrics for observability.

Tracks review activity and the health of downstream calls:
- Review mutations (by operation and target_type)
- Helpful votes
- Rating sync outcomes (synced / failed)
- Upstream service failures (by service and operation)

Usage:
    from src.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_reviews(operation="created", target_type="product")
    metrics.increment_rating_sync(status="failed")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector for the review service.

    Counters:
    - reviews_total: Review mutations (labels: operation, target_type)
    - review_helpful_votes_total: Helpful votes recorded
    - rating_sync_total: Product rating sync attempts (labels: status)
    - upstream_failures_total: Failed downstream calls (labels: service, operation)

    Thread-safe for concurrent increments.
    """

    def __init__(self):
        self._lock = Lock()

        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def _get_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    # ===== Review Metrics =====

    def increment_reviews(self, operation: str, target_type: str, amount: int = 1):
        """
        Increment review mutation counter.

        Args:
            operation: created, updated or deleted
            target_type: product or seller
            amount: Increment amount (default 1)
        """
        labels = {
            "operation": operation.lower(),
            "target_type": target_type.lower(),
        }
        self._increment("reviews_total", labels, amount)

    def increment_helpful_votes(self, amount: int = 1):
        """Increment helpful votes counter."""
        self._increment("review_helpful_votes_total", {}, amount)

    # ===== Downstream Metrics =====

    def increment_rating_sync(self, status: str, amount: int = 1):
        """Increment rating sync counter (status: synced, failed)."""
        self._increment("rating_sync_total", {"status": status.lower()}, amount)

    def increment_upstream_failures(self, service: str, operation: str, amount: int = 1):
        """
        Increment failed downstream call counter.

        Args:
            service: product, user or order
            operation: Client operation name (get_product, get_user, ...)
        """
        labels = {
            "service": service.lower(),
            "operation": operation.lower(),
        }
        self._increment("upstream_failures_total", labels, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            output_lines.append(f"# HELP {metric_name} {self._get_help_text(metric_name)}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                if labels_dict:
                    labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                    output_lines.append(f"{metric_name}{{{labels_str}}} {value}")
                else:
                    output_lines.append(f"{metric_name} {value}")

            output_lines.append("")  # Blank line between metrics

        return "\n".join(output_lines)

    def _get_help_text(self, metric_name: str) -> str:
        help_texts = {
            "reviews_total": "Total number of review mutations",
            "review_helpful_votes_total": "Total number of helpful votes recorded",
            "rating_sync_total": "Total number of product rating sync attempts",
            "upstream_failures_total": "Total number of failed downstream service calls",
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
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
