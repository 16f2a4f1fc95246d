"""
Converge Core - Metrics collection.

In-memory metrics for monitoring engine operations.
No external backends; callers export `get_registry().get_all()` if needed.

Metrics:
- converge_provider_calls_total: Provider calls by kind/operation/status
- converge_provider_call_duration_seconds: Provider call duration
- converge_retry_attempts_total: Retries of transient provider failures
- converge_plan_items_total: Plan items by action
- converge_apply_runs_total: Apply runs by status
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from loguru import logger


@dataclass
class Counter:
    """Simple counter metric."""

    name: str
    value: int = 0
    labels: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def inc(self, amount: int = 1, **labels: str) -> None:
        """
        Increment counter.

        Args:
            amount: Amount to increment (default: 1)
            **labels: Optional labels (e.g., kind="network", status="success")
        """
        with self._lock:
            if labels:
                label_key = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
                self.labels[label_key] = self.labels.get(label_key, 0) + amount
            else:
                self.value += amount

    def get(self, **labels: str) -> int:
        """Get counter value, optionally for one label set."""
        with self._lock:
            if labels:
                label_key = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
                return self.labels.get(label_key, 0)
            return self.value

    def total(self) -> int:
        """Unlabelled value plus every labelled value."""
        with self._lock:
            return self.value + sum(self.labels.values())

    def reset(self) -> None:
        """Reset counter to zero."""
        with self._lock:
            self.value = 0
            self.labels.clear()


@dataclass
class Histogram:
    """Simple histogram metric for duration tracking with sliding window."""

    name: str
    buckets: list[float] = field(
        default_factory=lambda: [0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0]
    )
    observations: list[float] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)
    max_observations: int = 10000

    def observe(self, value: float) -> None:
        """Record an observation, keeping only the last max_observations."""
        with self._lock:
            self.observations.append(value)
            if len(self.observations) > self.max_observations:
                self.observations = self.observations[-self.max_observations :]

    def get_stats(self) -> dict[str, Any]:
        """
        Get histogram statistics.

        Returns:
            Dict with count, sum, min, max, avg, and bucket counts
        """
        with self._lock:
            if not self.observations:
                return {
                    "count": 0,
                    "sum": 0.0,
                    "min": 0.0,
                    "max": 0.0,
                    "avg": 0.0,
                    "buckets": {str(b): 0 for b in self.buckets},
                }

            count = len(self.observations)
            total = sum(self.observations)
            bucket_counts = {
                str(bucket): sum(1 for v in self.observations if v <= bucket)
                for bucket in self.buckets
            }
            return {
                "count": count,
                "sum": total,
                "min": min(self.observations),
                "max": max(self.observations),
                "avg": total / count,
                "buckets": bucket_counts,
            }

    def reset(self) -> None:
        """Reset histogram observations."""
        with self._lock:
            self.observations.clear()


@dataclass
class Gauge:
    """Simple gauge metric for current values."""

    name: str
    value: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def set(self, value: float) -> None:
        with self._lock:
            self.value = value

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        with self._lock:
            self.value -= amount

    def get(self) -> float:
        with self._lock:
            return self.value

    def reset(self) -> None:
        with self._lock:
            self.value = 0.0


class MetricsRegistry:
    """
    Registry for all metrics.

    Thread-safe in-memory metrics storage.
    """

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._gauges: dict[str, Gauge] = {}
        self._lock = Lock()

    def counter(self, name: str) -> Counter:
        """Get or create a counter metric."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name=name)
            return self._counters[name]

    def histogram(self, name: str, buckets: list[float] | None = None) -> Histogram:
        """Get or create a histogram metric."""
        with self._lock:
            if name not in self._histograms:
                if buckets:
                    self._histograms[name] = Histogram(name=name, buckets=buckets)
                else:
                    self._histograms[name] = Histogram(name=name)
            return self._histograms[name]

    def gauge(self, name: str) -> Gauge:
        """Get or create a gauge metric."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name=name)
            return self._gauges[name]

    def get_all(self) -> dict[str, Any]:
        """
        Get all metrics data.

        Returns:
            Dict with all counters, histograms, and gauges
        """
        with self._lock:
            return {
                "counters": {
                    name: {"value": c.value, "labels": dict(c.labels)}
                    for name, c in self._counters.items()
                },
                "histograms": {name: h.get_stats() for name, h in self._histograms.items()},
                "gauges": {name: g.value for name, g in self._gauges.items()},
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            for counter in self._counters.values():
                counter.reset()
            for histogram in self._histograms.values():
                histogram.reset()
            for gauge in self._gauges.values():
                gauge.reset()


# Global metrics registry
_registry = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    """Get global metrics registry."""
    return _registry


def reset_metrics() -> None:
    """Reset all metrics in global registry."""
    _registry.reset()


# ============================================================================
# Engine Metrics
# ============================================================================


def track_provider_call(kind: str, operation: str, duration: float, status: str = "success") -> None:
    """
    Track a provider call.

    Args:
        kind: Resource kind (e.g., "network", "instance")
        operation: create, read, update or delete
        duration: Duration in seconds
        status: success, transient, permanent or not_found
    """
    _registry.counter("converge_provider_calls_total").inc(
        kind=kind, operation=operation, status=status
    )
    _registry.histogram("converge_provider_call_duration_seconds").observe(duration)


def track_plan_item(action: str) -> None:
    """Track one planned item by action."""
    _registry.counter("converge_plan_items_total").inc(action=action)


def track_apply_run(status: str, duration: float) -> None:
    """Track an apply run outcome."""
    _registry.counter("converge_apply_runs_total").inc(status=status)
    _registry.histogram("converge_apply_duration_seconds").observe(duration)


# ============================================================================
# Timing Context Manager
# ============================================================================


class timing:
    """
    Context manager for timing operations.

    Example:
        with timing("provider_call", kind="network", operation="create") as t:
            await provider.create(attrs)
        logger.debug(f"create took {t.duration:.2f}s")
    """

    def __init__(self, operation: str, /, **labels: str) -> None:
        self.operation = operation
        self.labels = labels
        self.start_time: float = 0.0
        self.duration: float = 0.0

    def __enter__(self) -> timing:
        self.start_time = time.monotonic()
        return self

    def __exit__(self, *args: Any) -> None:
        self.duration = time.monotonic() - self.start_time

        if self.operation == "provider_call":
            track_provider_call(
                self.labels.get("kind", "unknown"),
                self.labels.get("operation", "unknown"),
                self.duration,
                self.labels.get("status", "success"),
            )
        else:
            logger.debug(f"⏱️ {self.operation} took {self.duration:.2f}s")


def get_metrics_summary() -> str:
    """
    Get human-readable metrics summary.

    Returns:
        Formatted metrics summary
    """
    data = _registry.get_all()

    lines = ["📊 Metrics Summary", ""]

    calls = data["counters"].get("converge_provider_calls_total")
    if calls:
        total = calls["value"] + sum(calls["labels"].values())
        lines.append(f"Provider calls: {total} total")
        for label, count in sorted(calls["labels"].items()):
            lines.append(f"  - {label}: {count}")
        lines.append("")

    durations = data["histograms"].get("converge_provider_call_duration_seconds")
    if durations and durations["count"] > 0:
        lines.append(
            f"Provider latency: avg={durations['avg']:.2f}s, max={durations['max']:.2f}s"
        )
        lines.append("")

    retries = data["counters"].get("converge_retry_attempts_total")
    if retries:
        lines.append(f"Retries: {retries['value'] + sum(retries['labels'].values())}")

    runs = data["counters"].get("converge_apply_runs_total")
    if runs:
        for label, count in sorted(runs["labels"].items()):
            lines.append(f"Apply runs {label}: {count}")

    return "\n".join(lines)
