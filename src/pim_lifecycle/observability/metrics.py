from __future__ import annotations

from dataclasses import dataclass, field

from opentelemetry import metrics

_METER_NAME = "pim-lifecycle.observability"


@dataclass(frozen=True)
class LifecycleMetrics:
    """Container for role lifecycle metric instruments."""

    # --- Directory client ---
    directory_call_duration: metrics.Histogram = field(repr=False)
    directory_call_errors: metrics.Counter = field(repr=False)

    # --- Cache layer ---
    cache_hits: metrics.Counter = field(repr=False)
    cache_misses: metrics.Counter = field(repr=False)

    # --- Workflow ---
    submissions_total: metrics.Counter = field(repr=False)
    notification_failures: metrics.Counter = field(repr=False)


def create_lifecycle_metrics(meter_name: str | None = None) -> LifecycleMetrics:
    """Create and return all role lifecycle metric instruments.

    Instruments are created once per meter name and are safe to call
    multiple times (OTel de-duplicates by name).
    """
    meter = metrics.get_meter(meter_name or _METER_NAME)

    return LifecycleMetrics(
        directory_call_duration=meter.create_histogram(
            name="pim.directory.call.duration",
            description="Duration of directory API operations",
            unit="s",
        ),
        directory_call_errors=meter.create_counter(
            name="pim.directory.call.errors",
            description="Failed directory API operations by operation and error kind",
        ),
        cache_hits=meter.create_counter(
            name="pim.cache.hits",
            description="Cache reads served without a remote call, by cache name",
        ),
        cache_misses=meter.create_counter(
            name="pim.cache.misses",
            description="Cache reads that triggered a fetch, by cache name",
        ),
        submissions_total=meter.create_counter(
            name="pim.submissions.total",
            description="Schedule request submissions by action and outcome",
        ),
        notification_failures=meter.create_counter(
            name="pim.notifications.failures",
            description="Notification sink deliveries that failed",
        ),
    )


_metrics: LifecycleMetrics | None = None


def get_metrics() -> LifecycleMetrics:
    """Return the process-wide instruments, creating them on first use."""
    global _metrics
    if _metrics is None:
        _metrics = create_lifecycle_metrics()
    return _metrics
