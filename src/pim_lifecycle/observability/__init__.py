from __future__ import annotations

from pim_lifecycle.observability.config import TelemetryConfig
from pim_lifecycle.observability.setup import TelemetryHandle, configure_telemetry
from pim_lifecycle.observability.tracing import (
    get_tracer,
    traced_directory_call,
    traced_cache_operation,
    traced_authentication,
)
from pim_lifecycle.observability.logging import configure_logging, TraceContextFilter
from pim_lifecycle.observability.metrics import (
    create_lifecycle_metrics,
    get_metrics,
    LifecycleMetrics,
)

__all__ = [
    "TelemetryConfig",
    "configure_telemetry",
    "TelemetryHandle",
    "configure_logging",
    "TraceContextFilter",
    "get_tracer",
    "traced_directory_call",
    "traced_cache_operation",
    "traced_authentication",
    "create_lifecycle_metrics",
    "get_metrics",
    "LifecycleMetrics",
]
