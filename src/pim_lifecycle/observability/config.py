from __future__ import annotations

import os

from pydantic import BaseModel, Field


class TelemetryConfig(BaseModel):
    """Configuration for role lifecycle telemetry and observability."""

    service_name: str = Field(
        default="pim-lifecycle",
        description="OTel service name; used as the primary identifier in traces.",
    )
    enabled: bool = Field(
        default=True,
        description="Master switch for OTel instrumentation.",
    )
    otlp_endpoint: str | None = Field(
        default=None,
        description=(
            "OTLP endpoint (e.g. http://localhost:4317). "
            "Falls back to OTEL_EXPORTER_OTLP_ENDPOINT env var. Tracing is a no-op when unset."
        ),
    )
    otlp_protocol: str = Field(
        default="grpc",
        description="OTLP protocol: 'grpc' or 'http/protobuf'.",
    )
    otlp_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers for the OTLP exporter (e.g. auth tokens).",
    )
    batch: bool = Field(
        default=True,
        description="Use BatchSpanProcessor (True) or SimpleSpanProcessor (False).",
    )
    instrument_httpx: bool = Field(
        default=True,
        description="Auto-instrument httpx.AsyncClient calls to the directory service.",
    )
    export_metrics: bool = Field(
        default=True,
        description=(
            "Export cache, submission and directory-call metrics over OTLP alongside traces. "
            "Falls back to PIM_OTEL_METRICS env var."
        ),
    )
    metric_export_interval_ms: int = Field(
        default=30_000,
        description="How often metrics are pushed to the collector.",
    )

    def resolve(self) -> TelemetryConfig:
        """Return a copy with env-var fallbacks applied."""
        return self.model_copy(
            update={
                "enabled": _env_bool("PIM_OTEL_ENABLED", self.enabled),
                "export_metrics": _env_bool("PIM_OTEL_METRICS", self.export_metrics),
                "otlp_endpoint": self.otlp_endpoint
                or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
                "otlp_protocol": os.getenv(
                    "OTEL_EXPORTER_OTLP_PROTOCOL", self.otlp_protocol
                ),
                "service_name": os.getenv(
                    "OTEL_SERVICE_NAME", self.service_name
                ),
            }
        )


def _env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")
