from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from opentelemetry import metrics, trace

from pim_lifecycle.observability.config import TelemetryConfig

if TYPE_CHECKING:
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

_HTTP_SIGNAL_PATHS = {"traces": "/v1/traces", "metrics": "/v1/metrics"}


@dataclass
class TelemetryHandle:
    """Providers installed by :func:`configure_telemetry`.

    ``shutdown`` flushes pending spans and metric points; the CLI calls it
    on the way out so a short session still reaches the collector.
    """

    tracer_provider: TracerProvider
    meter_provider: MeterProvider | None = None

    def shutdown(self) -> None:
        self.tracer_provider.shutdown()
        if self.meter_provider is not None:
            self.meter_provider.shutdown()


def configure_telemetry(
    config: TelemetryConfig | None = None,
) -> TelemetryHandle | None:
    """Install OTLP trace and metric pipelines for the lifecycle tool.

    Returns ``None`` when telemetry is disabled, no collector endpoint is
    configured, or setup fails; the API-level tracer and meter then stay
    no-ops and the tool runs unchanged.
    """
    if config is None:
        config = TelemetryConfig()
    config = config.resolve()

    if not config.enabled:
        logger.info("Telemetry disabled (PIM_OTEL_ENABLED=false)")
        return None
    if config.otlp_endpoint is None:
        logger.info("No OTLP endpoint configured; tracing and metrics stay no-op")
        return None

    try:
        handle = _build_pipelines(config, config.otlp_endpoint)
    except Exception:
        logger.exception("Failed to configure OTel telemetry; continuing without it")
        return None

    trace.set_tracer_provider(handle.tracer_provider)
    if handle.meter_provider is not None:
        metrics.set_meter_provider(handle.meter_provider)
    if config.instrument_httpx:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument(tracer_provider=handle.tracer_provider)
        logger.debug("httpx auto-instrumentation enabled")

    logger.info(
        "Telemetry exporting to %s over %s (metrics=%s)",
        config.otlp_endpoint,
        config.otlp_protocol,
        handle.meter_provider is not None,
    )
    return handle


def _build_pipelines(config: TelemetryConfig, endpoint: str) -> TelemetryHandle:
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider as _TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

    resource = Resource.create({"service.name": config.service_name})

    span_exporter = _span_exporter(config, endpoint)
    tracer_provider = _TracerProvider(resource=resource)
    if config.batch:
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    else:
        tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))

    meter_provider = None
    if config.export_metrics:
        from opentelemetry.sdk.metrics import MeterProvider as _MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

        reader = PeriodicExportingMetricReader(
            _metric_exporter(config, endpoint),
            export_interval_millis=config.metric_export_interval_ms,
        )
        meter_provider = _MeterProvider(resource=resource, metric_readers=[reader])

    return TelemetryHandle(tracer_provider=tracer_provider, meter_provider=meter_provider)


def _signal_endpoint(config: TelemetryConfig, endpoint: str, signal: str) -> str:
    # The HTTP exporters use an explicit endpoint verbatim; gRPC takes the bare host.
    if config.otlp_protocol != "http/protobuf":
        return endpoint
    path = _HTTP_SIGNAL_PATHS[signal]
    base = endpoint.rstrip("/")
    return base if base.endswith(path) else base + path


def _span_exporter(config: TelemetryConfig, endpoint: str):
    headers = dict(config.otlp_headers) or None
    target = _signal_endpoint(config, endpoint, "traces")

    if config.otlp_protocol == "http/protobuf":
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        return OTLPSpanExporter(endpoint=target, headers=headers)

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    return OTLPSpanExporter(endpoint=target, headers=headers)


def _metric_exporter(config: TelemetryConfig, endpoint: str):
    headers = dict(config.otlp_headers) or None
    target = _signal_endpoint(config, endpoint, "metrics")

    if config.otlp_protocol == "http/protobuf":
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter

        return OTLPMetricExporter(endpoint=target, headers=headers)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

    return OTLPMetricExporter(endpoint=target, headers=headers)
