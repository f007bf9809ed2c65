"""Tests for configuration env fallbacks and the logging/telemetry setup."""

from __future__ import annotations

import io
import logging

import pytest

from pim_lifecycle.config import LifecycleConfig
from pim_lifecycle.observability import (
    TelemetryConfig,
    TraceContextFilter,
    configure_logging,
    configure_telemetry,
    get_metrics,
)
from pim_lifecycle.observability.setup import _signal_endpoint

_ENV_VARS = [
    "PIM_GRAPH_BASE_URL",
    "PIM_ACCESS_TOKEN",
    "PIM_HTTP_TIMEOUT_SECONDS",
    "PIM_ROLE_DEFINITION_TTL_SECONDS",
    "PIM_ACTIVE_ROLES_TTL_SECONDS",
    "PIM_SCHEDULE_INSTANCES_TTL_SECONDS",
    "PIM_LOOKUP_WORKERS",
    "PIM_FANOUT_THRESHOLD",
    "PIM_DEFAULT_DURATION",
    "PIM_NOTIFY_WEBHOOK_URLS",
    "PIM_TEAMS_WEBHOOK_URL",
    "PIM_LOG_LEVEL",
    "PIM_LOG_FILE",
    "PIM_OTEL_ENABLED",
    "PIM_OTEL_METRICS",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "OTEL_EXPORTER_OTLP_PROTOCOL",
    "OTEL_SERVICE_NAME",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    httpx_level = logging.getLogger("httpx").level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)
    logging.getLogger("httpcore").setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# LifecycleConfig
# ---------------------------------------------------------------------------


class TestLifecycleConfig:
    def test_defaults(self) -> None:
        config = LifecycleConfig().resolve()
        assert config.graph_base_url == "https://graph.microsoft.com/v1.0"
        assert config.access_token is None
        assert config.role_definition_ttl_seconds == 300
        assert config.active_roles_ttl_seconds == 60
        assert config.schedule_instances_ttl_seconds == 30
        assert config.default_duration == "1H"
        assert config.notify_webhook_urls == []

    def test_env_fallbacks(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIM_GRAPH_BASE_URL", "https://graph.test/beta/")
        monkeypatch.setenv("PIM_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("PIM_ACTIVE_ROLES_TTL_SECONDS", "15")
        monkeypatch.setenv("PIM_LOOKUP_WORKERS", "8")
        monkeypatch.setenv("PIM_NOTIFY_WEBHOOK_URLS", "https://a.test/hook, ,https://b.test/hook")
        monkeypatch.setenv("PIM_LOG_FILE", "/tmp/pim.log")

        config = LifecycleConfig().resolve()

        assert config.graph_base_url == "https://graph.test/beta"
        assert config.access_token == "env-token"
        assert config.active_roles_ttl_seconds == 15.0
        assert config.lookup_workers == 8
        assert config.notify_webhook_urls == ["https://a.test/hook", "https://b.test/hook"]
        assert config.log_file == "/tmp/pim.log"

    def test_explicit_values_win_over_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIM_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("PIM_TEAMS_WEBHOOK_URL", "https://env.test/hook")

        config = LifecycleConfig(
            access_token="explicit", teams_webhook_url="https://explicit.test/hook"
        ).resolve()

        assert config.access_token == "explicit"
        assert config.teams_webhook_url == "https://explicit.test/hook"

    def test_blank_numeric_env_keeps_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIM_HTTP_TIMEOUT_SECONDS", "  ")
        assert LifecycleConfig().resolve().http_timeout_seconds == 30.0

    def test_bad_numeric_env_fails_loudly(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIM_FANOUT_THRESHOLD", "many")
        with pytest.raises(ValueError):
            LifecycleConfig().resolve()


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class TestTelemetry:
    def test_config_env_fallbacks(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIM_OTEL_ENABLED", "false")
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")
        monkeypatch.setenv("OTEL_SERVICE_NAME", "pim-test")

        config = TelemetryConfig().resolve()

        assert config.enabled is False
        assert config.otlp_endpoint == "http://collector:4317"
        assert config.service_name == "pim-test"

    def test_metrics_export_switch(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIM_OTEL_METRICS", "0")
        assert TelemetryConfig().resolve().export_metrics is False

    @pytest.mark.parametrize(
        "protocol, endpoint, signal, expected",
        [
            ("grpc", "http://collector:4317", "traces", "http://collector:4317"),
            ("http/protobuf", "http://collector:4318", "traces", "http://collector:4318/v1/traces"),
            ("http/protobuf", "http://collector:4318/", "metrics", "http://collector:4318/v1/metrics"),
            (
                "http/protobuf",
                "http://collector:4318/v1/traces",
                "traces",
                "http://collector:4318/v1/traces",
            ),
        ],
    )
    def test_signal_endpoints(self, protocol: str, endpoint: str, signal: str, expected: str) -> None:
        config = TelemetryConfig(otlp_protocol=protocol)
        assert _signal_endpoint(config, endpoint, signal) == expected

    def test_no_endpoint_is_noop(self) -> None:
        assert configure_telemetry(TelemetryConfig()) is None

    def test_disabled_is_noop(self) -> None:
        config = TelemetryConfig(enabled=False, otlp_endpoint="http://collector:4317")
        assert configure_telemetry(config) is None

    def test_metrics_are_singletons(self) -> None:
        assert get_metrics() is get_metrics()
        # No meter provider configured: recording is a no-op rather than an error
        get_metrics().cache_hits.add(1, {"cache": "test"})


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class TestLogging:
    def test_stream_handler_only_passes_warnings(self, restore_root_logger: logging.Logger) -> None:
        stream = io.StringIO()
        configure_logging("DEBUG", stream=stream, include_trace_context=False)

        logging.getLogger("pim.test").info("quiet")
        logging.getLogger("pim.test").warning("loud")

        output = stream.getvalue()
        assert "quiet" not in output
        assert "pim.test WARNING loud" in output

    def test_file_handler_receives_everything(
        self, restore_root_logger: logging.Logger, tmp_path
    ) -> None:
        path = tmp_path / "pim.log"
        configure_logging("INFO", log_file=str(path))

        logging.getLogger("pim.test").info("activated Role A")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert "activated Role A" in path.read_text(encoding="utf-8")
        assert "[/]" in path.read_text(encoding="utf-8")

    def test_http_chatter_is_quieted(self, restore_root_logger: logging.Logger) -> None:
        configure_logging("INFO", stream=io.StringIO())
        assert logging.getLogger("httpx").level == logging.WARNING

        configure_logging("DEBUG", stream=io.StringIO())
        assert logging.getLogger("httpx").level == logging.NOTSET

    def test_trace_filter_outside_span(self) -> None:
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert TraceContextFilter().filter(record) is True
        assert record.trace_id == ""  # type: ignore[attr-defined]
        assert record.span_id == ""  # type: ignore[attr-defined]
