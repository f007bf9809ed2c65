from __future__ import annotations

import logging
import sys

from opentelemetry import trace

# Per-request chatter from the HTTP stack; kept at WARNING unless debugging.
_NOISY_LOGGERS = ("httpx", "httpcore")


class TraceContextFilter(logging.Filter):
    """Stamp each record with the current span's trace and span ids.

    Outside a span both attributes are empty strings, so the format string
    never fails.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = trace.get_current_span().get_span_context()
        traced = bool(ctx and ctx.trace_id)
        record.trace_id = format(ctx.trace_id, "032x") if traced else ""  # type: ignore[attr-defined]
        record.span_id = format(ctx.span_id, "016x") if traced else ""  # type: ignore[attr-defined]
        return True


def configure_logging(
    level: str = "INFO",
    *,
    include_trace_context: bool = True,
    stream: object | None = None,
    log_file: str | None = None,
) -> None:
    """Route the tool's logging somewhere that does not fight the menus.

    The interactive screens own the terminal, so with ``log_file`` every
    record at ``level`` is appended there; without one only warnings and
    errors reach ``stream``.

    Args:
        level: Logging level name (e.g. ``"INFO"``, ``"DEBUG"``).
        include_trace_context: Whether to add trace/span IDs to log records.
        stream: Fallback stream when no file is used (defaults to ``sys.stderr``).
        log_file: Path of a log file to append to.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)  # type: ignore[arg-type]
        handler.setLevel(logging.WARNING)

    if include_trace_context:
        handler.addFilter(TraceContextFilter())
        fmt = "%(asctime)s [%(trace_id)s/%(span_id)s] %(name)s %(levelname)s %(message)s"
    else:
        fmt = "%(asctime)s %(name)s %(levelname)s %(message)s"
    handler.setFormatter(logging.Formatter(fmt))

    root.handlers.clear()
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.NOTSET if numeric_level <= logging.DEBUG else logging.WARNING
        )
