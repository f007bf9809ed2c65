from __future__ import annotations

import time
from collections.abc import Callable, Coroutine
from contextlib import AbstractContextManager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.trace import StatusCode

from pim_lifecycle.observability.metrics import get_metrics

P = ParamSpec("P")
R = TypeVar("R")

_TRACER_NAME = "pim-lifecycle.observability"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return an OTel tracer scoped to the given name (or the default)."""
    return trace.get_tracer(name or _TRACER_NAME)


# ---------------------------------------------------------------------------
# Directory call tracing decorator
# ---------------------------------------------------------------------------


def traced_directory_call(
    operation: str,
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]],
    Callable[P, Coroutine[Any, Any, R]],
]:
    """Wrap a directory client coroutine in a ``directory/{operation}`` span.

    Usage::

        @traced_directory_call("list_eligibility")
        async def list_eligibility(self, principal_id: str) -> list[EligibilityRecord]:
            ...

    Call duration is recorded for every call and failures are counted by
    exception type. List results add their length to the span.
    """

    def decorator(
        fn: Callable[P, Coroutine[Any, Any, R]],
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        tracer = get_tracer()

        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            instruments = get_metrics()
            labels = {"operation": operation}
            start = time.monotonic()

            with tracer.start_as_current_span(f"directory/{operation}") as span:
                span.set_attribute("directory.operation", operation)
                try:
                    result = await fn(*args, **kwargs)
                except Exception as exc:
                    span.set_status(StatusCode.ERROR, str(exc))
                    span.record_exception(exc)
                    instruments.directory_call_errors.add(
                        1, {**labels, "error": type(exc).__name__}
                    )
                    raise
                finally:
                    instruments.directory_call_duration.record(time.monotonic() - start, labels)

                if isinstance(result, list):
                    span.set_attribute("directory.items_count", len(result))
                return result

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Span scopes (async context managers)
# ---------------------------------------------------------------------------


class _SpanScope:
    """Makes a span current for the body of an ``async with`` block.

    The span is ended on exit; an exception leaving the block marks it as
    an error and is re-raised.
    """

    span_name = "pim"

    def __init__(self, **attributes: Any) -> None:
        self._attributes = {k: v for k, v in attributes.items() if v is not None}
        self._span: trace.Span | None = None
        self._activation: AbstractContextManager[Any] | None = None

    async def __aenter__(self) -> trace.Span:
        self._span = get_tracer().start_span(self.span_name, attributes=self._attributes)
        self._activation = trace.use_span(self._span, end_on_exit=False)
        self._activation.__enter__()
        return self._span

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        assert self._span is not None and self._activation is not None
        self.finish(self._span)
        if exc_val is not None:
            self._span.set_status(StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._activation.__exit__(None, None, None)
        self._span.end()

    def finish(self, span: trace.Span) -> None:
        """Hook for attributes known only once the block is done."""


class traced_cache_operation(_SpanScope):
    """Span for one cache read or fetch.

    Usage::

        async with traced_cache_operation("fetch", cache="role_definitions", key=role_id) as span:
            value = await fetch_fn()
    """

    def __init__(
        self,
        operation: str,
        *,
        cache: str,
        key: str | None = None,
        ttl: float | None = None,
    ) -> None:
        super().__init__(
            **{
                "cache.operation": operation,
                "cache.name": cache,
                "cache.key": key,
                "cache.ttl_seconds": ttl,
            }
        )
        self.span_name = f"cache.{operation}"
        self._start = time.monotonic()

    async def __aenter__(self) -> trace.Span:
        self._start = time.monotonic()
        return await super().__aenter__()

    def finish(self, span: trace.Span) -> None:
        span.set_attribute("cache.duration_ms", round((time.monotonic() - self._start) * 1000, 2))


class traced_authentication(_SpanScope):
    """Span around sign-in verification against the directory.

    Usage::

        async with traced_authentication(base_url=config.graph_base_url) as span:
            principal = await client.get_me()
            span.set_attribute("enduser.id", principal.id)
    """

    span_name = "auth.verify_principal"

    def __init__(self, *, base_url: str | None = None) -> None:
        super().__init__(**{"server.address": base_url})
