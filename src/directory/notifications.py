from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from directory.models import NotificationEvent, ScheduleAction
from pim_lifecycle.observability import get_metrics

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Receives an event after a role was activated or deactivated."""

    async def send(self, event: NotificationEvent) -> None:
        ...


class WebhookSink:
    """POSTs the event as JSON to an arbitrary webhook."""

    def __init__(self, http: httpx.AsyncClient, url: str) -> None:
        self._http = http
        self.url = url

    async def send(self, event: NotificationEvent) -> None:
        response = await self._http.post(self.url, json=event.model_dump(mode="json"))
        response.raise_for_status()


class TeamsWebhookSink(WebhookSink):
    """Posts a MessageCard to a chat channel incoming webhook."""

    async def send(self, event: NotificationEvent) -> None:
        response = await self._http.post(self.url, json=message_card(event))
        response.raise_for_status()


def message_card(event: NotificationEvent) -> dict[str, Any]:
    verb = "activated" if event.action is ScheduleAction.ACTIVATE else "deactivated"
    facts = [
        {"name": "User", "value": event.user_identity},
        {"name": "Role", "value": event.role_name},
        {"name": "Time", "value": event.timestamp.strftime("%Y-%m-%d %H:%M UTC")},
    ]
    if event.duration:
        facts.append({"name": "Duration", "value": event.duration})
    if event.justification:
        facts.append({"name": "Justification", "value": event.justification})
    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "summary": f"PIM role {verb}",
        "themeColor": "0076D7" if event.action is ScheduleAction.ACTIVATE else "A0A0A0",
        "title": f"PIM role {verb}",
        "text": f"**{event.user_identity}** {verb} **{event.role_name}**",
        "sections": [{"facts": facts}],
    }


class NotificationDispatcher:
    """Fans events out to every sink without ever holding up the caller.

    Each delivery runs as its own task; failures are logged and counted,
    never raised.
    """

    def __init__(self, sinks: list[NotificationSink] | None = None) -> None:
        self.sinks: list[NotificationSink] = list(sinks or [])
        self._pending: set[asyncio.Task[None]] = set()

    def emit(self, event: NotificationEvent) -> None:
        for sink in self.sinks:
            task = asyncio.create_task(self._deliver(sink, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, sink: NotificationSink, event: NotificationEvent) -> None:
        try:
            await sink.send(event)
        except Exception:
            get_metrics().notification_failures.add(1, {"sink": type(sink).__name__})
            logger.exception(
                "Notification via %s failed for %s", type(sink).__name__, event.role_name
            )

    async def aclose(self, timeout: float = 5.0) -> None:
        if not self._pending:
            return
        _, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Dropped %d undelivered notification(s)", len(pending))
