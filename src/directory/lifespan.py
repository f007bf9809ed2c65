from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from directory.auth import authenticate
from directory.cache import CacheService
from directory.client import DirectoryClient
from directory.models import Principal
from directory.notifications import (
    NotificationDispatcher,
    NotificationSink,
    TeamsWebhookSink,
    WebhookSink,
)
from directory.resolver import RoleResolver
from directory.submission import RoleSubmitter
from pim_lifecycle.config import LifecycleConfig

logger = logging.getLogger(__name__)


@dataclass
class DirectorySession:
    principal: Principal
    client: DirectoryClient
    caches: CacheService
    resolver: RoleResolver
    submitter: RoleSubmitter
    notifier: NotificationDispatcher


def build_sinks(config: LifecycleConfig, http: httpx.AsyncClient) -> list[NotificationSink]:
    sinks: list[NotificationSink] = [WebhookSink(http, url) for url in config.notify_webhook_urls]
    if config.teams_webhook_url:
        sinks.append(TeamsWebhookSink(http, config.teams_webhook_url))
    return sinks


@asynccontextmanager
async def directory_session(
    config: LifecycleConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[DirectorySession]:
    """Open the directory connection, sign in and wire up the session services.

    Everything is torn down on exit, including when the user leaves through
    the exit shortcut in the middle of a menu.
    """
    headers = {}
    if config.access_token:
        headers["Authorization"] = f"Bearer {config.access_token}"

    async with httpx.AsyncClient(
        base_url=f"{config.graph_base_url}/",
        headers=headers,
        timeout=config.http_timeout_seconds,
        transport=transport,
    ) as directory_http, httpx.AsyncClient(
        timeout=10.0, transport=transport
    ) as webhook_http:
        client = DirectoryClient(directory_http)

        # Fail fast: nothing works without a principal
        principal = await authenticate(
            client, config.access_token, base_url=config.graph_base_url
        )

        caches = CacheService.from_config(config)
        resolver = RoleResolver(
            client,
            caches,
            lookup_workers=config.lookup_workers,
            fanout_threshold=config.fanout_threshold,
        )
        notifier = NotificationDispatcher(build_sinks(config, webhook_http))

        try:
            yield DirectorySession(
                principal=principal,
                client=client,
                caches=caches,
                resolver=resolver,
                submitter=RoleSubmitter(client, caches, notifier),
                notifier=notifier,
            )
        finally:
            await notifier.aclose()
            caches.clear()
            logger.info("Directory session closed for %s", principal.identity)
