from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from directory.models import ActiveAssignmentInstance, CacheEntry, RoleDefinition
from pim_lifecycle.config import LifecycleConfig
from pim_lifecycle.observability import get_metrics, traced_cache_operation

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TtlCache(Generic[T]):
    """Key/value cache whose entries expire ``ttl`` seconds after being written.

    Failed fetches leave the cache untouched, so the next read tries again.
    """

    def __init__(
        self,
        name: str,
        ttl: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.value

    def put(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=self.ttl)

    async def get_or_fetch(self, key: str, fetch_fn: Callable[[], Awaitable[T]]) -> T:
        instruments = get_metrics()
        entry = self._entries.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            instruments.cache_hits.add(1, {"cache": self.name})
            return entry.value

        instruments.cache_misses.add(1, {"cache": self.name})
        async with traced_cache_operation("fetch", cache=self.name, key=key, ttl=self.ttl):
            value = await fetch_fn()
        self.put(key, value)
        return value

    def invalidate(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug("Invalidated %s entry %s", self.name, key)

    def clear(self) -> None:
        self._entries.clear()


class CacheService:
    """The caches behind role resolution, owned by one directory session."""

    def __init__(
        self,
        *,
        role_definition_ttl: float = 300.0,
        active_roles_ttl: float = 60.0,
        schedule_instances_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.role_definitions: TtlCache[RoleDefinition] = TtlCache(
            "role_definitions", role_definition_ttl, clock=clock
        )
        self.active_role_ids: TtlCache[frozenset[str]] = TtlCache(
            "active_role_ids", active_roles_ttl, clock=clock
        )
        self.schedule_instances: TtlCache[list[ActiveAssignmentInstance]] = TtlCache(
            "schedule_instances", schedule_instances_ttl, clock=clock
        )

    @classmethod
    def from_config(cls, config: LifecycleConfig) -> CacheService:
        return cls(
            role_definition_ttl=config.role_definition_ttl_seconds,
            active_roles_ttl=config.active_roles_ttl_seconds,
            schedule_instances_ttl=config.schedule_instances_ttl_seconds,
        )

    def invalidate_principal(self, principal_id: str) -> None:
        """Drop everything that reflects the principal's current activations."""
        self.active_role_ids.invalidate(principal_id)
        self.schedule_instances.invalidate(principal_id)

    def clear(self) -> None:
        self.role_definitions.clear()
        self.active_role_ids.clear()
        self.schedule_instances.clear()
