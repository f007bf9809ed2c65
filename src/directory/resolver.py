from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from directory.cache import CacheService
from directory.client import DirectoryClient
from directory.cooldown import is_deactivatable, resolve_activation_time
from directory.errors import DirectoryError, NotFoundError
from directory.models import (
    ActiveAssignmentInstance,
    ActiveRole,
    DeactivationPartition,
    EligibilityRecord,
    EligibleRole,
    RoleDefinition,
    ScheduleAction,
    ScheduleRequest,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoleResolver:
    """Works out which roles a principal can activate or deactivate right now.

    Lookup failures never escape: they degrade to an empty list, an empty
    set or a placeholder role definition, and a short description is kept
    in ``warnings`` for the UI to show.
    """

    def __init__(
        self,
        client: DirectoryClient,
        caches: CacheService,
        *,
        lookup_workers: int = 4,
        fanout_threshold: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._caches = caches
        self._lookup_workers = max(1, lookup_workers)
        self._fanout_threshold = fanout_threshold
        self._clock = clock
        self.warnings: list[str] = []

    def drain_warnings(self) -> list[str]:
        warnings, self.warnings = self.warnings, []
        return warnings

    def invalidate(self, principal_id: str) -> None:
        self._caches.invalidate_principal(principal_id)

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def resolve_activatable(self, principal_id: str) -> list[EligibleRole]:
        try:
            eligibility = await self._client.list_eligibility(principal_id)
        except DirectoryError as exc:
            self._warn("Could not load eligible roles", exc)
            return []

        excluded = await self._active_role_ids(principal_id)
        excluded |= await self._pending_role_ids(principal_id)

        candidates = dedupe_eligibility(
            record for record in eligibility if record.role_definition_id not in excluded
        )
        definitions = await self._role_definitions(
            [record.role_definition_id for record in candidates]
        )
        roles = [
            EligibleRole(record=record, definition=definitions[record.role_definition_id])
            for record in candidates
        ]
        return sorted(roles, key=lambda role: (role.name.lower(), role.role_id))

    async def _active_role_ids(self, principal_id: str) -> set[str]:
        async def fetch() -> frozenset[str]:
            instances = await self._client.list_active_assignments(principal_id)
            return frozenset(instance.role_definition_id for instance in instances)

        try:
            return set(await self._caches.active_role_ids.get_or_fetch(principal_id, fetch))
        except DirectoryError as exc:
            self._warn("Could not load active roles", exc)
            return set()

    async def _pending_role_ids(self, principal_id: str) -> set[str]:
        requests = await self._schedule_requests(principal_id)
        return {
            request.role_definition_id
            for request in requests
            if request.action is ScheduleAction.ACTIVATE and request.is_pending
        }

    # ------------------------------------------------------------------
    # Deactivation
    # ------------------------------------------------------------------

    async def resolve_deactivatable(self, principal_id: str) -> DeactivationPartition:
        try:
            instances = await self._caches.schedule_instances.get_or_fetch(
                principal_id,
                lambda: self._client.list_active_assignments(principal_id),
            )
        except DirectoryError as exc:
            self._warn("Could not load active roles", exc)
            return DeactivationPartition()

        activated = dedupe_instances(instance for instance in instances if instance.is_activated)

        requests: list[ScheduleRequest] = []
        if any(instance.start_time is None for instance in activated):
            requests = await self._schedule_requests(principal_id)

        definitions = await self._role_definitions(
            [instance.role_definition_id for instance in activated]
        )

        now = self._clock()
        partition = DeactivationPartition()
        for instance in activated:
            role = ActiveRole(
                instance=instance,
                definition=definitions[instance.role_definition_id],
                activated_at=resolve_activation_time(instance, requests, now),
            )
            if is_deactivatable(role.activated_at, now):
                partition.ready.append(role)
            else:
                partition.cooling_down.append(role)

        partition.ready.sort(key=lambda role: role.name.lower())
        partition.cooling_down.sort(key=lambda role: role.ready_at or now)
        return partition

    # ------------------------------------------------------------------
    # Shared lookups
    # ------------------------------------------------------------------

    async def _schedule_requests(self, principal_id: str) -> list[ScheduleRequest]:
        try:
            return await self._client.list_schedule_requests(principal_id)
        except DirectoryError as exc:
            logger.warning("Schedule requests unavailable for %s: %s", principal_id, exc)
            return []

    async def _role_definitions(self, role_ids: list[str]) -> dict[str, RoleDefinition]:
        cache = self._caches.role_definitions
        definitions: dict[str, RoleDefinition] = {}
        missing: list[str] = []
        for role_id in dict.fromkeys(role_ids):
            cached = cache.get(role_id)
            if cached is not None:
                definitions[role_id] = cached
            else:
                missing.append(role_id)

        if len(missing) > self._fanout_threshold:
            semaphore = asyncio.Semaphore(self._lookup_workers)

            async def bounded(role_id: str) -> RoleDefinition | None:
                async with semaphore:
                    return await self._fetch_definition(role_id)

            fetched = await asyncio.gather(*(bounded(role_id) for role_id in missing))
        else:
            fetched = [await self._fetch_definition(role_id) for role_id in missing]

        # Cache writes happen after the join, from the calling task only.
        for role_id, definition in zip(missing, fetched):
            if definition is None:
                definitions[role_id] = RoleDefinition.placeholder(role_id)
            else:
                cache.put(role_id, definition)
                definitions[role_id] = definition
        return definitions

    async def _fetch_definition(self, role_id: str) -> RoleDefinition | None:
        try:
            return await self._client.get_role_definition(role_id)
        except NotFoundError:
            logger.info("Role definition %s not found; using placeholder", role_id)
        except DirectoryError as exc:
            logger.warning("Role definition %s lookup failed: %s", role_id, exc)
        return None

    def _warn(self, what: str, exc: DirectoryError) -> None:
        logger.warning("%s: %s", what, exc)
        self.warnings.append(f"{what}: {exc}")


def dedupe_eligibility(records: Iterable[EligibilityRecord]) -> list[EligibilityRecord]:
    """One record per role, the most recently started winning."""
    ordered = sorted(
        records,
        key=lambda record: (
            record.role_definition_id,
            -(record.start_time or _EPOCH).timestamp(),
            record.directory_scope_id,
        ),
    )
    seen: set[str] = set()
    unique: list[EligibilityRecord] = []
    for record in ordered:
        if record.role_definition_id not in seen:
            seen.add(record.role_definition_id)
            unique.append(record)
    return unique


def dedupe_instances(
    instances: Iterable[ActiveAssignmentInstance],
) -> list[ActiveAssignmentInstance]:
    ordered = sorted(
        instances,
        key=lambda instance: (
            instance.role_definition_id,
            -(instance.start_time or _EPOCH).timestamp(),
            instance.directory_scope_id,
        ),
    )
    seen: set[str] = set()
    unique: list[ActiveAssignmentInstance] = []
    for instance in ordered:
        if instance.role_definition_id not in seen:
            seen.add(instance.role_definition_id)
            unique.append(instance)
    return unique
