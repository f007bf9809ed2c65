"""Cool-down rule: a role must stay active for a minimum time before deactivation.

The same rule drives menu filtering, the countdown display and the guard in
front of every deactivation request, so a role never becomes selectable
before the service would accept its deactivation.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from directory.models import (
    MINIMUM_ACTIVE_DURATION,
    ActiveAssignmentInstance,
    ScheduleAction,
    ScheduleRequest,
)

REQUEST_LOOKBACK = timedelta(minutes=10)


def resolve_activation_time(
    instance: ActiveAssignmentInstance,
    requests: Iterable[ScheduleRequest],
    now: datetime,
    *,
    lookback: timedelta = REQUEST_LOOKBACK,
) -> datetime | None:
    """Return when ``instance`` was activated, or None when it cannot be told.

    The instance's own start time wins. Otherwise the most recent activation
    request for the same principal and role made within ``lookback`` is used,
    preferring its scheduled start over its creation time.
    """
    if instance.start_time is not None:
        return instance.start_time

    candidates = [
        request
        for request in requests
        if request.action is ScheduleAction.ACTIVATE
        and request.principal_id == instance.principal_id
        and request.role_definition_id == instance.role_definition_id
        and request.created_time is not None
        and now - request.created_time <= lookback
    ]
    if not candidates:
        return None

    latest = max(candidates, key=lambda request: request.created_time)
    return latest.start_time or latest.created_time


def cooldown_remaining(activated_at: datetime | None, now: datetime) -> timedelta:
    if activated_at is None:
        return timedelta(0)
    remaining = activated_at + MINIMUM_ACTIVE_DURATION - now
    return max(remaining, timedelta(0))


def is_deactivatable(activated_at: datetime | None, now: datetime) -> bool:
    # Unknown activation times are let through; old grants with missing
    # metadata would otherwise be blocked forever.
    return cooldown_remaining(activated_at, now) == timedelta(0)
