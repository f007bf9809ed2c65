from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from directory.cache import CacheService
from directory.client import DirectoryClient
from directory.cooldown import cooldown_remaining, is_deactivatable
from directory.errors import (
    AlreadyActiveError,
    AlreadyInactiveError,
    DirectoryError,
    PermissionDeniedError,
    TransientError,
)
from directory.models import (
    ActiveRole,
    EligibleRole,
    NotificationEvent,
    OutcomeStatus,
    Principal,
    ScheduleAction,
    ScheduleRequest,
    SubmissionOutcome,
    SubmissionReport,
    describe_duration,
)
from directory.notifications import NotificationDispatcher
from directory.resolver import utcnow
from pim_lifecycle.observability import get_metrics

logger = logging.getLogger(__name__)


class RoleSubmitter:
    """Sends activation and deactivation requests, one role at a time.

    A failure on one role never stops the rest of the batch; every role
    ends up in the returned report as succeeded, skipped or failed.
    """

    def __init__(
        self,
        client: DirectoryClient,
        caches: CacheService,
        notifier: NotificationDispatcher | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._caches = caches
        self._notifier = notifier
        self._clock = clock

    async def activate(
        self,
        principal: Principal,
        roles: list[EligibleRole],
        duration: timedelta,
        justification: str,
    ) -> SubmissionReport:
        report = SubmissionReport(action=ScheduleAction.ACTIVATE)
        for role in roles:
            now = self._clock()
            request = ScheduleRequest(
                action=ScheduleAction.ACTIVATE,
                principal_id=principal.id,
                role_definition_id=role.role_id,
                directory_scope_id=role.record.directory_scope_id,
                justification=justification,
                duration=duration,
                created_time=now,
                start_time=now,
            )
            outcome = await self._submit(request, role.name)
            report.outcomes.append(outcome)
            if outcome.status is OutcomeStatus.SUCCEEDED:
                self._notify(
                    NotificationEvent(
                        action=ScheduleAction.ACTIVATE,
                        role_name=role.name,
                        user_identity=principal.identity,
                        justification=justification,
                        duration=describe_duration(duration),
                        timestamp=now,
                    )
                )

        return report

    async def deactivate(
        self, principal: Principal, roles: list[ActiveRole]
    ) -> SubmissionReport:
        report = SubmissionReport(action=ScheduleAction.DEACTIVATE)
        for role in roles:
            now = self._clock()
            if not is_deactivatable(role.activated_at, now):
                remaining = cooldown_remaining(role.activated_at, now)
                report.outcomes.append(
                    SubmissionOutcome(
                        role.name,
                        OutcomeStatus.FAILED,
                        f"still in minimum activation period ({int(remaining.total_seconds())}s left)",
                    )
                )
                continue

            request = ScheduleRequest(
                action=ScheduleAction.DEACTIVATE,
                principal_id=principal.id,
                role_definition_id=role.role_id,
                directory_scope_id=role.instance.directory_scope_id,
                created_time=now,
            )
            outcome = await self._submit(request, role.name)
            report.outcomes.append(outcome)
            if outcome.status is OutcomeStatus.SUCCEEDED:
                self._notify(
                    NotificationEvent(
                        action=ScheduleAction.DEACTIVATE,
                        role_name=role.name,
                        user_identity=principal.identity,
                        timestamp=now,
                    )
                )

        return report

    async def _submit(self, request: ScheduleRequest, role_name: str) -> SubmissionOutcome:
        action = request.action.value
        try:
            await self._client.submit_schedule_request(request)
        except AlreadyActiveError:
            outcome = SubmissionOutcome(role_name, OutcomeStatus.SKIPPED, "already active")
        except AlreadyInactiveError:
            outcome = SubmissionOutcome(role_name, OutcomeStatus.SKIPPED, "already inactive")
        except PermissionDeniedError as exc:
            outcome = SubmissionOutcome(role_name, OutcomeStatus.FAILED, f"permission denied: {exc}")
        except TransientError as exc:
            outcome = SubmissionOutcome(
                role_name, OutcomeStatus.FAILED, f"temporary failure, try again: {exc}"
            )
        except DirectoryError as exc:
            outcome = SubmissionOutcome(role_name, OutcomeStatus.FAILED, str(exc))
        else:
            outcome = SubmissionOutcome(role_name, OutcomeStatus.SUCCEEDED)

        # Skips mean the cached view was already out of date.
        if outcome.status is not OutcomeStatus.FAILED:
            self._caches.invalidate_principal(request.principal_id)

        logger.info("%s %s: %s %s", action, role_name, outcome.status.value, outcome.message)
        get_metrics().submissions_total.add(1, {"action": action, "status": outcome.status.value})
        return outcome

    def _notify(self, event: NotificationEvent) -> None:
        if self._notifier is not None:
            self._notifier.emit(event)
