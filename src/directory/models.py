from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

# Minimum time a role stays active before it may be deactivated. The same
# value is the shortest activation duration accepted at submission.
MINIMUM_ACTIVE_DURATION = timedelta(minutes=5)
# Longest activation the directory grants in a single request.
MAXIMUM_ACTIVE_DURATION = timedelta(hours=24)

_ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def format_iso_duration(duration: timedelta) -> str:
    total_minutes = int(duration.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    text = "PT"
    if hours:
        text += f"{hours}H"
    if minutes or not hours:
        text += f"{minutes}M"
    return text


def describe_duration(duration: timedelta) -> str:
    """Compact hours/minutes form, e.g. ``2H30M``."""
    return format_iso_duration(duration)[2:]


def parse_iso_duration(text: str | None) -> timedelta | None:
    if not text:
        return None
    match = _ISO_DURATION_RE.match(text.strip().upper())
    if match is None:
        return None
    parts = {k: int(v) for k, v in match.groupdict().items() if v}
    return timedelta(**parts)


# --- Pydantic models (external boundaries) ---


class _GraphModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Principal(_GraphModel):
    id: str
    user_principal_name: str = Field(default="", alias="userPrincipalName")
    display_name: str = Field(default="", alias="displayName")

    @property
    def identity(self) -> str:
        return self.user_principal_name or self.display_name or self.id


class RoleDefinition(_GraphModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    display_name: str = Field(alias="displayName")
    description: str | None = None

    @classmethod
    def placeholder(cls, role_id: str) -> RoleDefinition:
        return cls(id=role_id, display_name="Unknown Role")


class EligibilityRecord(_GraphModel):
    role_definition_id: str = Field(alias="roleDefinitionId")
    principal_id: str = Field(alias="principalId")
    directory_scope_id: str = Field(default="/", alias="directoryScopeId")
    start_time: datetime | None = Field(default=None, alias="startDateTime")


class ActiveAssignmentInstance(_GraphModel):
    role_definition_id: str = Field(alias="roleDefinitionId")
    principal_id: str = Field(alias="principalId")
    directory_scope_id: str = Field(default="/", alias="directoryScopeId")
    start_time: datetime | None = Field(default=None, alias="startDateTime")
    end_time: datetime | None = Field(default=None, alias="endDateTime")
    assignment_type: str | None = Field(default=None, alias="assignmentType")

    @property
    def is_activated(self) -> bool:
        """False for permanent grants, which cannot be deactivated from here."""
        return (self.assignment_type or "Activated").lower() == "activated"


class ScheduleAction(str, Enum):
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


_GRAPH_ACTIONS = {
    ScheduleAction.ACTIVATE: "selfActivate",
    ScheduleAction.DEACTIVATE: "selfDeactivate",
}

_ACTIONS_FROM_GRAPH = {
    "selfactivate": ScheduleAction.ACTIVATE,
    "adminassign": ScheduleAction.ACTIVATE,
    "selfextend": ScheduleAction.ACTIVATE,
    "selfrenew": ScheduleAction.ACTIVATE,
    "selfdeactivate": ScheduleAction.DEACTIVATE,
    "adminremove": ScheduleAction.DEACTIVATE,
}

PENDING_STATUSES = frozenset(
    {
        "pendingapproval",
        "pendingapprovalprovisioning",
        "pendingprovisioning",
        "pendingscheduledcreation",
        "granted",
        "scheduled",
    }
)


class ScheduleRequest(BaseModel):
    """A lifecycle transition, either about to be submitted or read back."""

    action: ScheduleAction
    principal_id: str
    role_definition_id: str
    directory_scope_id: str = "/"
    justification: str | None = None
    duration: timedelta | None = None
    # None when read back from the service without a creation timestamp
    created_time: datetime | None = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str | None = None
    start_time: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return (self.status or "").lower() in PENDING_STATUSES

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "action": _GRAPH_ACTIONS[self.action],
            "principalId": self.principal_id,
            "roleDefinitionId": self.role_definition_id,
            "directoryScopeId": self.directory_scope_id,
        }
        if self.justification:
            payload["justification"] = self.justification
        if self.action is ScheduleAction.ACTIVATE and self.duration is not None:
            payload["scheduleInfo"] = {
                "startDateTime": (
                    self.start_time or self.created_time or datetime.now(timezone.utc)
                ).isoformat(),
                "expiration": {
                    "type": "afterDuration",
                    "duration": format_iso_duration(self.duration),
                },
            }
        return payload

    @classmethod
    def from_graph(cls, data: dict[str, Any]) -> ScheduleRequest | None:
        """Build from a Graph response item; None for actions outside the lifecycle."""
        action = _ACTIONS_FROM_GRAPH.get(str(data.get("action", "")).lower())
        if action is None:
            return None
        schedule = data.get("scheduleInfo") or {}
        expiration = schedule.get("expiration") or {}
        fields: dict[str, Any] = {
            "action": action,
            "principal_id": data.get("principalId", ""),
            "role_definition_id": data.get("roleDefinitionId", ""),
            "directory_scope_id": data.get("directoryScopeId") or "/",
            "justification": data.get("justification"),
            "duration": parse_iso_duration(expiration.get("duration")),
            "status": data.get("status"),
            "start_time": schedule.get("startDateTime"),
            "created_time": data.get("createdDateTime") or None,
        }
        return cls.model_validate(fields)


class NotificationEvent(BaseModel):
    action: ScheduleAction
    role_name: str
    user_identity: str
    justification: str | None = None
    duration: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- Dataclasses (internal state) ---


@dataclass
class CacheEntry(Generic[T]):
    value: T
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


@dataclass(frozen=True)
class EligibleRole:
    record: EligibilityRecord
    definition: RoleDefinition

    @property
    def role_id(self) -> str:
        return self.record.role_definition_id

    @property
    def name(self) -> str:
        return self.definition.display_name


@dataclass(frozen=True)
class ActiveRole:
    instance: ActiveAssignmentInstance
    definition: RoleDefinition
    activated_at: datetime | None = None

    @property
    def role_id(self) -> str:
        return self.instance.role_definition_id

    @property
    def name(self) -> str:
        return self.definition.display_name

    @property
    def ready_at(self) -> datetime | None:
        if self.activated_at is None:
            return None
        return self.activated_at + MINIMUM_ACTIVE_DURATION

    @property
    def expires_at(self) -> datetime | None:
        return self.instance.end_time


@dataclass
class DeactivationPartition:
    ready: list[ActiveRole] = field(default_factory=list)
    cooling_down: list[ActiveRole] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.ready or self.cooling_down)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class SubmissionOutcome:
    role_name: str
    status: OutcomeStatus
    message: str = ""


@dataclass
class SubmissionReport:
    action: ScheduleAction
    outcomes: list[SubmissionOutcome] = field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def succeeded(self) -> int:
        return self.count(OutcomeStatus.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self.count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeStatus.FAILED)
