"""Shared fakes: an in-memory directory, controllable clocks and scripted keys."""

from __future__ import annotations

import io
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from console.keys import Key, KeyEvent
from console.terminal import Terminal
from directory.cache import CacheService
from directory.errors import AlreadyActiveError, AlreadyInactiveError, NotFoundError
from directory.models import (
    ActiveAssignmentInstance,
    EligibilityRecord,
    Principal,
    RoleDefinition,
    ScheduleAction,
    ScheduleRequest,
)
from directory.resolver import RoleResolver
from directory.submission import RoleSubmitter

PRINCIPAL_ID = "user-1"
START = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall clock for cool-down and countdown logic."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic seconds for cache expiry."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeDirectory:
    """In-memory stand-in for DirectoryClient that counts every call."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.eligibility: list[EligibilityRecord] = []
        self.active: list[ActiveAssignmentInstance] = []
        self.requests: list[ScheduleRequest] = []
        self.definitions: dict[str, RoleDefinition] = {}
        self.submitted: list[ScheduleRequest] = []
        self.calls: Counter[str] = Counter()
        self.failures: dict[str, Exception] = {}
        self.submit_errors: dict[str, Exception] = {}

    # --- seeding -----------------------------------------------------

    def add_role(self, role_id: str, name: str | None = None) -> None:
        self.definitions[role_id] = RoleDefinition(
            id=role_id, display_name=name or role_id, description=f"{name or role_id} role"
        )

    def make_eligible(self, role_id: str, **extra) -> None:
        self.eligibility.append(
            EligibilityRecord(
                role_definition_id=role_id, principal_id=PRINCIPAL_ID, **extra
            )
        )

    def make_active(self, role_id: str, start_time: datetime | None, *, hours: float = 1) -> None:
        base = start_time or self.clock()
        self.active.append(
            ActiveAssignmentInstance(
                role_definition_id=role_id,
                principal_id=PRINCIPAL_ID,
                start_time=start_time,
                end_time=base + timedelta(hours=hours),
                assignment_type="Activated",
            )
        )

    # --- client surface ----------------------------------------------

    def _call(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.failures:
            raise self.failures[name]

    async def list_eligibility(self, principal_id: str) -> list[EligibilityRecord]:
        self._call("list_eligibility")
        return [r for r in self.eligibility if r.principal_id == principal_id]

    async def list_active_assignments(self, principal_id: str) -> list[ActiveAssignmentInstance]:
        self._call("list_active_assignments")
        return [i for i in self.active if i.principal_id == principal_id]

    async def list_schedule_requests(self, principal_id: str) -> list[ScheduleRequest]:
        self._call("list_schedule_requests")
        return [r for r in self.requests if r.principal_id == principal_id]

    async def get_role_definition(self, role_id: str) -> RoleDefinition:
        self._call("get_role_definition")
        if role_id not in self.definitions:
            raise NotFoundError(f"role {role_id} not found", status=404)
        return self.definitions[role_id]

    async def submit_schedule_request(self, request: ScheduleRequest) -> ScheduleRequest:
        self._call("submit_schedule_request")
        self.submitted.append(request)
        if request.role_definition_id in self.submit_errors:
            raise self.submit_errors[request.role_definition_id]

        active_ids = {i.role_definition_id for i in self.active}
        if request.action is ScheduleAction.ACTIVATE:
            if request.role_definition_id in active_ids:
                raise AlreadyActiveError("exists", code="RoleAssignmentExists", status=400)
            now = self.clock()
            self.active.append(
                ActiveAssignmentInstance(
                    role_definition_id=request.role_definition_id,
                    principal_id=request.principal_id,
                    start_time=now,
                    end_time=now + (request.duration or timedelta(hours=1)),
                    assignment_type="Activated",
                )
            )
        else:
            if request.role_definition_id not in active_ids:
                raise AlreadyInactiveError("gone", code="RoleAssignmentDoesNotExist", status=400)
            self.active = [
                i for i in self.active if i.role_definition_id != request.role_definition_id
            ]
        return request


@dataclass
class Tick:
    """Let ``count`` redraw intervals pass without a key press."""

    count: int = 1


class ScriptedKeys:
    """KeySource replaying a fixed script.

    A :class:`Tick` entry answers timed waits with ``None`` and moves the
    wall clock forward one second per tick.
    """

    def __init__(self, script: list, clock: FakeClock | None = None) -> None:
        self._script = list(script)
        self._clock = clock
        self.timeouts: list[float | None] = []

    @property
    def remaining(self) -> int:
        return len(self._script)

    async def next_key(self, timeout: float | None = None) -> KeyEvent | None:
        self.timeouts.append(timeout)
        if not self._script:
            raise AssertionError("key script exhausted")
        head = self._script[0]
        if isinstance(head, Tick):
            head.count -= 1
            if head.count <= 0:
                self._script.pop(0)
            if timeout is not None and self._clock is not None:
                self._clock.advance(seconds=1)
            return None
        return self._script.pop(0)


def key(kind: Key) -> KeyEvent:
    return KeyEvent(kind, " " if kind is Key.SPACE else "")


def typed(text: str) -> list[KeyEvent]:
    return [KeyEvent(Key.SPACE, " ") if c == " " else KeyEvent(Key.CHAR, c) for c in text]


UP = key(Key.UP)
DOWN = key(Key.DOWN)
SPACE = key(Key.SPACE)
ENTER = key(Key.ENTER)
ESCAPE = key(Key.ESCAPE)
BACKSPACE = key(Key.BACKSPACE)
EXIT = key(Key.EXIT)
SELECT_ALL = key(Key.SELECT_ALL)
DESELECT_ALL = key(Key.DESELECT_ALL)
REFRESH = key(Key.REFRESH)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ticks() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def directory(clock: FakeClock) -> FakeDirectory:
    return FakeDirectory(clock)


@pytest.fixture
def caches(ticks: FakeMonotonic) -> CacheService:
    return CacheService(clock=ticks)


@pytest.fixture
def resolver(directory: FakeDirectory, caches: CacheService, clock: FakeClock) -> RoleResolver:
    return RoleResolver(directory, caches, clock=clock)  # type: ignore[arg-type]


@pytest.fixture
def submitter(directory: FakeDirectory, caches: CacheService, clock: FakeClock) -> RoleSubmitter:
    return RoleSubmitter(directory, caches, clock=clock)  # type: ignore[arg-type]


@pytest.fixture
def principal() -> Principal:
    return Principal(id=PRINCIPAL_ID, user_principal_name="alice@example.com", display_name="Alice")


@pytest.fixture
def screen() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def terminal(screen: io.StringIO) -> Terminal:
    return Terminal(screen)
