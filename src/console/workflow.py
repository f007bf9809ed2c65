from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from console.keys import KeySource
from console.menu import CountdownMenu, MenuItem, MenuOutcome, SelectionMenu
from console.prompts import DurationError, acknowledge, confirm, parse_duration, prompt_text
from console.terminal import GREEN, RED, YELLOW, Terminal, style
from directory.cooldown import is_deactivatable
from directory.models import (
    MINIMUM_ACTIVE_DURATION,
    ActiveRole,
    DeactivationPartition,
    EligibleRole,
    OutcomeStatus,
    Principal,
    ScheduleAction,
    SubmissionReport,
    describe_duration,
)
from directory.resolver import RoleResolver, utcnow
from directory.submission import RoleSubmitter

logger = logging.getLogger(__name__)

_COOLDOWN_MINUTES = int(MINIMUM_ACTIVE_DURATION.total_seconds() // 60)


class State(Enum):
    CHOOSE_ACTION = "choose_action"
    SELECT_ACTIVATE = "select_activate"
    ENTER_DURATION = "enter_duration"
    ENTER_JUSTIFICATION = "enter_justification"
    SUBMIT_ACTIVATE = "submit_activate"
    COOLDOWN_WAIT = "cooldown_wait"
    SELECT_DEACTIVATE = "select_deactivate"
    SUBMIT_DEACTIVATE = "submit_deactivate"
    REPORT = "report"
    IDLE = "idle"
    DONE = "done"


@dataclass
class WorkflowContext:
    activatable: list[EligibleRole] = field(default_factory=list)
    partition: DeactivationPartition = field(default_factory=DeactivationPartition)
    warnings: list[str] = field(default_factory=list)
    show_action_menu: bool = True
    to_activate: list[EligibleRole] = field(default_factory=list)
    to_deactivate: list[ActiveRole] = field(default_factory=list)
    preselected: tuple[int, ...] = ()
    selection_notice: str | None = None
    duration: timedelta | None = None
    justification: str | None = None
    report: SubmissionReport | None = None

    def reset_selection(self) -> None:
        self.to_activate = []
        self.to_deactivate = []
        self.preselected = ()
        self.selection_notice = None
        self.duration = None
        self.justification = None


class Workflow:
    """Interactive activate/deactivate loop for one signed-in principal.

    Each state handler draws its screen, reads the user's answer and returns
    the next state. ``ExitRequested`` from any prompt propagates to the
    caller untouched.
    """

    def __init__(
        self,
        principal: Principal,
        resolver: RoleResolver,
        submitter: RoleSubmitter,
        terminal: Terminal,
        keys: KeySource,
        *,
        default_duration: str = "1H",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.principal = principal
        self.resolver = resolver
        self.submitter = submitter
        self.terminal = terminal
        self.keys = keys
        self.default_duration = default_duration
        self.clock = clock
        self.ctx = WorkflowContext()
        self.state = State.CHOOSE_ACTION
        self._handlers = {
            State.CHOOSE_ACTION: self._choose_action,
            State.SELECT_ACTIVATE: self._select_activate,
            State.ENTER_DURATION: self._enter_duration,
            State.ENTER_JUSTIFICATION: self._enter_justification,
            State.SUBMIT_ACTIVATE: self._submit_activate,
            State.COOLDOWN_WAIT: self._cooldown_wait,
            State.SELECT_DEACTIVATE: self._select_deactivate,
            State.SUBMIT_DEACTIVATE: self._submit_deactivate,
            State.REPORT: self._report,
            State.IDLE: self._idle,
        }

    async def run(self) -> None:
        while self.state is not State.DONE:
            handler = self._handlers[self.state]
            next_state = await handler()
            logger.debug("Workflow %s -> %s", self.state.value, next_state.value)
            self.state = next_state

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve_activatable(self) -> None:
        self.ctx.activatable = await self.resolver.resolve_activatable(self.principal.id)
        self.ctx.warnings.extend(self.resolver.drain_warnings())

    async def _resolve_deactivatable(self) -> None:
        self.ctx.partition = await self.resolver.resolve_deactivatable(self.principal.id)
        self.ctx.warnings.extend(self.resolver.drain_warnings())

    async def _refresh(self) -> None:
        self.resolver.invalidate(self.principal.id)
        await self._resolve_activatable()
        await self._resolve_deactivatable()

    def _notices(self) -> list[str]:
        lines = [style(f"Warning: {text}", YELLOW) for text in dict.fromkeys(self.ctx.warnings)]
        self.ctx.warnings = []
        if self.ctx.selection_notice:
            lines.append(style(self.ctx.selection_notice, RED))
            self.ctx.selection_notice = None
        return lines

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _choose_action(self) -> State:
        await self._resolve_activatable()
        await self._resolve_deactivatable()
        has_activatable = bool(self.ctx.activatable)
        has_active = bool(self.ctx.partition)

        if not self.ctx.show_action_menu:
            if has_activatable and not has_active:
                return State.SELECT_ACTIVATE
            if has_active and not has_activatable:
                return State.COOLDOWN_WAIT
            if not has_activatable and not has_active:
                await acknowledge(
                    self.terminal,
                    self.keys,
                    "Nothing to manage",
                    self._notices() + ["You have no eligible or active roles right now."],
                )
                return State.IDLE
        self.ctx.show_action_menu = False

        active_count = len(self.ctx.partition.ready) + len(self.ctx.partition.cooling_down)
        menu = SelectionMenu(
            f"PIM role management - {self.principal.identity}",
            [
                MenuItem(f"Activate roles ({len(self.ctx.activatable)} available)", ref="activate"),
                MenuItem(f"Deactivate roles ({active_count} active)", ref="deactivate"),
            ],
            notice=self._notices(),
        )
        result = await menu.run(self.terminal, self.keys)
        if result.outcome is MenuOutcome.REFRESH:
            self.resolver.invalidate(self.principal.id)
            self.ctx.show_action_menu = True
            return State.CHOOSE_ACTION
        if result.outcome is not MenuOutcome.CONFIRMED:
            return State.IDLE

        choice = menu.items[result.indices[0]].ref
        if choice == "activate":
            if has_activatable:
                return State.SELECT_ACTIVATE
            if await confirm(
                self.terminal, self.keys, "No roles available to activate. Deactivate instead?"
            ):
                return State.COOLDOWN_WAIT
            return State.IDLE

        if has_active:
            return State.COOLDOWN_WAIT
        if has_activatable and await confirm(
            self.terminal, self.keys, "You have no active roles. Activate instead?"
        ):
            return State.SELECT_ACTIVATE
        return State.IDLE

    async def _select_activate(self) -> State:
        if not self.ctx.activatable:
            await acknowledge(
                self.terminal,
                self.keys,
                "Activate roles",
                self._notices() + ["No roles are available for activation."],
            )
            return State.IDLE

        roles = self.ctx.activatable
        menu = SelectionMenu(
            "Select roles to activate",
            [MenuItem(role.name, ref=role) for role in roles],
            multi=True,
            preselected=self.ctx.preselected,
            notice=self._notices(),
        )
        result = await menu.run(self.terminal, self.keys)
        if result.outcome is MenuOutcome.REFRESH:
            self.ctx.preselected = ()
            await self._refresh()
            return State.SELECT_ACTIVATE
        if result.outcome is not MenuOutcome.CONFIRMED:
            self.ctx.reset_selection()
            self.ctx.show_action_menu = True
            return State.CHOOSE_ACTION
        if not result.indices:
            self.ctx.selection_notice = "Select at least one role with Space."
            return State.SELECT_ACTIVATE

        self.ctx.preselected = result.indices
        self.ctx.to_activate = [roles[index] for index in result.indices]
        return State.ENTER_DURATION

    async def _enter_duration(self) -> State:
        text = await prompt_text(
            self.terminal,
            self.keys,
            "Activation duration",
            "Duration (e.g. 2H30M, 1H, 45M)",
            default=self.default_duration,
            context=[f"  - {role.name}" for role in self.ctx.to_activate],
        )
        if text is None:
            return State.SELECT_ACTIVATE
        try:
            self.ctx.duration = parse_duration(text)
        except DurationError as exc:
            # Back to the role list, keeping what was ticked
            self.ctx.selection_notice = str(exc)
            return State.SELECT_ACTIVATE
        return State.ENTER_JUSTIFICATION

    async def _enter_justification(self) -> State:
        text = await prompt_text(
            self.terminal,
            self.keys,
            "Justification",
            "Reason for activation",
            context=[
                f"  - {role.name}" for role in self.ctx.to_activate
            ] + [f"Duration: {describe_duration(self.ctx.duration or timedelta(0))}"],
            validate=lambda value: None if value else "A justification is required.",
        )
        if text is None:
            return State.ENTER_DURATION
        self.ctx.justification = text
        return State.SUBMIT_ACTIVATE

    async def _submit_activate(self) -> State:
        self._show_progress(f"Activating {len(self.ctx.to_activate)} role(s)...")
        self.ctx.report = await self.submitter.activate(
            self.principal,
            self.ctx.to_activate,
            self.ctx.duration or MINIMUM_ACTIVE_DURATION,
            self.ctx.justification or "",
        )
        return State.REPORT

    async def _cooldown_wait(self) -> State:
        partition = self._repartition()
        if not partition.cooling_down:
            return State.SELECT_DEACTIVATE

        notice = [
            f"Roles must stay active for {_COOLDOWN_MINUTES} minutes before they can be deactivated.",
            f"{len(partition.ready)} role(s) can be deactivated now. Press Enter to continue with those.",
        ]
        menu = CountdownMenu(
            "Waiting for the minimum activation time",
            [MenuItem(role.name, ref=role, expires_at=role.ready_at) for role in partition.cooling_down],
            selectable=False,
            countdown_label="deactivatable in",
            expired_label="ready",
            notice=self._notices() + notice,
            clock=self.clock,
        )
        result = await menu.run(self.terminal, self.keys)
        if result.outcome is MenuOutcome.REFRESH:
            await self._refresh()
            return State.COOLDOWN_WAIT
        if result.outcome is MenuOutcome.CANCELLED:
            self.ctx.show_action_menu = True
            return State.CHOOSE_ACTION
        return State.SELECT_DEACTIVATE

    async def _select_deactivate(self) -> State:
        partition = self._repartition()
        now = self.clock()
        ready = [
            role for role in partition.ready if role.expires_at is None or role.expires_at > now
        ]
        if partition.ready and not ready and not partition.cooling_down:
            return await self._all_expired()
        if not ready:
            lines = self._notices() + ["No roles can be deactivated yet."]
            lines += [f"  - {role.name}" for role in partition.cooling_down]
            await acknowledge(self.terminal, self.keys, "Deactivate roles", lines)
            self.ctx.show_action_menu = True
            return State.CHOOSE_ACTION

        notice = self._notices()
        if partition.cooling_down:
            notice.append(
                f"{len(partition.cooling_down)} more role(s) are still in the "
                f"{_COOLDOWN_MINUTES}-minute minimum activation period."
            )
        menu = CountdownMenu(
            "Select roles to deactivate",
            [MenuItem(role.name, ref=role, expires_at=role.expires_at) for role in ready],
            multi=True,
            notice=notice,
            clock=self.clock,
        )
        result = await menu.run(self.terminal, self.keys)
        if result.outcome is MenuOutcome.ALL_EXPIRED:
            if partition.cooling_down:
                return State.COOLDOWN_WAIT
            return await self._all_expired()
        if result.outcome is MenuOutcome.REFRESH:
            await self._refresh()
            return State.SELECT_DEACTIVATE
        if result.outcome is MenuOutcome.CANCELLED:
            self.ctx.reset_selection()
            self.ctx.show_action_menu = True
            return State.CHOOSE_ACTION
        if not result.indices:
            self.ctx.selection_notice = "Select at least one role with Space."
            return State.SELECT_DEACTIVATE

        self.ctx.to_deactivate = [ready[index] for index in result.indices]
        return State.SUBMIT_DEACTIVATE

    async def _all_expired(self) -> State:
        await self._refresh()
        if await confirm(
            self.terminal, self.keys, "All of these roles have already expired. Activate roles instead?"
        ):
            return State.SELECT_ACTIVATE
        return State.IDLE

    async def _submit_deactivate(self) -> State:
        self._show_progress(f"Deactivating {len(self.ctx.to_deactivate)} role(s)...")
        self.ctx.report = await self.submitter.deactivate(self.principal, self.ctx.to_deactivate)
        return State.REPORT

    async def _report(self) -> State:
        report = self.ctx.report
        lines = report_lines(report) if report is not None else []
        self.ctx.reset_selection()
        if await confirm(self.terminal, self.keys, "Manage more roles?", notice=lines):
            self.ctx.show_action_menu = False
            return State.CHOOSE_ACTION
        return State.IDLE

    async def _idle(self) -> State:
        await acknowledge(
            self.terminal,
            self.keys,
            "Done",
            ["No further changes. Press Enter or Ctrl+Q to exit."],
        )
        return State.DONE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _repartition(self) -> DeactivationPartition:
        """Re-apply the cool-down rule to already resolved roles at the current time."""
        now = self.clock()
        partition = DeactivationPartition()
        for role in self.ctx.partition.ready + self.ctx.partition.cooling_down:
            if is_deactivatable(role.activated_at, now):
                partition.ready.append(role)
            else:
                partition.cooling_down.append(role)
        self.ctx.partition = partition
        return partition

    def _show_progress(self, message: str) -> None:
        self.terminal.reset()
        self.terminal.render([message])


def report_lines(report: SubmissionReport) -> list[str]:
    verb = "Activation" if report.action is ScheduleAction.ACTIVATE else "Deactivation"
    lines = [
        f"{verb}: {report.succeeded} succeeded, {report.skipped} skipped, {report.failed} failed",
        "",
    ]
    for outcome in report.outcomes:
        if outcome.status is OutcomeStatus.SUCCEEDED:
            lines.append(style(f"  OK    {outcome.role_name}", GREEN))
        elif outcome.status is OutcomeStatus.SKIPPED:
            lines.append(style(f"  SKIP  {outcome.role_name}: {outcome.message}", YELLOW))
        else:
            lines.append(style(f"  FAIL  {outcome.role_name}: {outcome.message}", RED))
    return lines
