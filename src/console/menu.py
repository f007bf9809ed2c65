from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from console.keys import ExitRequested, Key, KeyEvent, KeySource
from console.terminal import BOLD, CYAN, DIM, GREEN, YELLOW, Terminal, style

TICK_SECONDS = 1.0


class MenuOutcome(Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    # Caller should drop cached role data and show the menu again.
    REFRESH = "refresh"
    # Every countdown in the menu has run out.
    ALL_EXPIRED = "all_expired"


@dataclass(frozen=True)
class MenuResult:
    outcome: MenuOutcome
    indices: tuple[int, ...] = ()

    @property
    def confirmed(self) -> bool:
        return self.outcome is MenuOutcome.CONFIRMED


@dataclass(frozen=True)
class MenuItem:
    label: str
    ref: Any = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class RoleViewModel:
    role_name: str
    countdown_text: str
    ref: Any
    selected: bool


def format_countdown(remaining: timedelta) -> str:
    seconds = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {seconds:02d}s"
    return f"{minutes}m {seconds:02d}s"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SelectionMenu:
    """Keyboard driven list with single (radio) or multi (checkbox) selection.

    ``run`` returns a :class:`MenuResult`; the exit shortcut raises
    :class:`ExitRequested` instead of returning.
    """

    tick: float | None = None

    def __init__(
        self,
        title: str,
        items: Sequence[MenuItem],
        *,
        multi: bool = False,
        preselected: Iterable[int] = (),
        notice: Sequence[str] = (),
        allow_refresh: bool = True,
    ) -> None:
        self.title = title
        self.items = list(items)
        self.multi = multi
        self.notice = list(notice)
        self.allow_refresh = allow_refresh
        self.current_index = 0
        self.selected = [False] * len(self.items)
        for index in preselected:
            if 0 <= index < len(self.items):
                self.selected[index] = True

    # --- rendering ---------------------------------------------------

    def view_models(self) -> list[RoleViewModel]:
        return [
            RoleViewModel(
                role_name=item.label,
                countdown_text=self.countdown_text(item),
                ref=item.ref,
                selected=self.selected[index],
            )
            for index, item in enumerate(self.items)
        ]

    def countdown_text(self, item: MenuItem) -> str:
        return ""

    def frame(self) -> list[str]:
        lines = [style(self.title, BOLD, CYAN), ""]
        lines.extend(self.notice)
        if self.notice:
            lines.append("")
        for index, view in enumerate(self.view_models()):
            pointer = ">" if index == self.current_index else " "
            if self.multi:
                box = "[x]" if view.selected else "[ ]"
            else:
                box = "(*)" if view.selected else "( )"
            line = f"{pointer} {box} {view.role_name}"
            if view.countdown_text:
                line += "  " + style(view.countdown_text, DIM)
            if index == self.current_index:
                line = style(line, BOLD)
            lines.append(line)
        lines.append("")
        lines.append(style(self.hint_bar(), DIM))
        return lines

    def hint_bar(self) -> str:
        hints = ["Up/Down move", "Space select"]
        if self.multi:
            hints += ["Ctrl+A all", "Ctrl+D none"]
        if self.allow_refresh:
            hints.append("Ctrl+R refresh")
        hints += ["Enter confirm", "Esc back", "Ctrl+Q exit"]
        return "  ".join(hints)

    # --- input -------------------------------------------------------

    def handle(self, event: KeyEvent) -> MenuResult | None:
        key = event.key
        if key is Key.EXIT:
            raise ExitRequested()
        if not self.items:
            if key is Key.ESCAPE or key is Key.ENTER:
                return MenuResult(MenuOutcome.CANCELLED)
            if key is Key.REFRESH and self.allow_refresh:
                return MenuResult(MenuOutcome.REFRESH)
            return None

        if key is Key.UP:
            self.current_index = (self.current_index - 1) % len(self.items)
        elif key is Key.DOWN:
            self.current_index = (self.current_index + 1) % len(self.items)
        elif key is Key.SPACE:
            self.toggle(self.current_index)
        elif key is Key.SELECT_ALL and self.multi:
            self.selected = [True] * len(self.items)
        elif key is Key.DESELECT_ALL and self.multi:
            self.selected = [False] * len(self.items)
        elif key is Key.REFRESH and self.allow_refresh:
            return MenuResult(MenuOutcome.REFRESH)
        elif key is Key.ESCAPE:
            return MenuResult(MenuOutcome.CANCELLED)
        elif key is Key.ENTER:
            return self.confirm()
        return None

    def toggle(self, index: int) -> None:
        if self.multi:
            self.selected[index] = not self.selected[index]
        else:
            self.selected = [False] * len(self.items)
            self.selected[index] = True

    def confirm(self) -> MenuResult:
        chosen = tuple(index for index, flag in enumerate(self.selected) if flag)
        if not self.multi and not chosen:
            chosen = (self.current_index,)
        return MenuResult(MenuOutcome.CONFIRMED, chosen)

    def finished(self) -> MenuResult | None:
        """Checked before every redraw; a result ends the menu without input."""
        return None

    async def run(self, terminal: Terminal, keys: KeySource) -> MenuResult:
        terminal.reset()
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.tick if self.tick else None
        while True:
            result = self.finished()
            if result is not None:
                return result
            terminal.render(self.frame())

            timeout = None
            if next_tick is not None:
                timeout = max(0.0, next_tick - loop.time())
            event = await keys.next_key(timeout)
            if event is None:
                if next_tick is not None:
                    next_tick = loop.time() + self.tick
                continue
            result = self.handle(event)
            if result is not None:
                return result


class CountdownMenu(SelectionMenu):
    """Selection menu whose items count down to their expiration.

    Countdown text is recomputed every tick and only changed rows are
    redrawn. Once every item has expired the menu ends with
    ``ALL_EXPIRED`` rather than showing a list of dead entries.

    With ``selectable=False`` the list is informational: Space does
    nothing and Enter confirms with no indices.
    """

    tick = TICK_SECONDS

    def __init__(
        self,
        title: str,
        items: Sequence[MenuItem],
        *,
        multi: bool = False,
        preselected: Iterable[int] = (),
        notice: Sequence[str] = (),
        allow_refresh: bool = True,
        selectable: bool = True,
        countdown_label: str = "expires in",
        expired_label: str = "expired",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(
            title,
            items,
            multi=multi,
            preselected=preselected,
            notice=notice,
            allow_refresh=allow_refresh,
        )
        self.selectable = selectable
        self.countdown_label = countdown_label
        self.expired_label = expired_label
        self._clock = clock

    def remaining(self, item: MenuItem) -> timedelta | None:
        if item.expires_at is None:
            return None
        return item.expires_at - self._clock()

    def countdown_text(self, item: MenuItem) -> str:
        remaining = self.remaining(item)
        if remaining is None:
            return ""
        if remaining <= timedelta(0):
            return style(self.expired_label, GREEN)
        return style(f"{self.countdown_label} {format_countdown(remaining)}", YELLOW)

    def all_expired(self) -> bool:
        if not self.items:
            return False
        remaining = [self.remaining(item) for item in self.items]
        return all(r is not None and r <= timedelta(0) for r in remaining)

    def finished(self) -> MenuResult | None:
        if self.all_expired():
            return MenuResult(MenuOutcome.ALL_EXPIRED)
        return None

    def hint_bar(self) -> str:
        if self.selectable:
            return super().hint_bar()
        hints = ["Enter skip", "Esc back"]
        if self.allow_refresh:
            hints.append("Ctrl+R refresh")
        hints.append("Ctrl+Q exit")
        return "  ".join(hints)

    def frame(self) -> list[str]:
        if self.selectable:
            return super().frame()
        lines = [style(self.title, BOLD, CYAN), ""]
        lines.extend(self.notice)
        if self.notice:
            lines.append("")
        for view in self.view_models():
            lines.append(f"  - {view.role_name}  {view.countdown_text}")
        lines.append("")
        lines.append(style(self.hint_bar(), DIM))
        return lines

    def handle(self, event: KeyEvent) -> MenuResult | None:
        if self.selectable:
            return super().handle(event)
        if event.key is Key.EXIT:
            raise ExitRequested()
        if event.key is Key.ENTER:
            return MenuResult(MenuOutcome.CONFIRMED)
        if event.key is Key.ESCAPE:
            return MenuResult(MenuOutcome.CANCELLED)
        if event.key is Key.REFRESH and self.allow_refresh:
            return MenuResult(MenuOutcome.REFRESH)
        return None
