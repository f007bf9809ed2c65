from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from datetime import timedelta

from console.keys import ExitRequested, Key, KeySource
from console.menu import MenuItem, MenuOutcome, SelectionMenu
from console.terminal import BOLD, CYAN, DIM, RED, Terminal, style
from directory.models import MAXIMUM_ACTIVE_DURATION, MINIMUM_ACTIVE_DURATION

_DURATION_RE = re.compile(r"^(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?$", re.IGNORECASE)
_MAXIMUM_MINUTES = int(MAXIMUM_ACTIVE_DURATION.total_seconds() // 60)


class DurationError(ValueError):
    pass


class DurationFormatError(DurationError):
    """The text is not an hours/minutes duration such as 2H30M."""


class DurationTooShortError(DurationError):
    """The duration parsed but is below the minimum activation time."""


class DurationTooLongError(DurationError):
    """The duration parsed but exceeds the longest activation the directory grants."""


def parse_duration(text: str) -> timedelta:
    """Parse compact durations: ``2H30M``, ``45M``, ``1H`` (case-insensitive)."""
    compact = re.sub(r"\s+", "", text or "")
    match = _DURATION_RE.match(compact)
    if not compact or match is None or not any(match.groupdict().values()):
        raise DurationFormatError(
            f"'{text}' is not a valid duration. Use hours and/or minutes, e.g. 2H30M, 1H or 45M."
        )
    # Compare whole minutes before building a timedelta; huge inputs overflow it.
    hours = (match.group("hours") or "").lstrip("0") or "0"
    minutes = (match.group("minutes") or "").lstrip("0") or "0"
    too_many_digits = max(len(hours), len(minutes)) > 6
    total_minutes = 0 if too_many_digits else int(hours) * 60 + int(minutes)
    if too_many_digits or total_minutes > _MAXIMUM_MINUTES:
        raise DurationTooLongError(
            f"Duration must be at most {_MAXIMUM_MINUTES // 60} hours (got {text})."
        )
    duration = timedelta(minutes=total_minutes)
    if duration < MINIMUM_ACTIVE_DURATION:
        minimum = int(MINIMUM_ACTIVE_DURATION.total_seconds() // 60)
        raise DurationTooShortError(
            f"Duration must be at least {minimum} minutes (got {text})."
        )
    return duration


async def prompt_text(
    terminal: Terminal,
    keys: KeySource,
    title: str,
    label: str,
    *,
    default: str = "",
    context: Sequence[str] = (),
    error: str | None = None,
    validate: Callable[[str], str | None] | None = None,
) -> str | None:
    """Line editor. Returns the entered text, or None when the user backs out.

    ``validate`` returns an error message to show, or None to accept.
    """
    buffer = default
    terminal.reset()
    while True:
        lines = [style(title, BOLD, CYAN), ""]
        lines.extend(context)
        if context:
            lines.append("")
        lines.append(f"{label}: {buffer}_")
        lines.append(style(error, RED) if error else "")
        lines.append(style("Enter confirm  Backspace delete  Esc back  Ctrl+Q exit", DIM))
        terminal.render(lines)

        event = await keys.next_key()
        if event is None:
            continue
        if event.key is Key.EXIT:
            raise ExitRequested()
        if event.key is Key.ESCAPE:
            return None
        if event.key is Key.BACKSPACE:
            buffer = buffer[:-1]
        elif event.key in (Key.CHAR, Key.SPACE):
            buffer += event.char
        elif event.key is Key.ENTER:
            value = buffer.strip()
            error = validate(value) if validate is not None else None
            if error is None:
                return value


async def confirm(
    terminal: Terminal,
    keys: KeySource,
    question: str,
    *,
    notice: Sequence[str] = (),
    default_yes: bool = True,
) -> bool:
    """Yes/No question; backing out counts as No."""
    while True:
        menu = SelectionMenu(
            question,
            [MenuItem("Yes", ref=True), MenuItem("No", ref=False)],
            notice=notice,
            allow_refresh=False,
        )
        if not default_yes:
            menu.current_index = 1
        result = await menu.run(terminal, keys)
        if result.outcome is MenuOutcome.CONFIRMED:
            return bool(menu.items[result.indices[0]].ref)
        if result.outcome is MenuOutcome.CANCELLED:
            return False


async def acknowledge(
    terminal: Terminal, keys: KeySource, title: str, lines: Sequence[str]
) -> None:
    """Show a message until Enter or Esc is pressed."""
    terminal.reset()
    frame = [style(title, BOLD, CYAN), ""]
    frame.extend(lines)
    frame.append("")
    frame.append(style("Enter continue  Ctrl+Q exit", DIM))
    terminal.render(frame)
    while True:
        event = await keys.next_key()
        if event is None:
            continue
        if event.key is Key.EXIT:
            raise ExitRequested()
        if event.key in (Key.ENTER, Key.ESCAPE):
            return
