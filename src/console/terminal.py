from __future__ import annotations

import re
import sys

CSI = "\x1b["
RESET = "\x1b[0m"
BOLD = "\x1b[1m"
DIM = "\x1b[2m"
REVERSE = "\x1b[7m"
RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
CYAN = "\x1b[36m"

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def style(text: str, *codes: str) -> str:
    if not codes:
        return text
    return "".join(codes) + text + RESET


class Terminal:
    """Cursor-addressed screen writer that only repaints changed rows."""

    def __init__(self, stream=None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._frame: list[str] = []
        self._fresh = True

    @property
    def last_frame(self) -> list[str]:
        """Rows of the most recent frame with styling removed."""
        return [strip_ansi(line) for line in self._frame]

    def write(self, text: str) -> None:
        self._stream.write(text)
        self._stream.flush()

    def reset(self) -> None:
        """Forget the previous frame; the next render clears the screen."""
        self._frame = []
        self._fresh = True

    def render(self, lines: list[str]) -> None:
        out: list[str] = []
        if self._fresh:
            out.append(f"{CSI}H{CSI}2J")
            self._fresh = False

        for row, line in enumerate(lines):
            if row < len(self._frame) and self._frame[row] == line:
                continue
            out.append(f"{CSI}{row + 1};1H{CSI}2K{line}")

        for row in range(len(lines), len(self._frame)):
            out.append(f"{CSI}{row + 1};1H{CSI}2K")

        self._frame = list(lines)
        if out:
            self.write("".join(out))

    def hide_cursor(self) -> None:
        self.write(f"{CSI}?25l")

    def show_cursor(self) -> None:
        self.write(f"{CSI}?25h")

    def release(self) -> None:
        """Leave the screen usable for plain output after the UI ends."""
        self.write(f"{CSI}{len(self._frame) + 1};1H{RESET}")
        self.show_cursor()
