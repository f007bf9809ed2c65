from __future__ import annotations

import asyncio
import codecs
import os
import sys
import termios
import tty
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class Key(Enum):
    UP = "up"
    DOWN = "down"
    SPACE = "space"
    ENTER = "enter"
    ESCAPE = "escape"
    BACKSPACE = "backspace"
    CHAR = "char"
    EXIT = "exit"
    SELECT_ALL = "select_all"
    DESELECT_ALL = "deselect_all"
    REFRESH = "refresh"


@dataclass(frozen=True)
class KeyEvent:
    key: Key
    char: str = ""


class ExitRequested(Exception):
    """The user pressed the exit shortcut; unwinds every menu and prompt."""


class KeySource(Protocol):
    async def next_key(self, timeout: float | None = None) -> KeyEvent | None:
        """Return the next key, or None once ``timeout`` seconds pass without one."""
        ...


_CONTROL_KEYS = {
    "\r": Key.ENTER,
    "\n": Key.ENTER,
    "\x7f": Key.BACKSPACE,
    "\b": Key.BACKSPACE,
    "\x03": Key.EXIT,  # Ctrl+C
    "\x11": Key.EXIT,  # Ctrl+Q
    "\x01": Key.SELECT_ALL,  # Ctrl+A
    "\x04": Key.DESELECT_ALL,  # Ctrl+D
    "\x12": Key.REFRESH,  # Ctrl+R
}

_ARROWS = {"A": Key.UP, "B": Key.DOWN}


def parse_keys(buffer: str) -> list[KeyEvent]:
    """Turn a chunk of raw terminal input into key events.

    Escape sequences are expected to arrive whole within one read; an ESC
    with nothing after it is the Escape key.
    """
    events: list[KeyEvent] = []
    i = 0
    length = len(buffer)
    while i < length:
        c = buffer[i]
        if c == "\r" and i + 1 < length and buffer[i + 1] == "\n":
            events.append(KeyEvent(Key.ENTER))
            i += 2
            continue
        if c in _CONTROL_KEYS:
            events.append(KeyEvent(_CONTROL_KEYS[c]))
            i += 1
            continue
        if c == "\x1b":
            if i + 1 >= length:
                events.append(KeyEvent(Key.ESCAPE))
                i += 1
                continue
            lead = buffer[i + 1]
            # SS3 arrows: ESC O A/B/C/D
            if lead == "O" and i + 2 < length:
                key = _ARROWS.get(buffer[i + 2])
                if key is not None:
                    events.append(KeyEvent(key))
                i += 3
                continue
            # CSI: ESC [ params final
            if lead == "[":
                j = i + 2
                while j < length and not ("@" <= buffer[j] <= "~"):
                    j += 1
                if j >= length:
                    i = length
                    continue
                params, final = buffer[i + 2 : j], buffer[j]
                if final in _ARROWS:
                    events.append(KeyEvent(_ARROWS[final]))
                elif final == "~" and params == "15":  # F5
                    events.append(KeyEvent(Key.REFRESH))
                i = j + 1
                continue
            events.append(KeyEvent(Key.ESCAPE))
            i += 1
            continue
        if c == " ":
            events.append(KeyEvent(Key.SPACE, " "))
        elif c.isprintable():
            events.append(KeyEvent(Key.CHAR, c))
        i += 1
    return events


class KeyboardInput:
    """Feeds terminal keystrokes into a queue as they arrive.

    The terminal is switched to cbreak mode with signal keys and flow
    control disabled, so Ctrl+C and Ctrl+Q reach the application as the
    exit shortcut. A reader callback on the event loop parses input and
    enqueues events; menus consume them with a timeout matching their
    redraw cadence.
    """

    def __init__(self, stream=None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self._queue: asyncio.Queue[KeyEvent] = asyncio.Queue()
        self._fd: int = -1
        self._saved: list | None = None
        self._reading = False
        # Multi-byte characters can straddle two reads.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")

    async def __aenter__(self) -> KeyboardInput:
        self._fd = self._stream.fileno()
        self._saved = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)
        attrs = termios.tcgetattr(self._fd)
        attrs[0] &= ~(termios.IXON | termios.ICRNL)
        attrs[3] &= ~termios.ISIG
        termios.tcsetattr(self._fd, termios.TCSANOW, attrs)
        asyncio.get_running_loop().add_reader(self._fd, self._on_readable)
        self._reading = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self._stop_reading()
        if self._saved is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)

    def _on_readable(self) -> None:
        self.feed(os.read(self._fd, 1024))

    def _stop_reading(self) -> None:
        if self._reading:
            asyncio.get_running_loop().remove_reader(self._fd)
            self._reading = False

    def feed(self, data: bytes) -> None:
        """Queue the key events in one read of raw input.

        An empty read means the input stream closed; that is treated as the
        exit shortcut so menus waiting on a key are not left hanging.
        """
        if not data:
            self._stop_reading()
            self._queue.put_nowait(KeyEvent(Key.EXIT))
            return
        for event in parse_keys(self._decoder.decode(data)):
            self._queue.put_nowait(event)

    async def next_key(self, timeout: float | None = None) -> KeyEvent | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
