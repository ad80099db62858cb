"""Single-shot correlators between subprocess output lines and an awaiting caller.

A waiter is installed in the supervisor's output-handler slot, fed stdout lines
one at a time, and awaited by whoever installed it. Once a waiter reports
``done`` the supervisor detaches it in the same critical section that
delivered the line, so feeding a completed waiter is always a defect.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Generic, List, Optional, TypeVar

from .errors import WaiterProtocolError

SERVER_READY = "DoomServerReady"
CONSOLE_READY = "DoomConsoleReady"
CONSOLE_RESULT_END = "DoomConsoleResultEnd"
CONSOLE_READY_PROBE = f"echo {CONSOLE_READY}"

T = TypeVar("T")


class Waiter(Generic[T]):
    def __init__(self) -> None:
        self._done = asyncio.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def feed(self, line: str) -> None:
        if self.done:
            raise WaiterProtocolError(f"{type(self).__name__} received a line after completion: {line!r}")
        self._on_line(line)

    def _on_line(self, line: str) -> None:
        raise NotImplementedError

    def _complete(self) -> None:
        self._done.set()

    def result(self) -> T:
        raise NotImplementedError

    async def wait(self, timeout: Optional[float]) -> T:
        if self.done:
            return self.result()
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"{type(self).__name__} did not complete within {timeout}s") from None
        return self.result()


class ServerInitWaiter(Waiter[None]):
    """Completes once the server is up and its console echoes input back.

    On ``DoomServerReady`` the probe line is written to the server's stdin; the
    matching ``DoomConsoleReady`` echo completes the wait.
    """

    def __init__(self, write_line: Callable[[str], None]) -> None:
        super().__init__()
        self._write_line = write_line
        self.probe_sent = False

    def _on_line(self, line: str) -> None:
        if self.probe_sent and CONSOLE_READY in line:
            self._complete()
        elif not self.probe_sent and SERVER_READY in line:
            self.probe_sent = True
            self._write_line(CONSOLE_READY_PROBE)

    def result(self) -> None:
        return None


class ConsoleResultWaiter(Waiter[List[str]]):
    """Collects console output up to the result terminator line."""

    def __init__(self) -> None:
        super().__init__()
        self._lines: List[str] = []

    def _on_line(self, line: str) -> None:
        if CONSOLE_RESULT_END in line:
            self._complete()
        else:
            self._lines.append(line)

    def result(self) -> List[str]:
        return list(self._lines)
