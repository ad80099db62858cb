from dataclasses import dataclass, field
import asyncio
from typing import Optional, List, Tuple
from asyncio import Queue as AsyncQueue

StdinItem = Tuple[str, Optional[asyncio.Future]]


@dataclass
class ProcessHandle:
    """State for the supervised server: live pipes plus their worker tasks."""
    process: asyncio.subprocess.Process
    stdin_queue: AsyncQueue = field(default_factory=AsyncQueue)
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    stdout_reader: Optional[asyncio.Task] = None
    stderr_reader: Optional[asyncio.Task] = None
    stdin_writer: Optional[asyncio.Task] = None
    exit_watcher: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None and not self.stop.is_set()

    def tasks(self) -> List[asyncio.Task]:
        return [
            t for t in (self.stdout_reader, self.stderr_reader, self.stdin_writer, self.exit_watcher)
            if t is not None
        ]
