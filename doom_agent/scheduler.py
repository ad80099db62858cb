from __future__ import annotations

import asyncio
import logging
from asyncio import Queue as AsyncQueue
from typing import Awaitable, Callable, List, Optional

from .messages import ConsoleBuffer, Message

logger = logging.getLogger(__name__)

CONSOLE_BUFFER_CAPACITY = 1000
CONSOLE_PUMP_PERIOD = 0.5


def new_output_queue(capacity: int = CONSOLE_BUFFER_CAPACITY) -> AsyncQueue:
    """Bounded stdout capture; the stdout reader blocks while it is full."""
    return AsyncQueue(maxsize=capacity)


class ConsoleOutputScheduler:
    """Forwards captured server output to the controller at a fixed rate."""

    def __init__(
        self,
        queue: AsyncQueue,
        send: Callable[[Message], Awaitable[None]],
        *,
        period: float = CONSOLE_PUMP_PERIOD,
        batch_limit: int = CONSOLE_BUFFER_CAPACITY,
    ) -> None:
        self.queue = queue
        self.period = period
        self.batch_limit = batch_limit
        self._send = send
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def drain(self) -> List[str]:
        batch: List[str] = []
        while len(batch) < self.batch_limit:
            try:
                batch.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def tick(self) -> Optional[ConsoleBuffer]:
        batch = self.drain()
        if not batch:
            return None
        message = ConsoleBuffer(lines=batch)
        await self._send(message)
        return message

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while True:
            try:
                await self.tick()
            except Exception:
                # A failed tick must not end the schedule.
                logger.exception("Console output tick failed")
            next_at += self.period
            delay = next_at - loop.time()
            if delay < 0:
                # Fell behind (slow send); skip the missed slots.
                next_at = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
