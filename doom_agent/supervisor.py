from __future__ import annotations

import asyncio
import logging
import shlex
from asyncio import Queue as AsyncQueue
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .errors import ServerNotRunningError, WaiterProtocolError
from .files import materialize_files
from .handle import ProcessHandle
from .messages import ServerConfiguration
from .shutdown import ShutdownPolicy, terminate_process_tree
from .waiters import ConsoleResultWaiter, ServerInitWaiter, Waiter

logger = logging.getLogger(__name__)

INIT_TIMEOUT = 60.0
CONSOLE_TIMEOUT = 30.0
# asyncio's default of 64 KiB is too small for some engines' map dumps.
STREAM_LIMIT = 1024 * 1024


def _decode_line(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class ProcessSupervisor:
    """Launches one game server and drives its console over stdio.

    stdout lines go to the installed output handler (a waiter), then to
    ``output_queue`` for the console scheduler. stderr lines are only logged.
    """

    def __init__(
        self,
        executable: Union[str, Path],
        work_dir: Union[str, Path],
        *,
        output_queue: Optional[AsyncQueue] = None,
        init_timeout: float = INIT_TIMEOUT,
        console_timeout: float = CONSOLE_TIMEOUT,
        shutdown_policy: Optional[ShutdownPolicy] = None,
    ) -> None:
        self.executable = Path(executable)
        self.work_dir = Path(work_dir)
        self.output_queue = output_queue
        self.init_timeout = init_timeout
        self.console_timeout = console_timeout
        self.shutdown_policy = shutdown_policy or ShutdownPolicy()

        self._handle: Optional[ProcessHandle] = None
        self._started = False
        self._handler: Optional[Waiter] = None
        self._handler_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Introspection

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.alive

    @property
    def pid(self) -> Optional[int]:
        return self._handle.pid if self._handle else None

    @property
    def returncode(self) -> Optional[int]:
        return self._handle.process.returncode if self._handle else None

    # ------------------------------------------------------------------
    # Output handler slot

    async def _install(self, handler: Waiter) -> None:
        async with self._handler_lock:
            if self._handler is not None:
                raise RuntimeError(f"cannot install {type(handler).__name__}: another output handler is active")
            self._handler = handler

    async def _detach(self, handler: Waiter) -> None:
        async with self._handler_lock:
            if self._handler is handler:
                self._handler = None

    async def _deliver(self, line: str) -> None:
        async with self._handler_lock:
            handler = self._handler
            if handler is None:
                return
            try:
                handler.feed(line)
            except WaiterProtocolError:
                logger.exception("Output handler protocol violation; detaching %s", type(handler).__name__)
                self._handler = None
                return
            if handler.done:
                self._handler = None

    # ------------------------------------------------------------------
    # Workers

    async def _pump_stdout(self, handle: ProcessHandle) -> None:
        reader = handle.process.stdout
        while True:
            try:
                raw = await reader.readline()
            except ValueError:
                logger.warning("Dropped an oversized stdout line from pid=%s", handle.pid)
                continue
            if not raw:
                break
            line = _decode_line(raw)
            logger.debug("[stdout] %s", line)
            await self._deliver(line)
            if self.output_queue is not None:
                await self.output_queue.put(line)
        logger.debug("stdout of pid=%s closed", handle.pid)

    async def _pump_stderr(self, handle: ProcessHandle) -> None:
        reader = handle.process.stderr
        while True:
            try:
                raw = await reader.readline()
            except ValueError:
                logger.warning("Dropped an oversized stderr line from pid=%s", handle.pid)
                continue
            if not raw:
                break
            logger.warning("[stderr] %s", _decode_line(raw))

    async def _pump_stdin(self, handle: ProcessHandle) -> None:
        stdin = handle.process.stdin
        while True:
            line, fut = await handle.stdin_queue.get()
            try:
                stdin.write((line + "\n").encode("utf-8"))
                # Flush every line; the server blocks on input it cannot see.
                await stdin.drain()
            except OSError as exc:
                logger.warning("stdin of pid=%s is closed: %s", handle.pid, exc)
                error = ServerNotRunningError(f"server stdin is closed: {exc}")
                if fut is not None and not fut.done():
                    fut.set_exception(error)
                self._fail_pending_writes(handle, error)
                return
            if fut is not None and not fut.done():
                fut.set_result(None)

    async def _watch_exit(self, handle: ProcessHandle) -> None:
        code = await handle.process.wait()
        if handle.stop.is_set():
            logger.info("Server pid=%s stopped with code %s", handle.pid, code)
        else:
            logger.warning("Server pid=%s exited with code %s", handle.pid, code)

    def _fail_pending_writes(self, handle: ProcessHandle, error: BaseException) -> None:
        while not handle.stdin_queue.empty():
            _, fut = handle.stdin_queue.get_nowait()
            if fut is not None and not fut.done():
                fut.set_exception(error)

    # ------------------------------------------------------------------
    # stdin

    def _enqueue_line(self, line: str) -> None:
        handle = self._handle
        if handle is None:
            raise ServerNotRunningError("server is not running")
        handle.stdin_queue.put_nowait((line, None))

    async def _write_lines(self, handle: ProcessHandle, lines: Iterable[str]) -> None:
        loop = asyncio.get_running_loop()
        for line in lines:
            if handle.stdin_writer is None or handle.stdin_writer.done():
                raise ServerNotRunningError("server stdin is closed")
            fut = loop.create_future()
            handle.stdin_queue.put_nowait((line, fut))
            await fut

    # ------------------------------------------------------------------
    # Public API

    async def run(self, configuration: ServerConfiguration) -> None:
        """Write configs, start the server, and wait until its console answers."""
        if self._started:
            raise RuntimeError("this supervisor has already started a server")
        self._started = True

        await materialize_files(self.work_dir, configuration.configs)

        argv = [str(self.executable), *configuration.command_line]
        logger.info("Starting server: %s (cwd=%s)", shlex.join(argv), self.work_dir)
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(self.work_dir),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
            limit=STREAM_LIMIT,
        )
        handle = ProcessHandle(process=proc)
        self._handle = handle

        waiter = ServerInitWaiter(self._enqueue_line)
        # Installed before the reader starts so the ready line cannot be missed.
        await self._install(waiter)
        handle.stdin_writer = asyncio.create_task(self._pump_stdin(handle))
        handle.stdout_reader = asyncio.create_task(self._pump_stdout(handle))
        handle.stderr_reader = asyncio.create_task(self._pump_stderr(handle))
        handle.exit_watcher = asyncio.create_task(self._watch_exit(handle))

        try:
            await waiter.wait(self.init_timeout)
        finally:
            await self._detach(waiter)
        logger.info("Server pid=%s is ready", proc.pid)

    async def execute_console(self, command_lines: Iterable[str]) -> List[str]:
        """Send console lines and return output up to the result terminator.

        The command batch must make the server print ``DoomConsoleResultEnd``.
        Writing and collecting share one ``console_timeout`` window. Calls must
        not overlap with each other or with ``run``.
        """
        handle = self._handle
        if handle is None or not handle.alive:
            raise ServerNotRunningError("server is not running")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.console_timeout
        lines = list(command_lines)
        waiter = ConsoleResultWaiter()
        await self._install(waiter)
        try:
            try:
                await asyncio.wait_for(self._write_lines(handle, lines), timeout=max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError:
                raise TimeoutError(f"server did not accept console input within {self.console_timeout}s") from None
            return await waiter.wait(max(0.0, deadline - loop.time()))
        finally:
            await self._detach(waiter)

    async def stop(self) -> Optional[int]:
        """Terminate the server and its workers. Safe to call repeatedly."""
        handle = self._handle
        if handle is None:
            return None
        if handle.stop.is_set():
            return handle.process.returncode
        handle.stop.set()

        stdin = handle.process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

        code = await terminate_process_tree(handle.process, policy=self.shutdown_policy)

        tasks = handle.tasks()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._fail_pending_writes(handle, ServerNotRunningError("server stopped"))

        async with self._handler_lock:
            self._handler = None
        return code
