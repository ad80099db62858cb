from __future__ import annotations

import logging
from typing import Callable, Optional

from .auth import Credential
from .config import AgentConfig
from .connection import Connection, connect
from .errors import ServerNotRunningError, TransportError
from .messages import (
    ConsoleCommand,
    ConsoleResult,
    Message,
    RunServer,
    ServerStarted,
)
from .scheduler import ConsoleOutputScheduler, new_output_queue
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

SupervisorFactory = Callable[..., ProcessSupervisor]


class Agent:
    """Routes controller commands to the game server supervisor."""

    def __init__(
        self,
        config: AgentConfig,
        *,
        supervisor_factory: SupervisorFactory = ProcessSupervisor,
    ) -> None:
        self.config = config
        self.connection: Optional[Connection] = None
        self.server: Optional[ProcessSupervisor] = None
        self.scheduler: Optional[ConsoleOutputScheduler] = None
        self._supervisor_factory = supervisor_factory

    async def _send(self, message: Message) -> None:
        if self.connection is None:
            raise TransportError("agent has no controller connection")
        await self.connection.send(message)

    async def on_message(self, message: Message) -> Optional[Message]:
        if isinstance(message, RunServer):
            return await self._run_server(message)
        if isinstance(message, ConsoleCommand):
            return await self._console(message)
        logger.warning("No handler for %s; ignored", message.TYPE)
        return None

    async def _run_server(self, message: RunServer) -> ServerStarted:
        if self.server is not None and self.server.running:
            return ServerStarted(error=f"a server is already running (pid={self.server.pid})")
        # The previous server has exited; release it before starting over.
        await self._stop_server()

        engine = self.config.engine
        timeouts = self.config.timeouts
        queue = new_output_queue()
        scheduler = ConsoleOutputScheduler(queue, self._send, period=timeouts.console_period)
        supervisor = self._supervisor_factory(
            engine.executable,
            engine.workdir,
            output_queue=queue,
            init_timeout=timeouts.init,
            console_timeout=timeouts.console,
        )
        scheduler.start()
        try:
            await supervisor.run(message.configuration)
        except Exception as exc:
            logger.exception("Failed to start %s", engine.name)
            await supervisor.stop()
            await scheduler.stop()
            return ServerStarted(error=str(exc) or type(exc).__name__)

        self.server = supervisor
        self.scheduler = scheduler
        logger.info("Server %s started (pid=%s)", engine.name, supervisor.pid)
        return ServerStarted(error=None)

    async def _console(self, message: ConsoleCommand) -> ConsoleResult:
        if self.server is None:
            raise ServerNotRunningError("no server has been started")
        lines = await self.server.execute_console(message.command)
        return ConsoleResult(lines=lines)

    async def _stop_server(self) -> None:
        server, self.server = self.server, None
        scheduler, self.scheduler = self.scheduler, None
        if server is not None:
            await server.stop()
        if scheduler is not None:
            await scheduler.stop()

    async def serve(self, url: str, credential: Credential, **connection_kwargs) -> None:
        """Stay connected until the controller rejects us or we are shut down."""
        self.connection = await connect(self, url, credential, **connection_kwargs)
        try:
            await self.connection.wait_closed()
        finally:
            await self._stop_server()

    async def shutdown(self) -> None:
        if self.connection is not None:
            await self.connection.close()
