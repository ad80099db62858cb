"""Persistent, authenticated, self-reconnecting link to the controller.

The connection owns a single background task. It opens the transport, sends
Hello, waits for Authenticated, then feeds every inbound message to the
listener one at a time and sends back whatever the listener returns. When the
transport drops it waits ``backoff`` seconds and starts over, unless the
controller rejected the credential or ``close()`` was called.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Union

from .auth import Credential
from .errors import ProtocolError, TransportError
from .hooks import ConnectionHooks
from .messages import Authenticated, Error, Hello, Message, decode_message, encode_message
from .transport import Transport, TransportFactory, websocket_factory

logger = logging.getLogger(__name__)

RECONNECT_BACKOFF = 5.0


class ConnectionState(Enum):
    NOT_CONNECTED = "not_connected"
    AUTHENTICATING = "authenticating"
    LISTENING = "listening"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class ConnectionEvent(Enum):
    OPENED = "opened"
    CONNECT_FAILED = "connect_failed"
    AUTH_SUCCEEDED = "auth_succeeded"
    AUTH_FAILED = "auth_failed"
    CLOSED = "closed"
    SHUTDOWN = "shutdown"


_S = ConnectionState
_E = ConnectionEvent

_TRANSITIONS: Dict[Tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (_S.NOT_CONNECTED, _E.OPENED): _S.AUTHENTICATING,
    (_S.RECONNECTING, _E.OPENED): _S.AUTHENTICATING,
    (_S.NOT_CONNECTED, _E.CONNECT_FAILED): _S.RECONNECTING,
    (_S.RECONNECTING, _E.CONNECT_FAILED): _S.RECONNECTING,
    (_S.AUTHENTICATING, _E.AUTH_SUCCEEDED): _S.LISTENING,
    (_S.AUTHENTICATING, _E.AUTH_FAILED): _S.DISCONNECTED,
    (_S.AUTHENTICATING, _E.CLOSED): _S.RECONNECTING,
    (_S.LISTENING, _E.CLOSED): _S.RECONNECTING,
    # Intentional close: the transport goes down after we already gave up.
    (_S.DISCONNECTED, _E.CLOSED): _S.DISCONNECTED,
}


def transition(state: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    """Next state for ``event`` in ``state``; ValueError if the pair is illegal."""
    if event is ConnectionEvent.SHUTDOWN:
        return ConnectionState.DISCONNECTED
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"illegal transition: {event.name} in state {state.name}") from None


class ConnectionListener(Protocol):
    async def on_message(self, message: Message) -> Optional[Message]: ...


class Connection:
    def __init__(
        self,
        listener: ConnectionListener,
        url: str,
        credential: Credential,
        *,
        transport_factory: Optional[TransportFactory] = None,
        backoff: float = RECONNECT_BACKOFF,
        hooks: Optional[ConnectionHooks] = None,
    ) -> None:
        self.listener = listener
        self.url = url
        self.credential = credential
        self.backoff = backoff
        self.connect_attempts = 0

        self._transport_factory = transport_factory or websocket_factory()
        self._hooks = hooks
        self._state = ConnectionState.NOT_CONNECTED
        self._state_changed = asyncio.Condition()
        self._send_lock = asyncio.Lock()
        self._shutdown = asyncio.Event()
        self._transport: Optional[Transport] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._transport is not None and self._transport.is_open

    # ------------------------------------------------------------------
    # State

    def _run_hook(self, hook: Optional[Callable[..., Any]], *args: Any) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.exception("Connection hook %r failed", hook)

    async def _apply(self, event: ConnectionEvent) -> ConnectionState:
        async with self._state_changed:
            old = self._state
            new = transition(old, event)
            self._state = new
            self._state_changed.notify_all()
        if new is not old:
            logger.debug("Connection state %s -> %s (%s)", old.name, new.name, event.name)
        self._run_hook(self._hooks.on_state_change if self._hooks else None, old, new)
        return new

    async def wait_for_state(self, *states: ConnectionState, timeout: Optional[float] = None) -> ConnectionState:
        async def _wait() -> None:
            async with self._state_changed:
                await self._state_changed.wait_for(lambda: self._state in states)

        try:
            await asyncio.wait_for(_wait(), timeout=timeout)
        except asyncio.TimeoutError:
            names = ", ".join(s.name for s in states)
            raise TimeoutError(f"connection did not reach {names} within {timeout}s") from None
        return self._state

    # ------------------------------------------------------------------
    # Outbound

    async def send(self, message: Message) -> None:
        transport = self._transport
        if transport is None or not transport.is_open:
            raise TransportError(f"cannot send {message.TYPE}: connection is not open")
        text = encode_message(message)
        async with self._send_lock:
            await transport.send(text)

    # ------------------------------------------------------------------
    # Inbound

    async def _handle_frame(self, frame: Union[str, bytes]) -> None:
        try:
            message = decode_message(frame)
        except ProtocolError as exc:
            logger.warning("Dropping undecodable frame: %s", exc)
            return

        state = self._state
        if state is ConnectionState.AUTHENTICATING:
            if not isinstance(message, Authenticated):
                logger.warning("Unexpected %s while authenticating; ignored", message.TYPE)
                return
            if message.successful:
                await self._apply(ConnectionEvent.AUTH_SUCCEEDED)
                logger.info("Authenticated with %s", self.url)
            else:
                await self._apply(ConnectionEvent.AUTH_FAILED)
                logger.error("Controller rejected the agent key; giving up")
        elif state is ConnectionState.LISTENING:
            try:
                reply = await self.listener.on_message(message)
            except Exception as exc:
                logger.exception("Listener failed to handle %s", message.TYPE)
                reply = Error.from_exception(exc)
            if reply is not None:
                await self.send(reply)
        else:
            logger.warning("Unexpected %s in state %s; ignored", message.TYPE, state.name)

    # ------------------------------------------------------------------
    # Background activity

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except OSError as exc:
            logger.debug("Error while closing transport: %s", exc)

    async def _session(self, transport: Transport) -> None:
        self._transport = transport
        await self._apply(ConnectionEvent.OPENED)
        logger.info("Connected to %s", self.url)
        try:
            async with self._send_lock:
                await transport.send(encode_message(Hello(token=self.credential.token)))
            while self._state is not ConnectionState.DISCONNECTED:
                frame = await transport.recv()
                await self._handle_frame(frame)
        except TransportError as exc:
            logger.info("Connection to %s lost: %s", self.url, exc)
        finally:
            self._transport = None
            await self._close_transport(transport)
            await self._apply(ConnectionEvent.CLOSED)

    async def _wait_backoff(self) -> bool:
        """Sleep the reconnect backoff; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self.backoff)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        try:
            while not self._shutdown.is_set():
                self.connect_attempts += 1
                self._run_hook(self._hooks.on_connect_attempt if self._hooks else None, self.connect_attempts)
                logger.info("Connecting to %s (attempt %d)", self.url, self.connect_attempts)
                try:
                    transport = await self._transport_factory(self.url)
                except OSError as exc:
                    if self._shutdown.is_set():
                        break
                    logger.warning("Connection to %s failed: %s", self.url, exc)
                    await self._apply(ConnectionEvent.CONNECT_FAILED)
                else:
                    if self._shutdown.is_set():
                        await self._close_transport(transport)
                        break
                    await self._session(transport)

                if self._state is not ConnectionState.RECONNECTING:
                    break
                logger.info("Reconnecting to %s in %.1fs", self.url, self.backoff)
                if await self._wait_backoff():
                    break
        except asyncio.CancelledError:
            logger.info("Connection to %s interrupted", self.url)
            await self._apply(ConnectionEvent.SHUTDOWN)
            raise
        except Exception:
            logger.exception("Connection loop for %s crashed", self.url)
            await self._apply(ConnectionEvent.SHUTDOWN)
            raise
        if self._state is not ConnectionState.DISCONNECTED:
            await self._apply(ConnectionEvent.SHUTDOWN)
        logger.info("Disconnected from %s", self.url)

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("connection already started")
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Shut down for good: no further reconnect attempts."""
        self._shutdown.set()
        if self._state is not ConnectionState.DISCONNECTED:
            await self._apply(ConnectionEvent.SHUTDOWN)
        transport = self._transport
        if transport is not None:
            await self._close_transport(transport)

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task


async def connect(
    listener: ConnectionListener,
    url: str,
    credential: Credential,
    **kwargs: Any,
) -> Connection:
    """Start the connect/reconnect loop in the background and return the handle."""
    connection = Connection(listener, url, credential, **kwargs)
    connection.start()
    return connection
