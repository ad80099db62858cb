"""Transport capability used by Connection, and its websocket implementation."""

from __future__ import annotations

import logging
import ssl
from typing import Awaitable, Callable, Optional, Protocol, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send(self, text: str) -> None: ...

    async def recv(self) -> Union[str, bytes]:
        """Next inbound frame; raises TransportError once the peer has closed."""
        ...

    async def close(self) -> None: ...


TransportFactory = Callable[[str], Awaitable[Transport]]


def build_ssl_context(cafile: Optional[str]) -> Optional[ssl.SSLContext]:
    """Trust only the CAs in ``cafile`` when given, else the system defaults."""
    if not cafile:
        return None
    return ssl.create_default_context(cafile=cafile)


class WebsocketTransport:
    def __init__(self, ws) -> None:
        self._ws = ws
        self._closed = False

    @classmethod
    async def open(cls, url: str, *, ssl_context: Optional[ssl.SSLContext] = None) -> "WebsocketTransport":
        kwargs = {}
        if ssl_context is not None and url.startswith("wss:"):
            kwargs["ssl"] = ssl_context
        try:
            ws = await websockets.connect(url, **kwargs)
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"cannot connect to {url}: {exc}") from exc
        return cls(ws)

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def send(self, text: str) -> None:
        if self._closed:
            raise TransportError("transport is closed")
        try:
            await self._ws.send(text)
        except (ConnectionClosed, OSError) as exc:
            self._closed = True
            raise TransportError(f"send failed: {exc}") from exc

    async def recv(self) -> Union[str, bytes]:
        try:
            return await self._ws.recv()
        except (ConnectionClosed, OSError) as exc:
            self._closed = True
            raise TransportError(f"connection closed: {exc}") from exc

    async def close(self) -> None:
        self._closed = True
        await self._ws.close()


def websocket_factory(ssl_context: Optional[ssl.SSLContext] = None) -> TransportFactory:
    async def _open(url: str) -> Transport:
        return await WebsocketTransport.open(url, ssl_context=ssl_context)
    return _open
