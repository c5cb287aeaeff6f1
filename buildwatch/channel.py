from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI, WebSocketException

from buildwatch.errors import TransportError


class ChannelClosed(TransportError):
    """The peer (or we) closed the channel. Not a failure, the session just ends."""

    def __init__(self, message: str = "channel closed", *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class Channel(Protocol):
    """
    Long-lived duplex text channel.

    recv() raises ChannelClosed when the channel is closed and TransportError on any other failure.
    """

    async def send(self, data: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


ChannelFactory = Callable[[], Awaitable[Channel]]


class WebSocketChannel:
    def __init__(self, conn: ClientConnection) -> None:
        self._conn = conn

    async def send(self, data: str) -> None:
        try:
            await self._conn.send(data)
        except ConnectionClosed as e:
            raise ChannelClosed(f"send on closed channel: {e}", code=_close_code(e)) from e
        except (WebSocketException, OSError) as e:
            raise TransportError(f"send failed: {e}") from e

    async def recv(self) -> str:
        try:
            raw = await self._conn.recv()
        except ConnectionClosed as e:
            raise ChannelClosed(str(e), code=_close_code(e)) from e
        except (WebSocketException, OSError) as e:
            raise TransportError(f"recv failed: {e}") from e
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return raw

    async def close(self) -> None:
        await self._conn.close()


def _close_code(e: ConnectionClosed) -> Optional[int]:
    rcvd = getattr(e, "rcvd", None)
    return getattr(rcvd, "code", None)


async def connect_websocket(url: str, *, open_timeout: Optional[float] = 10.0) -> WebSocketChannel:
    try:
        conn = await connect(url, open_timeout=open_timeout)
    except (InvalidURI, InvalidHandshake, WebSocketException, OSError, asyncio.TimeoutError) as e:
        raise TransportError(f"failed to open {url}: {e}") from e
    return WebSocketChannel(conn)


def websocket_factory(url: str, *, open_timeout: Optional[float] = 10.0) -> ChannelFactory:
    async def _factory() -> Channel:
        return await connect_websocket(url, open_timeout=open_timeout)

    return _factory
