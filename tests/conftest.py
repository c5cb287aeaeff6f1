from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Callable, List, Union

import httpx
import pytest

from buildwatch.api.client import BackendClient
from buildwatch.channel import ChannelClosed
from buildwatch.errors import TransportError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Keep tests deterministic and isolated from developer machine env.
    """
    for k in list(os.environ.keys()):
        if k.startswith("BUILDWATCH_"):
            monkeypatch.delenv(k, raising=False)


_CLOSE = object()
_FAIL = object()


class FakeChannel:
    """
    In-memory duplex channel. Frames fed before or during a run are delivered in feed order.
    """

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.closed = False
        self._inbox: "asyncio.Queue[Any]" = asyncio.Queue()

    def feed(self, frame: Union[str, dict]) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def close_remote(self) -> None:
        self._inbox.put_nowait(_CLOSE)

    def fail(self) -> None:
        self._inbox.put_nowait(_FAIL)

    def sent_json(self) -> List[dict]:
        return [json.loads(s) for s in self.sent]

    async def send(self, data: str) -> None:
        if self.closed:
            raise ChannelClosed("send on closed channel", code=1000)
        self.sent.append(data)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSE:
            raise ChannelClosed("closed by peer", code=1000)
        if item is _FAIL:
            raise TransportError("connection reset")
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)


@pytest.fixture
def fake_channel_cls():
    return FakeChannel


@pytest.fixture
def make_client() -> Callable[..., BackendClient]:
    def _make(handler, **kwargs: Any) -> BackendClient:
        kwargs.setdefault("retry_backoff_s", 0.0)
        return BackendClient(api_base_url="http://backend.test/api", transport=httpx.MockTransport(handler), **kwargs)

    return _make


def factory_for(channel: FakeChannel):
    async def _factory() -> FakeChannel:
        return channel

    return _factory


@pytest.fixture
def channel_factory():
    return factory_for
