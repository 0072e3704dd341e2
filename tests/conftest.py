import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest


class FakeWebSocket:
    """An in-memory stand-in for a websockets client connection.

    Works as the async context manager returned by `websockets.connect` and
    as the connection itself. Tests push inbound frames and drop the
    transport programmatically.
    """

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        self.sent: list[str] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def __aenter__(self) -> "FakeWebSocket":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        frame = await self._inbox.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    async def send(self, frame: str) -> None:
        self.sent.append(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code, self.close_reason = code, reason
        self._inbox.put_nowait(None)

    # --- Control methods for the test ---
    def push(self, payload: dict[str, Any] | str) -> None:
        """Delivers an inbound frame."""
        frame = payload if isinstance(payload, str) else json.dumps(payload)
        self._inbox.put_nowait(frame)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulates the server or network ending the connection."""
        self.close_code, self.close_reason = code, reason
        self._inbox.put_nowait(None)

    @property
    def requests(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]


class FailingHandshake:
    """A connector result whose handshake fails."""

    async def __aenter__(self) -> None:
        err_msg = "Connection refused"
        raise ConnectionRefusedError(err_msg)

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakeConnector:
    """Replaces `websockets.connect` and records every socket it opens."""

    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []
        self.attempts: list[str] = []
        self.failures_left = 0

    def __call__(self, endpoint: str) -> FakeWebSocket | FailingHandshake:
        self.attempts.append(endpoint)
        if self.failures_left > 0:
            self.failures_left -= 1
            return FailingHandshake()
        ws = FakeWebSocket(endpoint)
        self.sockets.append(ws)
        return ws

    def for_endpoint(self, fragment: str) -> list[FakeWebSocket]:
        return [ws for ws in self.sockets if fragment in ws.endpoint]


@pytest.fixture
def connector() -> FakeConnector:
    """Provides a fresh fake websocket connector."""
    return FakeConnector()


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """Provides a helper that waits for a condition on the event loop."""

    async def _eventually(
        condition: Callable[[], bool], timeout: float = 1.0
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                pytest.fail("Condition was not met in time.")
            await asyncio.sleep(0.001)

    return _eventually
