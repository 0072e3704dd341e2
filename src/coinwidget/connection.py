import asyncio
import contextlib
import enum
import itertools
from collections.abc import Callable
from typing import Any, Final

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, WebSocketException

from coinwidget.errors import NotReady, TransportError
from coinwidget.symbols import MarketSegment

# --- Close codes ---
# Sent by this process when it closes a stream on purpose. The supervisor
# never retries a closure carrying this code.
INTENTIONAL_CLOSE_CODE: Final[int] = 1000
# Reported when the transport went away without a close frame, or the
# handshake never completed.
ABNORMAL_CLOSE_CODE: Final[int] = 1006

# A factory returning an async context manager that yields a websocket.
Connector = Callable[[str], Any]
OpenCallback = Callable[["Connection"], None]
MessageCallback = Callable[["Connection", str | bytes], None]
CloseCallback = Callable[["Connection", int, str], None]


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection:
    """A single websocket to one segment's endpoint.

    The lifecycle is `CONNECTING -> OPEN -> CLOSING -> CLOSED`, or
    `CONNECTING -> CLOSED` if the handshake fails. Each transition is
    reported through one callback:

    - `on_open(conn)` once, when the handshake completes.
    - `on_message(conn, raw)` for every inbound frame, undecoded.
    - `on_close(conn, code, reason)` once, however the connection ended.

    After `on_close` the instance is inert and must be discarded. It cannot
    be reopened.
    """

    def __init__(
        self,
        segment: MarketSegment,
        on_open: OpenCallback,
        on_message: MessageCallback,
        on_close: CloseCallback,
        connector: Connector | None = None,
    ) -> None:
        """Initializes the connection without opening it.

        Args:
            segment: The market segment this connection serves.
            on_open: Called once the handshake has completed.
            on_message: Called with every raw inbound frame.
            on_close: Called once with the close code and reason.
            connector: Opens the websocket. Defaults to `websockets.connect`.
        """
        self.segment = segment
        self.endpoint: str | None = None
        self.state = ConnectionState.CLOSED
        self.subscriptions: set[str] = set()
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._connector: Connector = connector or websockets.connect
        self._request_ids = itertools.count(1)
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._ws: Any = None
        self._task: asyncio.Task[None] | None = None
        self._closer: asyncio.Task[None] | None = None
        self._close_request: tuple[int, str] | None = None
        self._finished = False

    def __repr__(self) -> str:
        return f"Connection(segment={self.segment.label}, state={self.state.value})"

    @property
    def is_live(self) -> bool:
        """True while the connection is connecting or open."""
        return self.state in (ConnectionState.CONNECTING, ConnectionState.OPEN)

    def next_request_id(self) -> int:
        """Returns the next id for a subscribe/unsubscribe request."""
        return next(self._request_ids)

    def open(self, endpoint: str) -> None:
        """Starts the handshake in a background task.

        Raises:
            RuntimeError: If this instance has already been opened.
        """
        if self._task is not None or self._finished:
            err_msg = "A Connection cannot be reopened; create a new one."
            raise RuntimeError(err_msg)
        self.endpoint = endpoint
        self.state = ConnectionState.CONNECTING
        logger.info(f"[{self.segment.label}] Connecting to {endpoint}...")
        self._task = asyncio.create_task(
            self._run(endpoint), name=f"coinwidget-{self.segment.label}-connection"
        )
        # A task cancelled before its first step never enters _run's finally.
        self._task.add_done_callback(lambda _task: self._finish())

    def send(self, frame: str) -> bool:
        """Queues a text frame for sending.

        Returns:
            True if the frame was queued, False if it was dropped because the
            connection is not open.
        """
        try:
            self._ensure_open()
        except NotReady as e:
            logger.warning(f"[{self.segment.label}] {e} Dropped frame: {frame}")
            return False
        self._outbox.put_nowait(frame)
        return True

    def close(self, code: int = INTENTIONAL_CLOSE_CODE, reason: str = "") -> None:
        """Requests a graceful close.

        A close requested during the handshake cancels it. Closing an already
        closing or closed connection does nothing.
        """
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        logger.info(
            f"[{self.segment.label}] Closing connection "
            f"(code={code}, reason='{reason}')."
        )
        self._close_request = (code, reason)
        self.state = ConnectionState.CLOSING
        if self._ws is not None:
            self._closer = asyncio.create_task(self._ws.close(code, reason))
        elif self._task is not None:
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Waits until the connection task has finished."""
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    def _ensure_open(self) -> None:
        if self.state is not ConnectionState.OPEN:
            err_msg = f"Connection is {self.state.value}, not open."
            raise NotReady(err_msg)

    async def _run(self, endpoint: str) -> None:
        """Runs one connection from handshake to closure."""
        try:
            async with self._connector(endpoint) as ws:
                self._ws = ws
                if self.state is ConnectionState.CLOSING:
                    # close() raced the end of the handshake.
                    await ws.close(*self._close_request)
                    return
                self.state = ConnectionState.OPEN
                logger.success(f"[{self.segment.label}] Connected to {endpoint}.")
                self._on_open(self)

                writer = asyncio.create_task(self._drain_outbox(ws))
                try:
                    async for raw in ws:
                        self._on_message(self, raw)
                finally:
                    writer.cancel()
        except ConnectionClosed as e:
            logger.warning(
                f"[{self.segment.label}] Connection lost: {type(e).__name__}."
            )
        except (WebSocketException, OSError, TimeoutError) as e:
            error = TransportError(f"{type(e).__name__}: {e}")
            logger.warning(f"[{self.segment.label}] Transport error: {error}")
        finally:
            self._finish()

    async def _drain_outbox(self, ws: Any) -> None:
        """Sends queued frames in FIFO order."""
        while True:
            frame = await self._outbox.get()
            try:
                await ws.send(frame)
            except ConnectionClosed:
                logger.debug(
                    f"[{self.segment.label}] Connection closed while sending: {frame}"
                )
                return
            logger.debug(f"[{self.segment.label}] Sent: {frame}")

    def _finish(self) -> None:
        """Moves to CLOSED and reports the closure exactly once."""
        if self._finished:
            return
        self._finished = True
        self.state = ConnectionState.CLOSED
        self.subscriptions.clear()

        if self._close_request is not None:
            code, reason = self._close_request
        elif self._ws is not None and getattr(self._ws, "close_code", None) is not None:
            code = int(self._ws.close_code)
            reason = getattr(self._ws, "close_reason", None) or ""
        else:
            code, reason = ABNORMAL_CLOSE_CODE, ""

        self._ws = None
        logger.info(
            f"[{self.segment.label}] Connection closed "
            f"(code={code}, reason='{reason}')."
        )
        self._on_close(self, code, reason)
