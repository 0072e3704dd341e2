import json
from collections.abc import Mapping
from dataclasses import dataclass

from loguru import logger

from coinwidget.connection import (
    INTENTIONAL_CLOSE_CODE,
    Connection,
    Connector,
    ConnectionState,
)
from coinwidget.dispatcher import StreamDispatcher
from coinwidget.supervisor import RETRY_DELAY_S, ReconnectionSupervisor
from coinwidget.symbols import STREAM_ENDPOINTS, MarketSegment, Symbol, stream_name
from coinwidget.watchlist import WatchList


@dataclass
class SegmentSession:
    """Holds the single live connection of one market segment."""

    segment: MarketSegment
    connection: Connection | None = None


class SubscriptionMultiplexer:
    """Keeps each segment's subscriptions in line with the watch-list.

    On every (re)connect the full set of streams for the segment is derived
    from the watch-list and subscribed in one batch, so a reconnect never
    needs to diff against whatever the server last saw. Between reconnects,
    single additions and removals are sent as incremental requests.

    All methods run on the event loop thread and never block.
    """

    def __init__(
        self,
        watchlist: WatchList,
        dispatcher: StreamDispatcher,
        endpoints: Mapping[MarketSegment, str] | None = None,
        retry_delay_s: float = RETRY_DELAY_S,
        connector: Connector | None = None,
    ) -> None:
        """Initializes the multiplexer.

        Args:
            watchlist: The source of truth for wanted symbols.
            dispatcher: Receives every inbound frame.
            endpoints: Stream endpoint per segment. Defaults to the venue's.
            retry_delay_s: Delay before a lost segment is reconnected.
            connector: Passed to every Connection; used by tests.
        """
        self._watchlist = watchlist
        self._dispatcher = dispatcher
        self._endpoints = dict(endpoints or STREAM_ENDPOINTS)
        self._connector = connector
        self._sessions: dict[MarketSegment, SegmentSession] = {}
        self.supervisor = ReconnectionSupervisor(self._retry, delay_s=retry_delay_s)

    def connection(self, segment: MarketSegment) -> Connection | None:
        """Returns the segment's current connection, if any."""
        session = self._sessions.get(segment)
        return session.connection if session else None

    def connections(self) -> list[Connection]:
        """Returns every connection that has not been released yet."""
        return [s.connection for s in self._sessions.values() if s.connection]

    def ensure_connection(self, segment: MarketSegment) -> Connection | None:
        """Opens a connection for the segment unless a live one exists.

        Returns:
            The live connection, or None while shutting down.
        """
        if self.supervisor.quitting:
            logger.debug(f"[{segment.label}] Shutting down; not connecting.")
            return None
        session = self._sessions.setdefault(segment, SegmentSession(segment))
        if session.connection is not None and session.connection.is_live:
            return session.connection

        connection = Connection(
            segment,
            on_open=self._handle_open,
            on_message=self._handle_message,
            on_close=self._handle_close,
            connector=self._connector,
        )
        session.connection = connection
        connection.open(self._endpoints[segment])
        return connection

    def add_symbol(self, symbol: Symbol) -> None:
        """Subscribes a newly watched symbol."""
        connection = self.connection(symbol.segment)
        if connection is not None and connection.state is ConnectionState.OPEN:
            self._request(connection, "SUBSCRIBE", [stream_name(symbol)])
        else:
            # The full resubscribe on open will include the new symbol.
            self.ensure_connection(symbol.segment)

    def remove_symbol(self, symbol: Symbol) -> None:
        """Unsubscribes a symbol that is no longer watched."""
        segment = symbol.segment
        connection = self.connection(segment)
        if connection is not None and connection.state is ConnectionState.OPEN:
            self._request(connection, "UNSUBSCRIBE", [stream_name(symbol)])

        if not self._watchlist.symbols_for(segment):
            self.supervisor.cancel(segment)
            if connection is not None and connection.is_live:
                connection.close(INTENTIONAL_CLOSE_CODE, "no more symbols")

    def force_reconnect_all(self) -> None:
        """Replaces every segment's connection with a fresh one."""
        segments = dict.fromkeys([*self._sessions, *self._watchlist.segments()])
        for segment in segments:
            session = self._sessions.setdefault(segment, SegmentSession(segment))
            old, session.connection = session.connection, None
            if old is not None:
                old.close(INTENTIONAL_CLOSE_CODE, "reconnect requested")
            self.supervisor.cancel(segment)
            if self._watchlist.symbols_for(segment):
                self.ensure_connection(segment)

    def shutdown(self) -> None:
        """Closes everything. No reconnect is attempted afterwards."""
        logger.info("Shutting down stream connections...")
        self.supervisor.begin_shutdown()
        for connection in self.connections():
            connection.close(INTENTIONAL_CLOSE_CODE, "shutting down")
        self.supervisor.cancel_all()

    def _request(self, connection: Connection, method: str, streams: list[str]) -> int:
        """Sends a SUBSCRIBE/UNSUBSCRIBE request and returns its id."""
        request_id = connection.next_request_id()
        frame = json.dumps({"method": method, "params": streams, "id": request_id})
        if connection.send(frame):
            if method == "SUBSCRIBE":
                connection.subscriptions.update(streams)
            else:
                connection.subscriptions.difference_update(streams)
            logger.info(
                f"[{connection.segment.label}] {method} {streams} (id={request_id})"
            )
        return request_id

    def _is_current(self, connection: Connection) -> bool:
        return self.connection(connection.segment) is connection

    def _handle_open(self, connection: Connection) -> None:
        segment = connection.segment
        if not self._is_current(connection):
            connection.close(INTENTIONAL_CLOSE_CODE, "superseded")
            return
        self.supervisor.cancel(segment)

        streams = [stream_name(s) for s in self._watchlist.symbols_for(segment)]
        if not streams:
            connection.close(INTENTIONAL_CLOSE_CODE, "no more symbols")
            return
        self._request(connection, "SUBSCRIBE", streams)

    def _handle_message(self, connection: Connection, raw: str | bytes) -> None:
        self._dispatcher.on_frame(connection.segment, raw)

    def _handle_close(self, connection: Connection, code: int, reason: str) -> None:
        segment = connection.segment
        if not self._is_current(connection):
            logger.debug(f"[{segment.label}] Ignoring close of a replaced connection.")
            return
        self._sessions[segment].connection = None
        self.supervisor.on_close(segment, code, reason)

    def _retry(self, segment: MarketSegment) -> None:
        if not self._watchlist.symbols_for(segment):
            logger.info(f"[{segment.label}] No symbols left; skipping reconnect.")
            return
        self.ensure_connection(segment)
