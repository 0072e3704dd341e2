"""Error types raised or logged by the stream core.

Only `InvalidSymbolFormat` ever reaches a caller. The others describe
recoverable conditions on the transport and decode paths; they are built so
the failure has a name in the logs, then dropped.
"""


class CoinWidgetError(Exception):
    """Base class for all coinwidget errors."""


class InvalidSymbolFormat(CoinWidgetError, ValueError):
    """A watch-list token could not be turned into a symbol."""

    def __init__(self, token: object) -> None:
        super().__init__(f"Invalid symbol token: {token!r}")
        self.token = token


class TransportError(CoinWidgetError):
    """A socket-level failure. Closure handling takes over from here."""


class MalformedFrame(CoinWidgetError):
    """An inbound payload that could not be decoded."""

    def __init__(self, reason: str, payload: object) -> None:
        super().__init__(f"{reason}: {payload!r}")
        self.payload = payload


class NotReady(CoinWidgetError):
    """A frame was sent while the connection was not open."""
