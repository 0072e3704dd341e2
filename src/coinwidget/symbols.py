import enum
import re
from dataclasses import dataclass
from typing import Final

from coinwidget.errors import InvalidSymbolFormat

# --- Constants ---
QUOTE_ASSET: Final[str] = "USDT"
PERP_MARKER: Final[str] = "PERP"
TICKER_CHANNEL: Final[str] = "@ticker"

_SEPARATORS = re.compile(r"[^A-Za-z0-9]")


class MarketSegment(enum.Enum):
    """A market segment. Each one is served by its own venue endpoint."""

    SPOT = "SPOT"
    PERPETUAL = "PERP"

    @property
    def label(self) -> str:
        """A short lowercase name used as the logging prefix."""
        return self.name.lower()


STREAM_ENDPOINTS: Final[dict[MarketSegment, str]] = {
    MarketSegment.SPOT: "wss://stream.binance.com:9443/ws",
    MarketSegment.PERPETUAL: "wss://fstream.binance.com/ws",
}

REST_ENDPOINTS: Final[dict[MarketSegment, str]] = {
    MarketSegment.SPOT: "https://api.binance.com/api/v3",
    MarketSegment.PERPETUAL: "https://fapi.binance.com/fapi/v1",
}


@dataclass(frozen=True)
class Symbol:
    """A venue-qualified instrument, e.g. BTC/USDT on the perpetual segment."""

    base: str
    segment: MarketSegment = MarketSegment.SPOT
    quote: str = QUOTE_ASSET

    @property
    def venue_symbol(self) -> str:
        """The symbol as the venue spells it, without any segment marker."""
        return f"{self.base}{self.quote}"

    def __str__(self) -> str:
        if self.segment is MarketSegment.PERPETUAL:
            return f"{self.venue_symbol}{PERP_MARKER}"
        return self.venue_symbol


def normalize(token: "str | Symbol") -> Symbol:
    """Maps a user-facing token to a Symbol.

    Separators are stripped and the token is uppercased. A trailing `PERP`
    selects the perpetual segment, and a trailing quote asset is optional, so
    "btc", "BTC/USDT" and "btcusdt" all yield the same Symbol.

    Args:
        token: A raw token, or an already normalized Symbol.

    Returns:
        The normalized Symbol.

    Raises:
        InvalidSymbolFormat: If no base asset is left after stripping.
    """
    if isinstance(token, Symbol):
        return token
    if not isinstance(token, str):
        raise InvalidSymbolFormat(token)

    cleaned = _SEPARATORS.sub("", token).upper()
    segment = MarketSegment.SPOT
    if cleaned.endswith(PERP_MARKER):
        segment = MarketSegment.PERPETUAL
        cleaned = cleaned[: -len(PERP_MARKER)]
    if cleaned.endswith(QUOTE_ASSET) and len(cleaned) > len(QUOTE_ASSET):
        cleaned = cleaned[: -len(QUOTE_ASSET)]
    if not cleaned:
        raise InvalidSymbolFormat(token)
    return Symbol(base=cleaned, segment=segment)


def stream_name(symbol: "str | Symbol") -> str:
    """Returns the wire channel for a symbol, e.g. 'btcusdt@ticker'.

    The perpetual marker is never part of the name: the venue separates
    segments by endpoint, not by channel.
    """
    return f"{normalize(symbol).venue_symbol.lower()}{TICKER_CHANNEL}"


def base_asset(symbol: "str | Symbol") -> str:
    """Returns the base asset for display, e.g. 'BTC'."""
    return normalize(symbol).base


def display_symbol(wire_symbol: str, segment: MarketSegment) -> str:
    """Rebuilds the display form of a symbol received on the wire."""
    wire_symbol = wire_symbol.upper()
    if segment is MarketSegment.PERPETUAL and not wire_symbol.endswith(PERP_MARKER):
        return f"{wire_symbol}{PERP_MARKER}"
    return wire_symbol


def stream_endpoint(segment: MarketSegment) -> str:
    """Returns the websocket endpoint serving a segment."""
    return STREAM_ENDPOINTS[segment]


def rest_endpoint(segment: MarketSegment) -> str:
    """Returns the REST base URL serving a segment's historical data."""
    return REST_ENDPOINTS[segment]
