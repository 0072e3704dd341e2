import json
from collections.abc import Callable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Final

from loguru import logger

from coinwidget.errors import MalformedFrame
from coinwidget.symbols import MarketSegment, display_symbol
from coinwidget.utils.time import get_current_ms

# --- Constants ---
TICKER_EVENT: Final[str] = "24hrTicker"
DISPLAY_PRECISION: Final[Decimal] = Decimal("0.01")
DEFAULT_CHANGE_PERCENT: Final[str] = "0.00"


@dataclass(frozen=True)
class PriceRecord:
    """A normalized price update, forwarded once and never retained."""

    symbol: str
    price: str
    price_change_percent: str
    timestamp: int
    segment: MarketSegment

    @property
    def market_type(self) -> str:
        return self.segment.value

    def to_dict(self) -> dict[str, Any]:
        """Returns the payload shape the UI layer consumes."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "priceChangePercent": self.price_change_percent,
            "timestamp": self.timestamp,
            "marketType": self.market_type,
        }


PriceSink = Callable[[PriceRecord], None]


def _to_display(value: Any) -> str:
    """Formats a venue decimal string with two fractional digits."""
    number = Decimal(str(value))
    if not number.is_finite():
        err_msg = f"Not a finite number: {value!r}"
        raise ValueError(err_msg)
    return str(number.quantize(DISPLAY_PRECISION, rounding=ROUND_HALF_UP))


class StreamDispatcher:
    """Decodes inbound frames and forwards ticker events as PriceRecords.

    Nothing on this path raises to the caller. Undecodable frames are logged
    as `MalformedFrame` and dropped. Acks can arrive before, after or between
    ticker events, and are only logged.
    """

    def __init__(
        self, sink: PriceSink, clock: Callable[[], int] = get_current_ms
    ) -> None:
        """Initializes the dispatcher.

        Args:
            sink: Receives every decoded PriceRecord.
            clock: Returns the receipt time in epoch milliseconds.
        """
        self._sink = sink
        self._clock = clock

    def on_frame(self, segment: MarketSegment, raw: str | bytes) -> None:
        """Handles one raw frame received on a segment's connection."""
        try:
            message = self._decode(raw)
        except MalformedFrame as e:
            logger.warning(f"[{segment.label}] Dropping frame. {e}")
            return

        # Combined-stream endpoints wrap every event in an envelope.
        if "stream" in message and isinstance(message.get("data"), dict):
            message = message["data"]

        if "id" in message and "result" in message and message["result"] is None:
            logger.debug(f"[{segment.label}] Request {message['id']} acknowledged.")
            return

        if "error" in message:
            logger.warning(
                f"[{segment.label}] Request {message.get('id')} rejected by venue: "
                f"{message['error']}"
            )
            return

        if message.get("e") == TICKER_EVENT and "s" in message and "c" in message:
            try:
                record = self._to_record(segment, message)
            except MalformedFrame as e:
                logger.warning(f"[{segment.label}] Dropping ticker. {e}")
                return
            try:
                self._sink(record)
            except Exception:
                logger.exception(f"[{segment.label}] Price sink failed for {record}.")

    @staticmethod
    def _decode(raw: str | bytes) -> dict[str, Any]:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedFrame(f"Invalid JSON ({e.__class__.__name__})", raw) from e
        if not isinstance(message, dict):
            err_msg = "Expected a JSON object"
            raise MalformedFrame(err_msg, raw)
        return message

    def _to_record(
        self, segment: MarketSegment, message: dict[str, Any]
    ) -> PriceRecord:
        try:
            price = _to_display(message["c"])
            change = message.get("P")
            change_percent = (
                DEFAULT_CHANGE_PERCENT if change is None else _to_display(change)
            )
            symbol = display_symbol(str(message["s"]), segment)
        except (InvalidOperation, TypeError, ValueError) as e:
            err_msg = f"Unparsable ticker fields ({e.__class__.__name__})"
            raise MalformedFrame(err_msg, message) from e

        return PriceRecord(
            symbol=symbol,
            price=price,
            price_change_percent=change_percent,
            timestamp=self._clock(),
            segment=segment,
        )
