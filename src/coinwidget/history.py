"""Historical chart data for the UI layer.

The stream core never calls these endpoints itself. They live here so the UI
resolves a symbol to the same venue symbol and segment endpoint the live
streams use.
"""

from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Final

import httpx
from loguru import logger

from coinwidget.config import SUPPORTED_INTERVALS, HistorySettings
from coinwidget.dispatcher import PriceRecord
from coinwidget.symbols import QUOTE_ASSET, MarketSegment, Symbol, normalize
from coinwidget.utils.time import history_start_ms

MAX_LIMIT: Final[int] = 1000


@dataclass(frozen=True)
class Candle:
    """One OHLC kline. Prices are kept as the venue's decimal strings."""

    open_time: int
    open: str
    high: str
    low: str
    close: str
    volume: str
    close_time: int

    @classmethod
    def from_kline(cls, kline: list[Any]) -> "Candle":
        # Kline format: [Open time, Open, High, Low, Close, Volume, Close time, ...]
        return cls(
            open_time=int(kline[0]),
            open=str(kline[1]),
            high=str(kline[2]),
            low=str(kline[3]),
            close=str(kline[4]),
            volume=str(kline[5]),
            close_time=int(kline[6]),
        )


class HistoryClient:
    """Fetches klines and tradable symbols from the venue's REST API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: HistorySettings | None = None,
    ) -> None:
        """Initializes the client.

        Args:
            http_client: A shared httpx.AsyncClient.
            settings: REST endpoints, default interval and chart window.
                Defaults are used if omitted.
        """
        self.http_client = http_client
        self.settings = settings or HistorySettings()
        self._endpoints = self.settings.endpoints()

    async def fetch_candles(
        self,
        symbol: "str | Symbol",
        interval: str | None = None,
        start_time_ms: int | None = None,
        limit: int | None = None,
    ) -> list[Candle]:
        """Fetches up to `limit` candles for a symbol, oldest first.

        Args:
            symbol: Any token accepted by `normalize`.
            interval: A kline interval such as '1m' or '1h'. Defaults to the
                configured interval.
            start_time_ms: Start of the range in epoch milliseconds. Defaults
                to the start of the configured history window.
            limit: Maximum number of candles, capped at the venue's maximum.
                Defaults to the configured number of chart points.

        Returns:
            The candles in open-time order. Empty if the request failed.

        Raises:
            ValueError: If the interval is not supported.
        """
        interval = interval or self.settings.interval
        if interval not in SUPPORTED_INTERVALS:
            err_msg = f"Unsupported kline interval: {interval}"
            raise ValueError(err_msg)
        if start_time_ms is None:
            start_time_ms = history_start_ms(self.settings.history_hours)
        if limit is None:
            limit = self.settings.max_points
        sym = normalize(symbol)
        params: dict[str, Any] = {
            "symbol": sym.venue_symbol,
            "interval": interval,
            "startTime": start_time_ms,
            "limit": min(limit, MAX_LIMIT),
        }

        url = f"{self._endpoints[sym.segment]}/klines"
        try:
            response = await self.http_client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
            candles = [Candle.from_kline(k) for k in data]
        except (httpx.HTTPError, ValueError, IndexError, TypeError) as e:
            logger.error(
                f"[{sym.segment.label}] Failed to fetch historical data for {sym}: {e}"
            )
            return []

        candles.sort(key=lambda c: c.open_time)
        logger.info(
            f"[{sym.segment.label}] Loaded {len(candles)} historical points for {sym}."
        )
        return candles

    async def list_symbols(self, segment: MarketSegment) -> list[Symbol]:
        """Lists the segment's tradable symbols quoted in the fixed quote asset.

        Returns:
            The symbols in the venue's order. Empty if the request failed.
        """
        url = f"{self._endpoints[segment]}/exchangeInfo"
        try:
            response = await self.http_client.get(url)
            response.raise_for_status()
            entries = response.json()["symbols"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error(f"[{segment.label}] Failed to load exchange info: {e}")
            return []

        symbols = []
        for entry in entries:
            try:
                if entry.get("status") != "TRADING":
                    continue
                if entry.get("quoteAsset") != QUOTE_ASSET:
                    continue
                is_perpetual = entry.get("contractType") == "PERPETUAL"
                if segment is MarketSegment.PERPETUAL and not is_perpetual:
                    continue
                symbols.append(Symbol(base=str(entry["baseAsset"]), segment=segment))
            except (AttributeError, KeyError) as e:
                logger.warning(
                    f"[{segment.label}] Skipping malformed exchange info entry "
                    f"{entry!r}: {e!r}"
                )
        logger.debug(f"[{segment.label}] {len(symbols)} tradable symbols.")
        return symbols


@dataclass(frozen=True)
class HistoryPoint:
    timestamp: int
    price: float


class PriceHistory:
    """A bounded, interval-bucketed price series for one symbol's chart.

    A live update within one interval of the last point replaces that point;
    a later one starts a new point. Once `max_points` is reached the oldest
    point is discarded.
    """

    def __init__(self, interval_ms: int, max_points: int) -> None:
        if interval_ms <= 0 or max_points <= 0:
            err_msg = "Interval and capacity must be positive integers."
            raise ValueError(err_msg)
        self.interval_ms = interval_ms
        self._points: deque[HistoryPoint] = deque(maxlen=max_points)

    @property
    def capacity(self) -> int:
        return self._points.maxlen or 0

    def seed(self, candles: Iterable[Candle]) -> None:
        """Replaces the series with the close prices of historical candles."""
        self._points.clear()
        self._points.extend(HistoryPoint(c.open_time, float(c.close)) for c in candles)

    def record(self, update: PriceRecord) -> None:
        """Folds a live price update into the series."""
        point = HistoryPoint(update.timestamp, float(update.price))
        last = self._points[-1] if self._points else None
        if last is not None and point.timestamp - last.timestamp < self.interval_ms:
            self._points[-1] = point
        else:
            self._points.append(point)

    def points(self) -> list[HistoryPoint]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[HistoryPoint]:
        return iter(self._points)
