#!/usr/bin/env python
r"""A command-line utility to download historical candlestick data.

Uses the same symbol normalization and segment endpoints as the live
streams, and writes the candles as CSV to stdout. The interval, window and
REST endpoints default to the `[history]` section of the user configuration.

Usage:
    python scripts/download_historical.py SYMBOL [--interval 5m] [--hours 24]

Example:
    python scripts/download_historical.py BTCUSDTPERP --interval 5m --hours 24
"""

import argparse
import asyncio
import csv
import sys

import httpx
from loguru import logger

from coinwidget.config import (
    SUPPORTED_INTERVALS,
    HistorySettings,
    Settings,
    interval_to_minutes,
)
from coinwidget.history import HistoryClient
from coinwidget.utils.time import history_start_ms, ms_to_rfc3339

CSV_HEADER: list[str] = ["open_time", "open", "high", "low", "close", "volume"]


def _positive_hours(value: str) -> float:
    try:
        hours = float(value)
    except ValueError:
        err_msg = f"not a number: {value!r}"
        raise argparse.ArgumentTypeError(err_msg) from None
    if hours <= 0:
        err_msg = f"must be positive, got {value}"
        raise argparse.ArgumentTypeError(err_msg)
    return hours


def _parse_args(argv: list[str], defaults: HistorySettings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="download_historical",
        description="Download historical candles as CSV.",
    )
    parser.add_argument("symbol", help="Symbol such as BTCUSDT or BTCUSDTPERP.")
    parser.add_argument(
        "--interval",
        choices=SUPPORTED_INTERVALS,
        default=defaults.interval,
        help="Kline interval (default: %(default)s).",
    )
    parser.add_argument(
        "--hours",
        type=_positive_hours,
        default=float(defaults.history_hours),
        help="Length of the history window in hours (default: %(default)s).",
    )
    return parser.parse_args(argv)


async def download(
    symbol: str, interval: str, hours: float, settings: HistorySettings
) -> int:
    limit = int(hours * 60) // interval_to_minutes(interval)
    async with httpx.AsyncClient(timeout=20.0, follow_redirects=True) as http_client:
        client = HistoryClient(http_client, settings)
        candles = await client.fetch_candles(
            symbol,
            interval=interval,
            start_time_ms=history_start_ms(hours),
            limit=max(limit, 1),
        )

    if not candles:
        logger.error(f"No candles returned for {symbol}.")
        return 1

    writer = csv.writer(sys.stdout)
    writer.writerow(CSV_HEADER)
    for c in candles:
        writer.writerow(
            [ms_to_rfc3339(c.open_time), c.open, c.high, c.low, c.close, c.volume]
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    settings = Settings.get_instance().history
    args = _parse_args(sys.argv[1:] if argv is None else argv, settings)
    try:
        return asyncio.run(download(args.symbol, args.interval, args.hours, settings))
    except ValueError as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
