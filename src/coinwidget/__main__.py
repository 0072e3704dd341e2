"""Headless runner: streams the watch-list's prices to the log.

Usage:
    python -m coinwidget [SYMBOL ...]

Stops cleanly on Ctrl+C or SIGTERM.
"""

import argparse
import asyncio
import contextlib
import signal
import sys
from pathlib import Path

from loguru import logger

from coinwidget.config import Settings
from coinwidget.core import StreamCore
from coinwidget.logging_config import setup_logging


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="coinwidget", description=__doc__)
    parser.add_argument(
        "symbols",
        nargs="*",
        help="Symbols to watch, e.g. BTC ETHUSDT SOLUSDTPERP. "
        "Defaults to the configured watch-list.",
    )
    return parser.parse_args(argv)


async def run(settings: Settings) -> int:
    """Runs the stream core until a stop signal arrives."""
    core = StreamCore(settings.stream)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    core.start()
    stop_task = asyncio.create_task(stop_event.wait())
    try:
        while not stop_event.is_set():
            get_task = asyncio.create_task(core.updates.get())
            done, _ = await asyncio.wait(
                {get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if get_task in done:
                record = get_task.result()
                logger.info(
                    f"{record.symbol:<14} {record.price:>14} "
                    f"{record.price_change_percent:>7}% [{record.market_type}]"
                )
            else:
                get_task.cancel()
    finally:
        stop_task.cancel()
        await core.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = Settings.get_instance()
    if args.symbols:
        settings.stream.default_symbols = args.symbols
    settings.validate()

    general = settings.general
    setup_logging(
        console_level=general.log_level_console,
        file_level=general.log_level_file,
        log_dir=Path(general.log_directory),
    )
    try:
        return asyncio.run(run(settings))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
