import asyncio

from loguru import logger

from coinwidget.config import StreamSettings
from coinwidget.connection import Connector
from coinwidget.dispatcher import PriceRecord, PriceSink, StreamDispatcher
from coinwidget.multiplexer import SubscriptionMultiplexer
from coinwidget.symbols import Symbol
from coinwidget.watchlist import WatchList


class StreamCore:
    """The contract between the stream core and the UI layer.

    The UI reads and mutates the watch-list through this object, asks for a
    reconnect after being suspended, and receives one `PriceRecord` per
    decoded ticker event, either through the `sink` callable or, if none is
    given, on the `updates` queue.
    """

    def __init__(
        self,
        settings: StreamSettings | None = None,
        sink: PriceSink | None = None,
        connector: Connector | None = None,
    ) -> None:
        """Initializes the core. Nothing connects until `start()`.

        Args:
            settings: Stream settings. Defaults are used if omitted.
            sink: Receives every PriceRecord. Defaults to the `updates` queue.
            connector: Opens websockets; injected by tests.
        """
        self.settings = settings or StreamSettings()
        self.updates: asyncio.Queue[PriceRecord] = asyncio.Queue(
            maxsize=self.settings.update_queue_size
        )
        self.watchlist = WatchList(self.settings.default_symbols)
        self.dispatcher = StreamDispatcher(sink or self._enqueue)
        self.multiplexer = SubscriptionMultiplexer(
            self.watchlist,
            self.dispatcher,
            endpoints=self.settings.endpoints(),
            retry_delay_s=self.settings.retry_delay_s,
            connector=connector,
        )
        self.watchlist.bind(self.multiplexer)
        self._started = False
        self._stopped = False

    def start(self) -> None:
        """Opens a connection for every segment that has watched symbols.

        A stopped core cannot be restarted; create a new one instead.
        """
        if self._stopped:
            logger.warning("Stream core has been stopped and cannot restart.")
            return
        if self._started:
            logger.warning("Stream core is already running.")
            return
        self._started = True
        for segment in self.watchlist.segments():
            self.multiplexer.ensure_connection(segment)
        logger.info(f"Stream core started for symbols: {self.list_watched()}")

    async def stop(self) -> None:
        """Runs the shutdown sequence and waits for every connection to close.

        Watch-list changes connect even before `start()`, so the sequence
        runs whether or not the core was started.
        """
        if self._stopped:
            logger.warning("Stream core is already stopped.")
            return
        self._stopped = True
        connections = self.multiplexer.connections()
        self.multiplexer.shutdown()
        await asyncio.gather(*(c.wait_closed() for c in connections))
        self._started = False
        logger.info("Stream core stopped.")

    def list_watched(self) -> list[Symbol]:
        """Returns the watched symbols in insertion order."""
        return self.watchlist.symbols()

    def add_symbol(self, token: str | Symbol) -> bool:
        """Starts watching a symbol. Returns False if already watched."""
        return self.watchlist.add(token)

    def remove_symbol(self, token: str | Symbol) -> bool:
        """Stops watching a symbol. Returns False if it was not watched."""
        return self.watchlist.remove(token)

    def force_reconnect_all(self) -> None:
        """Closes and reopens every active segment connection."""
        logger.info("Forcing reconnect of all stream connections.")
        self.multiplexer.force_reconnect_all()

    def _enqueue(self, record: PriceRecord) -> None:
        try:
            self.updates.put_nowait(record)
        except asyncio.QueueFull:
            logger.warning(
                f"Update queue is full. Dropped price for {record.symbol}. "
                "This may indicate a slow consumer."
            )
