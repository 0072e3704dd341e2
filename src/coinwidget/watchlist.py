from collections.abc import Iterable
from typing import Protocol

from loguru import logger

from coinwidget.errors import InvalidSymbolFormat
from coinwidget.symbols import MarketSegment, Symbol, normalize


class WatchListListener(Protocol):
    """Receives watch-list changes. The multiplexer implements this."""

    def add_symbol(self, symbol: Symbol) -> None: ...

    def remove_symbol(self, symbol: Symbol) -> None: ...


class WatchList:
    """The ordered set of symbols the user is tracking.

    This is the single source of truth for which segments need a
    connection. Insertion order is kept so the UI can derive stable colours
    from a symbol's position. State lives in memory for the process lifetime.

    Mutations must happen on the event loop thread; the listener is notified
    synchronously, after the change has been applied.
    """

    def __init__(self, defaults: Iterable["str | Symbol"] = ()) -> None:
        self._symbols: dict[Symbol, None] = {}
        self._listener: WatchListListener | None = None
        for token in defaults:
            self._symbols.setdefault(normalize(token))

    def bind(self, listener: WatchListListener) -> None:
        """Sets the listener notified after every successful mutation."""
        self._listener = listener

    def add(self, token: "str | Symbol") -> bool:
        """Adds a symbol.

        Returns:
            False if the symbol was already watched.

        Raises:
            InvalidSymbolFormat: If the token is malformed. Nothing changes.
        """
        symbol = normalize(token)
        if symbol in self._symbols:
            logger.debug(f"{symbol} is already watched.")
            return False
        self._symbols[symbol] = None
        logger.info(f"Watching {symbol}.")
        if self._listener is not None:
            self._listener.add_symbol(symbol)
        return True

    def remove(self, token: "str | Symbol") -> bool:
        """Removes a symbol.

        Returns:
            False if the symbol was not watched.

        Raises:
            InvalidSymbolFormat: If the token is malformed. Nothing changes.
        """
        symbol = normalize(token)
        if symbol not in self._symbols:
            logger.debug(f"{symbol} is not watched.")
            return False
        del self._symbols[symbol]
        logger.info(f"Stopped watching {symbol}.")
        if self._listener is not None:
            self._listener.remove_symbol(symbol)
        return True

    def symbols(self) -> list[Symbol]:
        """Returns the watched symbols in insertion order."""
        return list(self._symbols)

    def symbols_for(self, segment: MarketSegment) -> list[Symbol]:
        """Returns the watched symbols of one segment in insertion order."""
        return [s for s in self._symbols if s.segment is segment]

    def segments(self) -> list[MarketSegment]:
        """Returns every segment that has at least one watched symbol."""
        return list(dict.fromkeys(s.segment for s in self._symbols))

    def index_of(self, token: "str | Symbol") -> int:
        """Returns a symbol's position, or -1 if it is not watched."""
        symbol = normalize(token)
        for index, watched in enumerate(self._symbols):
            if watched == symbol:
                return index
        return -1

    def __contains__(self, token: object) -> bool:
        if not isinstance(token, str | Symbol):
            return False
        try:
            return normalize(token) in self._symbols
        except InvalidSymbolFormat:
            return False

    def __len__(self) -> int:
        return len(self._symbols)
