# src/coinwidget/__init__.py
"""CoinWidget: the streaming core of a desktop cryptocurrency price widget.

This package owns the live connection to the exchange's ticker streams and
everything needed to keep it consistent with the user's watch-list. The UI
layer only talks to `coinwidget.core.StreamCore`.

Key modules:
- `symbols`: Pure symbol normalization and segment/endpoint mapping.
- `connection`: One websocket per market segment, as an explicit state machine.
- `multiplexer`: Subscription bookkeeping across reconnects.
- `supervisor`: Fixed-delay reconnection scheduling.
- `watchlist`: The ordered, mutable set of watched symbols.
- `dispatcher`: Decoding of inbound frames into `PriceRecord`s.
- `history`: REST helpers used by the UI for historical chart data.
"""

import importlib.metadata

try:
    __version__: str = importlib.metadata.version("coinwidget")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0-dev"
