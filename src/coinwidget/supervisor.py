import asyncio
from collections.abc import Callable
from typing import Final

from loguru import logger

from coinwidget.connection import INTENTIONAL_CLOSE_CODE
from coinwidget.symbols import MarketSegment

# Fixed delay before a lost segment is reconnected. There is deliberately no
# backoff, jitter or retry cap.
RETRY_DELAY_S: Final[float] = 5.0


class ReconnectionSupervisor:
    """Schedules at most one delayed reconnect per market segment.

    Only close events drive the supervisor. Socket errors are followed by a
    close, so they are not acted on separately. Closures carrying the
    intentional close code, and any closure once shutdown has begun, are
    never retried.
    """

    def __init__(
        self,
        reconnect: Callable[[MarketSegment], None],
        delay_s: float = RETRY_DELAY_S,
    ) -> None:
        """Initializes the supervisor.

        Args:
            reconnect: Called with the segment when its retry timer fires.
            delay_s: The fixed retry delay in seconds.
        """
        self._reconnect = reconnect
        self.delay_s = delay_s
        self.quitting = False
        self._pending: dict[MarketSegment, asyncio.TimerHandle] = {}

    def is_pending(self, segment: MarketSegment) -> bool:
        """Returns True if a retry is scheduled for the segment."""
        return segment in self._pending

    def on_close(self, segment: MarketSegment, code: int, reason: str) -> bool:
        """Handles a connection closure.

        Returns:
            True if a new retry was scheduled.
        """
        if self.quitting:
            logger.debug(f"[{segment.label}] Shutting down; not reconnecting.")
            return False
        if code == INTENTIONAL_CLOSE_CODE:
            logger.info(
                f"[{segment.label}] Intentional close ('{reason}'); not reconnecting."
            )
            return False
        if segment in self._pending:
            logger.debug(f"[{segment.label}] Retry already pending.")
            return False

        loop = asyncio.get_running_loop()
        self._pending[segment] = loop.call_later(self.delay_s, self._fire, segment)
        logger.warning(
            f"[{segment.label}] Unexpected close (code={code}). "
            f"Reconnecting in {self.delay_s:.2f} seconds."
        )
        return True

    def cancel(self, segment: MarketSegment) -> bool:
        """Cancels the segment's pending retry, if any."""
        handle = self._pending.pop(segment, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug(f"[{segment.label}] Pending retry cancelled.")
        return True

    def cancel_all(self) -> None:
        """Cancels every pending retry."""
        for segment in list(self._pending):
            self.cancel(segment)

    def begin_shutdown(self) -> None:
        """Raises the quitting flag. No retry is scheduled or run afterwards."""
        self.quitting = True

    def _fire(self, segment: MarketSegment) -> None:
        self._pending.pop(segment, None)
        if self.quitting:
            return
        logger.info(f"[{segment.label}] Retry timer fired.")
        self._reconnect(segment)
