import time
from datetime import datetime, timezone


def get_current_ms() -> int:
    """Returns the current time as milliseconds since the Unix epoch.

    Price records are stamped with this on receipt, rather than with the
    exchange's event time.
    """
    return time.time_ns() // 1_000_000


def history_start_ms(history_hours: float, now_ms: int | None = None) -> int:
    """Returns the start of a history window ending now.

    Args:
        history_hours: The length of the window in hours.
        now_ms: The end of the window. Defaults to the current time.

    Returns:
        The window start in epoch milliseconds.
    """
    if now_ms is None:
        now_ms = get_current_ms()
    return now_ms - int(history_hours * 3_600_000)


def ms_to_rfc3339(timestamp_ms: int) -> str:
    """Formats epoch milliseconds as an RFC3339 UTC string.

    Example: 1700000000000 -> "2023-11-14T22:13:20.000Z"
    """
    dt_obj = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt_obj.isoformat(timespec="milliseconds").replace("+00:00", "Z")
