import sys
import tomllib
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, ClassVar, TypeVar

from loguru import logger

from coinwidget.symbols import REST_ENDPOINTS, STREAM_ENDPOINTS, MarketSegment

# --- Constants ---
APP_NAME = "coinwidget"
# Use a platform-agnostic user config directory
if sys.platform == "win32":
    CONFIG_DIR = Path.home() / "AppData" / "Roaming" / APP_NAME
else:
    CONFIG_DIR = Path.home() / ".config" / APP_NAME

CONFIG_FILE = CONFIG_DIR / "config.toml"

# Kline intervals accepted by the venue's REST API.
SUPPORTED_INTERVALS: tuple[str, ...] = (
    "1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "8h", "12h", "1d",
)

_INTERVAL_UNIT_MINUTES: dict[str, int] = {"m": 1, "h": 60, "d": 1440}


def interval_to_minutes(interval: str) -> int:
    """Returns the length of a supported kline interval in minutes.

    Raises:
        ValueError: If the interval is not supported.
    """
    if interval not in SUPPORTED_INTERVALS:
        err_msg = f"Unsupported kline interval: {interval}"
        raise ValueError(err_msg)
    return int(interval[:-1]) * _INTERVAL_UNIT_MINUTES[interval[-1]]


DEFAULT_CONFIG_TEMPLATE = """\
# CoinWidget Configuration File
# Uncomment and edit any value to override the default.

# [general]
# log_level_console = "INFO"
# log_level_file = "DEBUG"

# [stream]
# default_symbols = ["BTCUSDT", "ETHUSDT"]
# retry_delay_s = 5.0

# [history]
# interval = "1m"
# interval_minutes = 1
# history_hours = 6
"""

T = TypeVar("T")


@dataclass
class GeneralSettings:
    """General application settings."""

    log_level_console: str = "INFO"
    log_level_file: str = "DEBUG"
    log_directory: str = str(CONFIG_DIR / "logs")


@dataclass
class StreamSettings:
    """Settings for the live ticker streams."""

    spot_stream_url: str = STREAM_ENDPOINTS[MarketSegment.SPOT]
    perpetual_stream_url: str = STREAM_ENDPOINTS[MarketSegment.PERPETUAL]
    default_symbols: list[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    retry_delay_s: float = 5.0
    update_queue_size: int = 1000

    def endpoints(self) -> dict[MarketSegment, str]:
        """Returns the stream endpoint of each segment."""
        return {
            MarketSegment.SPOT: self.spot_stream_url,
            MarketSegment.PERPETUAL: self.perpetual_stream_url,
        }


@dataclass
class HistorySettings:
    """Settings for the historical chart data the UI loads."""

    spot_rest_url: str = REST_ENDPOINTS[MarketSegment.SPOT]
    perpetual_rest_url: str = REST_ENDPOINTS[MarketSegment.PERPETUAL]
    interval: str = "1m"
    interval_minutes: int = 1
    history_hours: int = 6

    @property
    def max_points(self) -> int:
        """Number of chart points kept for the configured window."""
        return self.history_hours * 60 // self.interval_minutes

    def endpoints(self) -> dict[MarketSegment, str]:
        """Returns the REST base URL of each segment."""
        return {
            MarketSegment.SPOT: self.spot_rest_url,
            MarketSegment.PERPETUAL: self.perpetual_rest_url,
        }


@dataclass
class Settings:
    """Root container for all application settings."""

    general: GeneralSettings = field(default_factory=GeneralSettings)
    stream: StreamSettings = field(default_factory=StreamSettings)
    history: HistorySettings = field(default_factory=HistorySettings)

    _instance: ClassVar["Settings | None"] = None

    @classmethod
    def get_instance(cls) -> "Settings":
        """Returns the singleton instance of the Settings object."""
        if cls._instance is None:
            cls._instance = load_config()
        return cls._instance

    def validate(self) -> None:
        """Checks values that would make the application unusable.

        Raises:
            ValueError: On the first invalid value found.
        """
        if self.stream.retry_delay_s <= 0:
            err_msg = f"retry_delay_s must be positive, got {self.stream.retry_delay_s}"
            raise ValueError(err_msg)
        if self.stream.update_queue_size < 0:
            err_msg = "update_queue_size must not be negative."
            raise ValueError(err_msg)
        if self.history.interval not in SUPPORTED_INTERVALS:
            err_msg = f"Unsupported history interval: {self.history.interval}"
            raise ValueError(err_msg)
        if self.history.interval_minutes <= 0 or self.history.history_hours <= 0:
            err_msg = "History window and interval must be positive."
            raise ValueError(err_msg)
        if self.history.interval_minutes != interval_to_minutes(self.history.interval):
            err_msg = (
                f"interval_minutes={self.history.interval_minutes} does not match "
                f"interval '{self.history.interval}'."
            )
            raise ValueError(err_msg)


def _update_dataclass(dc_instance: T, data: dict[str, Any]) -> T:
    """Recursively updates a dataclass instance from a dictionary."""
    for f in fields(dc_instance):  # type: ignore[arg-type]
        if f.name not in data:
            continue
        field_value = getattr(dc_instance, f.name)
        if is_dataclass(field_value) and isinstance(data[f.name], dict):
            _update_dataclass(field_value, data[f.name])
        else:
            setattr(dc_instance, f.name, data[f.name])
    return dc_instance


def load_config(path: Path = CONFIG_FILE) -> Settings:
    """Loads settings from a TOML file, merging them with defaults.

    If the config file does not exist, it creates one with commented-out
    defaults.

    Args:
        path: The path to the configuration file.

    Returns:
        A populated Settings object.
    """
    settings_obj = Settings()
    logger.info(f"Loading configuration from '{path}'...")

    if not path.exists():
        logger.warning(f"Configuration file not found. Creating default at '{path}'.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to create default config file: {e}")
        return settings_obj

    try:
        with path.open("rb") as f:
            user_config = tomllib.load(f)
        _update_dataclass(settings_obj, user_config)
        logger.success("Successfully loaded user configuration.")
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Error decoding TOML from '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
        settings_obj = Settings()
    except OSError as e:
        logger.error(f"Could not read configuration file '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")

    return settings_obj
