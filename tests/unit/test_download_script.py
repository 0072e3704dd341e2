import importlib.util
from pathlib import Path
from types import ModuleType

import pytest
from pytest_mock import MockerFixture

from coinwidget.config import HistorySettings, Settings

SCRIPT_PATH = Path(__file__).parents[2] / "scripts" / "download_historical.py"


@pytest.fixture
def script() -> ModuleType:
    """Loads the download script as a module."""
    spec = importlib.util.spec_from_file_location("download_historical", SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_defaults_come_from_history_settings(script: ModuleType) -> None:
    defaults = HistorySettings(interval="15m", interval_minutes=15, history_hours=12)
    args = script._parse_args(["ETHUSDT"], defaults)
    assert args.symbol == "ETHUSDT"
    assert args.interval == "15m"
    assert args.hours == 12.0


@pytest.mark.parametrize(
    "argv",
    [
        ["BTCUSDT", "--hours", "abc"],
        ["BTCUSDT", "--hours", "0"],
        ["BTCUSDT", "--interval", "7m"],
        [],
    ],
)
def test_bad_arguments_exit_with_usage_error(
    script: ModuleType, argv: list[str]
) -> None:
    with pytest.raises(SystemExit) as exc_info:
        script._parse_args(argv, HistorySettings())
    assert exc_info.value.code == 2


def test_main_passes_configured_settings_to_download(
    script: ModuleType, mocker: MockerFixture
) -> None:
    settings = Settings()
    settings.history.spot_rest_url = "https://rest.example.test/api/v3"
    mocker.patch.object(script.Settings, "get_instance", return_value=settings)
    download = mocker.patch.object(script, "download", mocker.AsyncMock(return_value=0))

    assert script.main(["BTCUSDT", "--interval", "5m", "--hours", "2"]) == 0
    download.assert_awaited_once_with("BTCUSDT", "5m", 2.0, settings.history)
