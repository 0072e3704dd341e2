import pytest
from pytest_mock import MockerFixture

from coinwidget.errors import InvalidSymbolFormat
from coinwidget.symbols import MarketSegment, normalize
from coinwidget.watchlist import WatchList


@pytest.fixture
def watchlist() -> WatchList:
    """Provides a watch-list seeded with the default symbols."""
    return WatchList(["BTCUSDT", "ETHUSDT"])


def test_defaults_keep_insertion_order(watchlist: WatchList) -> None:
    assert [str(s) for s in watchlist.symbols()] == ["BTCUSDT", "ETHUSDT"]
    assert len(watchlist) == 2


def test_duplicate_defaults_are_collapsed() -> None:
    watchlist = WatchList(["BTC", "btcusdt", "BTC/USDT"])
    assert len(watchlist) == 1


def test_add_notifies_listener(watchlist: WatchList, mocker: MockerFixture) -> None:
    listener = mocker.Mock()
    watchlist.bind(listener)

    assert watchlist.add("sol")

    listener.add_symbol.assert_called_once_with(normalize("SOLUSDT"))
    assert [str(s) for s in watchlist.symbols()] == ["BTCUSDT", "ETHUSDT", "SOLUSDT"]


def test_adding_present_symbol_is_a_noop(
    watchlist: WatchList, mocker: MockerFixture
) -> None:
    listener = mocker.Mock()
    watchlist.bind(listener)

    assert not watchlist.add("btcusdt")
    assert not watchlist.add("BTC/USDT")

    listener.add_symbol.assert_not_called()
    assert len(watchlist) == 2


def test_remove_notifies_listener_after_mutation(
    watchlist: WatchList, mocker: MockerFixture
) -> None:
    seen_while_notified: list[int] = []
    listener = mocker.Mock()
    listener.remove_symbol.side_effect = lambda _s: seen_while_notified.append(
        len(watchlist)
    )
    watchlist.bind(listener)

    assert watchlist.remove("ETHUSDT")

    listener.remove_symbol.assert_called_once_with(normalize("ETHUSDT"))
    assert seen_while_notified == [1]


def test_removing_absent_symbol_returns_false(
    watchlist: WatchList, mocker: MockerFixture
) -> None:
    listener = mocker.Mock()
    watchlist.bind(listener)

    assert not watchlist.remove("DOGEUSDT")
    listener.remove_symbol.assert_not_called()


def test_invalid_token_does_not_mutate(watchlist: WatchList) -> None:
    with pytest.raises(InvalidSymbolFormat):
        watchlist.add("")
    with pytest.raises(InvalidSymbolFormat):
        watchlist.remove("//")
    assert len(watchlist) == 2


def test_segment_views(watchlist: WatchList) -> None:
    watchlist.add("BTCUSDTPERP")

    assert watchlist.segments() == [MarketSegment.SPOT, MarketSegment.PERPETUAL]
    assert [str(s) for s in watchlist.symbols_for(MarketSegment.PERPETUAL)] == [
        "BTCUSDTPERP"
    ]
    assert len(watchlist.symbols_for(MarketSegment.SPOT)) == 2


def test_index_and_membership(watchlist: WatchList) -> None:
    assert watchlist.index_of("eth") == 1
    assert watchlist.index_of("SOLUSDT") == -1
    assert "btc/usdt" in watchlist
    assert "BTCUSDTPERP" not in watchlist
    assert "" not in watchlist
    assert 42 not in watchlist
