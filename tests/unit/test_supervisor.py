import asyncio

import pytest
from pytest_mock import MockerFixture

from coinwidget.connection import ABNORMAL_CLOSE_CODE, INTENTIONAL_CLOSE_CODE
from coinwidget.supervisor import RETRY_DELAY_S, ReconnectionSupervisor
from coinwidget.symbols import MarketSegment

SPOT = MarketSegment.SPOT
PERP = MarketSegment.PERPETUAL
SHORT_DELAY_S = 0.02


def test_default_delay_is_five_seconds(mocker: MockerFixture) -> None:
    supervisor = ReconnectionSupervisor(mocker.Mock())
    assert supervisor.delay_s == RETRY_DELAY_S == 5.0


@pytest.mark.asyncio
async def test_unexpected_close_schedules_one_retry(mocker: MockerFixture) -> None:
    reconnect = mocker.Mock()
    supervisor = ReconnectionSupervisor(reconnect, delay_s=SHORT_DELAY_S)

    assert supervisor.on_close(SPOT, ABNORMAL_CLOSE_CODE, "")
    # A second loss before the timer fires must not add another timer.
    assert not supervisor.on_close(SPOT, ABNORMAL_CLOSE_CODE, "")
    assert supervisor.is_pending(SPOT)
    reconnect.assert_not_called()

    await asyncio.sleep(SHORT_DELAY_S * 5)

    reconnect.assert_called_once_with(SPOT)
    assert not supervisor.is_pending(SPOT)


@pytest.mark.asyncio
async def test_intentional_close_is_not_retried(mocker: MockerFixture) -> None:
    reconnect = mocker.Mock()
    supervisor = ReconnectionSupervisor(reconnect, delay_s=SHORT_DELAY_S)

    assert not supervisor.on_close(SPOT, INTENTIONAL_CLOSE_CODE, "no more symbols")
    await asyncio.sleep(SHORT_DELAY_S * 3)

    reconnect.assert_not_called()


@pytest.mark.asyncio
async def test_segments_are_supervised_independently(mocker: MockerFixture) -> None:
    reconnect = mocker.Mock()
    supervisor = ReconnectionSupervisor(reconnect, delay_s=SHORT_DELAY_S)

    assert supervisor.on_close(SPOT, ABNORMAL_CLOSE_CODE, "")
    assert supervisor.on_close(PERP, ABNORMAL_CLOSE_CODE, "")
    await asyncio.sleep(SHORT_DELAY_S * 5)

    assert sorted(c.args[0].value for c in reconnect.call_args_list) == ["PERP", "SPOT"]


@pytest.mark.asyncio
async def test_cancel_prevents_retry(mocker: MockerFixture) -> None:
    reconnect = mocker.Mock()
    supervisor = ReconnectionSupervisor(reconnect, delay_s=SHORT_DELAY_S)

    supervisor.on_close(SPOT, ABNORMAL_CLOSE_CODE, "")
    assert supervisor.cancel(SPOT)
    assert not supervisor.cancel(SPOT)
    await asyncio.sleep(SHORT_DELAY_S * 3)

    reconnect.assert_not_called()


@pytest.mark.asyncio
async def test_shutdown_blocks_scheduling_and_pending_retries(
    mocker: MockerFixture,
) -> None:
    reconnect = mocker.Mock()
    supervisor = ReconnectionSupervisor(reconnect, delay_s=SHORT_DELAY_S)
    supervisor.on_close(SPOT, ABNORMAL_CLOSE_CODE, "")

    supervisor.begin_shutdown()
    assert not supervisor.on_close(PERP, ABNORMAL_CLOSE_CODE, "")
    supervisor.cancel_all()
    await asyncio.sleep(SHORT_DELAY_S * 3)

    reconnect.assert_not_called()
    assert not supervisor.is_pending(SPOT)
    assert not supervisor.is_pending(PERP)
