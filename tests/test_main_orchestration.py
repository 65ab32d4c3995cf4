import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from main import SHUTDOWN_NOTICE, main, main_async, run_service
from market_watcher.broker.alpha_vantage_client import AlphaVantageClient
from market_watcher.broker.telegram_client import TelegramAPIError, TelegramBotClient
from market_watcher.utils.logger import LOGGER as logger
from market_watcher.utils.time_helper import today_utc


async def block_forever(*args, **kwargs):
    await asyncio.Event().wait()


@pytest.fixture
def transport():
    mock = AsyncMock(spec=TelegramBotClient)
    mock.get_me.return_value = {"id": 1, "username": "slow_watcher_bot"}
    mock.get_updates.side_effect = block_forever
    return mock


@pytest.fixture
def provider(make_series, make_payload):
    mock = AsyncMock(spec=AlphaVantageClient)
    series = make_series([float(c) for c in range(10, 25)], end=today_utc())
    mock.fetch_daily_series.side_effect = lambda symbol: make_payload(series, symbol=symbol)
    mock.search_symbol_name.return_value = None
    return mock


def sent_texts(transport, recipient_id):
    return [c.args[1] for c in transport.send_message.await_args_list if c.args[0] == recipient_id]


@pytest.mark.asyncio
async def test_run_service_startup_poll_and_shutdown(app_config, transport, provider):
    logger.info("\n--- Starting test_run_service_startup_poll_and_shutdown ---")
    Path(app_config.persistence.path).write_text("1\n2\n", encoding="utf-8")
    shutdown_event = asyncio.Event()

    async def shutdown_after_updates():
        while sum(1 for c in transport.send_message.await_args_list if c.kwargs.get("parse_mode")) < 4:
            await asyncio.sleep(0.01)
        shutdown_event.set()

    watcher = asyncio.create_task(shutdown_after_updates())
    await asyncio.wait_for(run_service(app_config, shutdown_event, transport, provider), timeout=5)
    await watcher

    for recipient_id in (1, 2):
        texts = sent_texts(transport, recipient_id)
        assert texts[0] == "slow_watcher_bot is active again!"
        assert texts[1].startswith("*VGK*")
        assert texts[2].startswith("*VOO*")
        assert "14 period SMA: 18.21" in texts[2]
        assert texts[-1] == SHUTDOWN_NOTICE

    assert Path(app_config.persistence.path).read_text(encoding="utf-8") == "1\n2\n"
    provider.close.assert_awaited_once()
    transport.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_service_without_persisted_subscribers(app_config, transport, provider):
    app_config.scheduler.run_on_startup = False
    shutdown_event = asyncio.Event()
    shutdown_event.set()

    await asyncio.wait_for(run_service(app_config, shutdown_event, transport, provider), timeout=5)

    transport.send_message.assert_not_awaited()
    provider.fetch_daily_series.assert_not_awaited()
    assert Path(app_config.persistence.path).read_text(encoding="utf-8") == ""


@pytest.mark.asyncio
async def test_run_service_fails_fast_on_bad_token(app_config, transport, provider):
    Path(app_config.persistence.path).write_text("1\n2\n", encoding="utf-8")
    transport.get_me.side_effect = TelegramAPIError("getMe", "Unauthorized", 401)

    with pytest.raises(RuntimeError):
        await run_service(app_config, asyncio.Event(), transport, provider)

    provider.fetch_daily_series.assert_not_awaited()
    provider.close.assert_awaited_once()
    transport.close.assert_awaited_once()
    transport.send_message.assert_not_awaited()
    assert Path(app_config.persistence.path).read_text(encoding="utf-8") == "1\n2\n"


@pytest.mark.asyncio
async def test_unreadable_recipient_file_is_left_untouched(app_config, transport, provider):
    persisted = Path(app_config.persistence.path)
    persisted.write_bytes(b"111\n222\n\xff\n")
    app_config.scheduler.run_on_startup = False
    shutdown_event = asyncio.Event()
    shutdown_event.set()

    await asyncio.wait_for(run_service(app_config, shutdown_event, transport, provider), timeout=5)

    assert persisted.read_bytes() == b"111\n222\n\xff\n"
    transport.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_main_async_rejects_missing_config(tmp_path):
    with pytest.raises(RuntimeError):
        await main_async(str(tmp_path / "missing.yaml"))


def test_main_exits_with_status_one_on_fatal_error():
    failing = AsyncMock(side_effect=RuntimeError("bad payload {'symbol': 'VOO'}"))

    with patch("main.main_async", failing), pytest.raises(SystemExit) as exc_info:
        main()

    assert exc_info.value.code == 1


if __name__ == "__main__":
    pytest.main([__file__])
