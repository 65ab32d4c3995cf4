from unittest.mock import AsyncMock

import pytest

from market_watcher.bot.command_handler import CommandHandler, normalize_command
from market_watcher.signal.subscriber_registry import SubscriberRegistry
from market_watcher.utils.logger import LOGGER as logger

CHAT_ID = 4242


@pytest.fixture
def transport():
    return AsyncMock()


@pytest.fixture
def handler(transport):
    return CommandHandler(SubscriberRegistry(), transport, parse_mode="Markdown")


@pytest.mark.parametrize(
    "text, expected",
    [("start", "start"), ("  STOP ", "stop"), ("/start", "start"), ("/Stop@SlowWatcherBot", "stop"), ("hello", "hello")],
)
def test_normalize_command(text, expected):
    assert normalize_command(text) == expected


def test_start_start_stop_stop_sequence(handler):
    logger.info("\n--- Starting test_start_start_stop_stop_sequence ---")

    first = handler.build_reply(CHAT_ID, "start")
    assert first.text == f"Subscribing... (Chat: {CHAT_ID})"
    assert first.keyboard == ("Stop",)
    assert len(handler.registry) == 1

    second = handler.build_reply(CHAT_ID, "Start")
    assert second.text == f"Already activated this chat ({CHAT_ID})."
    assert len(handler.registry) == 1

    third = handler.build_reply(CHAT_ID, "stop")
    assert third.text == f"Unsubscribed you. (Chat: {CHAT_ID})"
    assert third.keyboard == ("Start",)
    assert len(handler.registry) == 0

    fourth = handler.build_reply(CHAT_ID, "stop")
    assert fourth.text == f"Couldn't unsubscribe you. You probably aren't subscribed. (Chat: {CHAT_ID})"
    assert fourth.keyboard == ("Start", "Stop")


def test_unrecognised_command_echoes_raw_text(handler):
    reply = handler.build_reply(CHAT_ID, "Buy VOO")
    assert reply.text == "Unrecognised command: 'Buy VOO'"
    assert len(handler.registry) == 0


@pytest.mark.asyncio
async def test_subscription_delivers_through_transport(handler, transport):
    handler.build_reply(CHAT_ID, "/start")
    (subscription,) = handler.registry.snapshot()

    await subscription.deliver("*VOO*")

    transport.send_message.assert_awaited_once_with(CHAT_ID, "*VOO*", parse_mode="Markdown")


@pytest.mark.asyncio
async def test_handle_replies_with_keyboard(handler, transport):
    reply = await handler.handle(CHAT_ID, "start")

    transport.send_message.assert_awaited_once_with(
        CHAT_ID,
        reply.text,
        reply_markup={"keyboard": [[{"text": "Stop"}]], "resize_keyboard": True},
    )


@pytest.mark.asyncio
async def test_reply_failure_keeps_subscription(handler, transport):
    transport.send_message.side_effect = RuntimeError("network down")

    await handler.handle(CHAT_ID, "start")

    assert handler.registry.contains(CHAT_ID)


@pytest.mark.asyncio
async def test_handle_update_ignores_non_text(handler, transport):
    assert await handler.handle_update({"update_id": 1, "edited_message": {}}) is None
    assert await handler.handle_update({"update_id": 2, "message": {"chat": {"id": 1}, "sticker": {}}}) is None
    transport.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_handle_update_dispatches_text(handler):
    reply = await handler.handle_update({"update_id": 3, "message": {"chat": {"id": CHAT_ID}, "text": "start"}})
    assert reply is not None
    assert handler.registry.contains(CHAT_ID)
