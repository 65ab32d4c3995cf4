from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from market_watcher.broker.telegram_client import reply_keyboard
from market_watcher.metrics import metrics_registry
from market_watcher.signal.subscriber_registry import DeliverFn, SubscriberRegistry
from market_watcher.utils.logger import LOGGER as logger

START_COMMAND = "start"
STOP_COMMAND = "stop"

DEFAULT_KEYBOARD = ("Start", "Stop")
SUBSCRIBED_KEYBOARD = ("Stop",)
UNSUBSCRIBED_KEYBOARD = ("Start",)


class MessageTransport(Protocol):
    def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> Awaitable[Any]: ...


@dataclass(frozen=True)
class CommandReply:
    text: str
    keyboard: tuple[str, ...] = DEFAULT_KEYBOARD

    def reply_markup(self) -> dict[str, Any]:
        return reply_keyboard(*self.keyboard)


def bind_delivery(transport: MessageTransport, chat_id: int, parse_mode: Optional[str] = None) -> DeliverFn:
    """Returns a delivery capability that sends text to one chat."""

    async def deliver(text: str) -> Any:
        return await transport.send_message(chat_id, text, parse_mode=parse_mode)

    return deliver


def normalize_command(text: str) -> str:
    command = text.strip().lower()
    if command.startswith("/"):
        command = command[1:]
    # Group chats address commands as "/start@BotName".
    return command.split("@", 1)[0]


class CommandHandler:
    """
    Maps chat commands to subscriber registry mutations and replies to the sender.
    """

    def __init__(
        self,
        registry: SubscriberRegistry,
        transport: MessageTransport,
        parse_mode: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.parse_mode = parse_mode

    def build_reply(self, chat_id: int, text: str) -> CommandReply:
        command = normalize_command(text)
        metrics_registry.record_command(command if command in (START_COMMAND, STOP_COMMAND) else "other")

        if command == START_COMMAND:
            if not self.registry.add(chat_id, bind_delivery(self.transport, chat_id, self.parse_mode)):
                return CommandReply(f"Already activated this chat ({chat_id}).")
            metrics_registry.record_subscriber_count(len(self.registry))
            return CommandReply(f"Subscribing... (Chat: {chat_id})", SUBSCRIBED_KEYBOARD)

        if command == STOP_COMMAND:
            if self.registry.remove(chat_id):
                metrics_registry.record_subscriber_count(len(self.registry))
                return CommandReply(f"Unsubscribed you. (Chat: {chat_id})", UNSUBSCRIBED_KEYBOARD)
            return CommandReply(f"Couldn't unsubscribe you. You probably aren't subscribed. (Chat: {chat_id})")

        return CommandReply(f"Unrecognised command: '{text}'")

    async def handle(self, chat_id: int, text: str) -> CommandReply:
        logger.info(f"Received '{text}' from chat {chat_id}")
        reply = self.build_reply(chat_id, text)
        try:
            await self.transport.send_message(chat_id, reply.text, reply_markup=reply.reply_markup())
        except Exception as e:
            logger.error(f"Failed to reply to chat {chat_id}: {e}")
        return reply

    async def handle_update(self, update: dict[str, Any]) -> Optional[CommandReply]:
        """Handles one Bot API update; anything other than a text message is ignored."""
        message = update.get("message")
        if not isinstance(message, dict):
            return None
        chat = message.get("chat")
        text = message.get("text")
        if not isinstance(chat, dict) or not isinstance(text, str) or not isinstance(chat.get("id"), int):
            logger.debug(f"Ignoring non-text update {update.get('update_id')}")
            return None
        return await self.handle(chat["id"], text)
