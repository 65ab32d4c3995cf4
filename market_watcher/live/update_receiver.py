import asyncio
from typing import Any, Optional, Protocol

from market_watcher.bot.command_handler import CommandHandler
from market_watcher.broker.telegram_client import TelegramAPIError
from market_watcher.utils.config_loader import TelegramConfig
from market_watcher.utils.logger import LOGGER as logger


class UpdateSource(Protocol):
    async def get_updates(self, offset: Optional[int] = None, timeout: int = 0) -> list[dict[str, Any]]: ...


class UpdateReceiver:
    """
    Long-polls the transport for incoming messages and feeds them to the command handler.
    The offset advances past every update seen, handled or not, so nothing is redelivered.
    """

    def __init__(self, source: UpdateSource, handler: CommandHandler, telegram_config: TelegramConfig) -> None:
        self.source = source
        self.handler = handler
        self.poll_timeout = telegram_config.poll_timeout_seconds
        self.retry_delay = telegram_config.retry_delay_seconds

        self._offset: Optional[int] = None
        self._receiver_task: Optional[asyncio.Task[None]] = None
        self._is_running = False
        self._lock = asyncio.Lock()

    async def poll_once(self) -> int:
        """Fetches and handles one batch of updates. Returns the number received."""
        updates = await self.source.get_updates(offset=self._offset, timeout=self.poll_timeout)
        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                self._offset = max(self._offset or 0, update_id + 1)
            try:
                await self.handler.handle_update(update)
            except Exception as e:
                logger.opt(exception=True).error(f"Error handling update {update_id}: {e}")
        return len(updates)

    async def _run_receiver(self) -> None:
        logger.info("Update receiver started.")
        try:
            while self._is_running:
                try:
                    await self.poll_once()
                except TelegramAPIError as e:
                    logger.error(f"Receiving updates failed: {e}. Retrying in {self.retry_delay}s.")
                    await asyncio.sleep(self.retry_delay)
                except Exception as e:
                    logger.opt(exception=True).error(f"Unexpected error in update receiver: {e}")
                    await asyncio.sleep(self.retry_delay)
        except asyncio.CancelledError:
            logger.info("Update receiver cancelled")
            raise
        finally:
            logger.info("Update receiver loop ended")

    async def start(self) -> None:
        async with self._lock:
            if self._is_running:
                logger.warning("Update receiver is already running")
                return
            self._is_running = True
            self._receiver_task = asyncio.create_task(self._run_receiver())

    async def stop(self) -> None:
        async with self._lock:
            if not self._is_running:
                return
            self._is_running = False

        if self._receiver_task:
            self._receiver_task.cancel()
            try:
                await self._receiver_task
            except asyncio.CancelledError:
                logger.info("Update receiver stopped successfully")
            except Exception as e:
                logger.error(f"Error stopping update receiver: {e}")
            finally:
                self._receiver_task = None

    def is_running(self) -> bool:
        return self._is_running
