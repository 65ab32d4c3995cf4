import asyncio
import signal
from typing import Optional

from market_watcher.bot.command_handler import CommandHandler, bind_delivery
from market_watcher.broker.alpha_vantage_client import AlphaVantageClient
from market_watcher.broker.telegram_client import TelegramAPIError, TelegramBotClient
from market_watcher.database.recipient_repo import RecipientRepository
from market_watcher.live.market_data_job import MarketDataJob
from market_watcher.live.update_receiver import UpdateReceiver
from market_watcher.metrics import metrics_registry
from market_watcher.signal.event_bus import MarketEventBus
from market_watcher.signal.subscriber_registry import SubscriberRegistry, Subscription
from market_watcher.utils.config_loader import AppConfig, ConfigLoader
from market_watcher.utils.logger import LOGGER as logger
from market_watcher.utils.logger import LoggerSetup
from market_watcher.utils.scheduler import Scheduler

SHUTDOWN_NOTICE = "Bot is shutting down temporarily."


async def hydrate_registry(
    registry: SubscriberRegistry,
    recipient_repo: RecipientRepository,
    transport: TelegramBotClient,
    parse_mode: Optional[str],
) -> list[int]:
    """Load persisted recipients into the in-memory registry."""
    logger.info("Hydrating subscriber registry from persistence...")
    recipients = await recipient_repo.load_recipients()
    for recipient_id in recipients:
        registry.add(recipient_id, bind_delivery(transport, recipient_id, parse_mode))
    metrics_registry.record_subscriber_count(len(registry))
    logger.info(f"Hydrated {len(registry)} subscribers.")
    return recipients


async def broadcast_notice(registry: SubscriberRegistry, transport: TelegramBotClient, text: str) -> int:
    """
    Best-effort plain-text notice to every current member. Returns the number delivered.
    """

    async def _send(subscription: Subscription) -> None:
        await transport.send_message(subscription.recipient_id, text)

    delivered = 0
    for subscription, outcome in await registry.for_each_snapshot(_send):
        if isinstance(outcome, BaseException):
            logger.warning(f"Could not send notice to {subscription.recipient_id}: {outcome}")
        else:
            delivered += 1
    return delivered


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still reaches main().
            logger.debug(f"Signal handler for {sig.name} not installed")


async def run_service(
    config: AppConfig,
    shutdown_event: asyncio.Event,
    transport: Optional[TelegramBotClient] = None,
    provider: Optional[AlphaVantageClient] = None,
) -> None:
    """
    Wires the service, runs it until shutdown_event is set, then shuts it down in order.
    """
    transport = transport or TelegramBotClient(config.telegram, config.secrets.telegram_access_token)
    provider = provider or AlphaVantageClient(config.market_data, config.secrets.alpha_vantage_api_key)
    parse_mode = config.telegram.parse_mode

    recipient_repo = RecipientRepository(config.persistence.path)
    registry = SubscriberRegistry()
    event_bus = MarketEventBus(registry)
    job = MarketDataJob(provider, event_bus, config.market_data, config.indicators)
    handler = CommandHandler(registry, transport, parse_mode)
    receiver = UpdateReceiver(transport, handler, config.telegram)
    scheduler = Scheduler(job.run, config.scheduler)

    # The recipient file is only rewritten after it was read back in full.
    hydrated = False
    announced = False
    try:
        try:
            await hydrate_registry(registry, recipient_repo, transport, parse_mode)
            hydrated = True
        except RuntimeError as e:
            logger.error(f"Starting without persisted subscribers: {e}")

        try:
            me = await transport.get_me()
        except TelegramAPIError as e:
            logger.critical(f"Failed to identify the bot with Telegram: {e}")
            raise RuntimeError("System cannot proceed without a working Telegram token.") from e

        username = me.get("username") or me.get("first_name") or "Bot"
        logger.info(f"Started {username}")
        notified = await broadcast_notice(registry, transport, f"{username} is active again!")
        announced = True
        logger.info(f"Notified {notified}/{len(registry)} restored subscribers.")

        await receiver.start()
        await scheduler.start()

        await shutdown_event.wait()
        logger.info("Shutdown requested.")
    finally:
        if scheduler.is_running():
            await scheduler.stop()
        if receiver.is_running():
            await receiver.stop()

        if hydrated:
            try:
                await recipient_repo.save_recipients(registry.recipients())
            except RuntimeError as e:
                logger.error(f"Subscriber list not persisted: {e}")
        else:
            logger.warning(
                f"Leaving '{recipient_repo.path}' untouched: it was not loaded, so {len(registry)} "
                "subscriber(s) from this run are not saved."
            )

        if announced:
            await broadcast_notice(registry, transport, SHUTDOWN_NOTICE)

        await provider.close()
        await transport.close()


async def main_async(config_path: Optional[str] = None) -> None:
    """
    Main asynchronous function to run the market watcher.
    """
    config_loader = ConfigLoader(config_path)
    try:
        config = config_loader.get_config()
    except Exception as e:
        logger.critical(f"Failed to load configuration: {e}")
        raise RuntimeError("System cannot start without valid configuration.") from e

    LoggerSetup.setup_logger(config.logging)

    metrics_registry.initialize(config.metrics)
    metrics_registry.start_metrics_server()

    logger.info(f"Starting {config.system.name} {config.system.version}...")
    logger.info(f"Tracking symbols: {', '.join(config.market_data.symbols)}")
    logger.info(f"Schedule: '{config.scheduler.cron_expression}' ({config.scheduler.timezone})")

    shutdown_event = asyncio.Event()
    install_signal_handlers(shutdown_event)

    await run_service(config, shutdown_event)
    logger.info("System shutdown.")


def main() -> None:
    """
    Main entry point for the application.
    """
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        logger.info("System interrupted by user. Shutting down.")
    except Exception as e:
        logger.opt(exception=True).critical(f"Unhandled exception at top level: {e}")
        raise SystemExit(1) from e
    finally:
        logger.complete()


if __name__ == "__main__":
    main()
