import asyncio
from dataclasses import dataclass, field

from market_watcher.core.market_update import MarketUpdate
from market_watcher.metrics import metrics_registry
from market_watcher.signal.subscriber_registry import SubscriberRegistry, Subscription
from market_watcher.utils.logger import LOGGER as logger


@dataclass
class PublishResult:
    attempted: int = 0
    delivered: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class MarketEventBus:
    """
    Fans a completed update out to a snapshot of the registry.
    Members added after the snapshot miss the update; members removed after it still get it.
    There is no buffering and no retry.
    """

    def __init__(self, registry: SubscriberRegistry) -> None:
        self.registry = registry

    async def publish(self, update: MarketUpdate) -> PublishResult:
        async def _deliver(subscription: Subscription) -> None:
            await subscription.deliver(update.message)

        outcomes = await self.registry.for_each_snapshot(_deliver)
        result = PublishResult(attempted=len(outcomes))
        if not outcomes:
            logger.info(f"No subscribers for {update.symbol} update; nothing to deliver.")
            return result

        for subscription, outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                result.failed.append(subscription.recipient_id)
                logger.opt(exception=outcome).error(
                    f"Delivery of {update.symbol} update to {subscription.recipient_id} failed: {outcome}"
                )
            else:
                result.delivered.append(subscription.recipient_id)

        metrics_registry.record_deliveries(len(result.delivered), len(result.failed))
        logger.info(
            f"Published {update.symbol} update: {len(result.delivered)}/{result.attempted} delivered, "
            f"{len(result.failed)} failed."
        )
        return result
