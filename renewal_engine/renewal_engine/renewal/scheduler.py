"""Create renewal orders for subscriptions whose next payment is due.

Subscriptions renewed manually are put on hold until the customer pays the
new order; automatic ones stay active while the gateway charges it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from renewal_engine.context import ProcessingContext
from renewal_engine.exceptions import RenewalEngineError
from renewal_engine.lifecycle.service import SubscriptionLifecycle
from renewal_engine.models.subscription import NoteSource
from renewal_engine.renewal.factory import RenewalOrderFactory
from renewal_engine.state.repository import RenewalOrderRepository, SubscriptionRepository

logger = logging.getLogger(__name__)


@dataclass
class RenewalRunResult:
    scanned: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0
    order_ids: list[int] = field(default_factory=list)


class RenewalScheduler:
    """Scan for due subscriptions and create their renewal orders."""

    def __init__(self, ctx: ProcessingContext) -> None:
        self._ctx = ctx.with_source(NoteSource.SCHEDULER)
        self._subscriptions = SubscriptionRepository(ctx.session)
        self._orders = RenewalOrderRepository(ctx.session)
        self._factory = RenewalOrderFactory(self._ctx)
        self._lifecycle = SubscriptionLifecycle(self._ctx)

    async def process_due_renewals(self, limit: int | None = None) -> RenewalRunResult:
        """Create one renewal order per due subscription, up to *limit*.

        A subscription that fails is logged and counted; the rest of the
        batch still runs.
        """
        result = RenewalRunResult()
        now = self._ctx.now()
        due = await self._subscriptions.find_due_for_renewal(
            now, limit or self._ctx.settings.renewal_batch_size
        )

        for subscription_id in due:
            result.scanned += 1
            try:
                subscription = await self._subscriptions.load_subscription(subscription_id)
                cycle = subscription.next_payment_at
                if cycle is None or await self._orders.count_for_cycle(subscription_id, cycle) > 0:
                    result.skipped += 1
                    continue

                order = await self._factory.create_renewal_order(subscription)
                if subscription.is_manual:
                    await self._lifecycle.suspend(
                        subscription,
                        f"Waiting for payment of renewal order #{order.id}.",
                        order_id=order.id,
                    )
                result.created += 1
                result.order_ids.append(order.id)
            except RenewalEngineError as exc:
                result.errors += 1
                logger.warning("Could not renew subscription %s: %s", subscription_id, exc)

        logger.info(
            "Renewal run: scanned=%d created=%d skipped=%d errors=%d",
            result.scanned,
            result.created,
            result.skipped,
            result.errors,
        )
        return result
