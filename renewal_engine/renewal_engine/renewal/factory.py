"""Renewal order creation.

The factory snapshots a subscription's billable line items into a new
``RenewalOrder``, links the order to the subscriptions it renews and
announces it as ``renewal_order.created``.  Validation happens before any
row is written, so a :class:`CreationError` leaves nothing behind.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal

from renewal_engine.context import ProcessingContext
from renewal_engine.events.bus import EventType
from renewal_engine.exceptions import CreationError
from renewal_engine.models.order import OrderKind, OrderStatus, RenewalOrder
from renewal_engine.models.subscription import LineItem, Subscription
from renewal_engine.state.repository import RenewalOrderRepository, SubscriptionRepository

logger = logging.getLogger(__name__)


def _snapshot(subscriptions: Sequence[Subscription]) -> tuple[list[LineItem], Decimal]:
    items = [item.model_copy() for sub in subscriptions for item in sub.billable_items()]
    total = sum((item.line_total for item in items), Decimal("0"))
    return items, total


class RenewalOrderFactory:
    """Create renewal, resubscribe and retry orders."""

    def __init__(self, ctx: ProcessingContext) -> None:
        self._ctx = ctx
        self._orders = RenewalOrderRepository(ctx.session)
        self._subscriptions = SubscriptionRepository(ctx.session)

    async def create_renewal_order(
        self,
        subscription: Subscription,
        *,
        also_renews: Sequence[Subscription] = (),
    ) -> RenewalOrder:
        """Create a pending renewal order for *subscription*'s current cycle.

        Parameters
        ----------
        subscription:
            The subscription being renewed.  Its ``next_payment_at`` is the
            billing cycle the order pays for.
        also_renews:
            Further subscriptions billed on the same order.  They must be
            due at the same ``next_payment_at`` as *subscription*.

        Returns
        -------
        RenewalOrder
            The persisted order, linked to every renewed subscription.

        Raises
        ------
        CreationError
            If a subscription is unsaved or terminal, the subscriptions are
            due at different times, there is nothing to bill, or any of
            them already has an order for this cycle.
        """
        billed = [subscription, *also_renews]
        for sub in billed:
            if sub.id is None:
                raise CreationError("Cannot create a renewal order for an unsaved subscription")
            if sub.is_terminal:
                raise CreationError(
                    f"Subscription {sub.id} is {sub.status.value}; it can no longer be renewed"
                )
        if len({sub.id for sub in billed}) != len(billed):
            raise CreationError("A subscription can appear only once on a renewal order")

        items, total = _snapshot(billed)
        if not items:
            raise CreationError(f"Subscription {subscription.id} has no billable line items")

        cycle = subscription.next_payment_at
        for sub in billed:
            if sub.next_payment_at != cycle:
                raise CreationError(
                    f"Subscription {sub.id} is due at {sub.next_payment_at}, not {cycle}; "
                    "a combined renewal order bills a single cycle"
                )
            if cycle is not None and await self._orders.count_for_cycle(sub.id, cycle) > 0:
                raise CreationError(
                    f"Subscription {sub.id} already has a renewal order for {cycle.isoformat()}"
                )

        order = await self._orders.create(
            RenewalOrder(
                kind=OrderKind.RENEWAL,
                status=OrderStatus.PENDING,
                currency=subscription.currency,
                total=total,
                line_items=items,
                subscription_ids=[sub.id for sub in billed],
                billing_cycle_at=cycle,
            )
        )
        logger.info(
            "Created renewal order %s for subscription(s) %s total=%s %s",
            order.id,
            order.subscription_ids,
            order.total,
            order.currency,
        )
        for sub in billed:
            await self._ctx.events.emit(EventType.RENEWAL_ORDER_CREATED, self._ctx, order=order, subscription=sub)
        return order

    async def create_resubscribe_order(self, subscription: Subscription) -> RenewalOrder:
        """Create an order that starts *subscription* over.

        The order becomes the subscription's parent order.  It is not a
        renewal, so reconciliation ignores it.
        """
        if subscription.id is None:
            raise CreationError("Cannot create a resubscribe order for an unsaved subscription")
        items, total = _snapshot([subscription])
        if not items:
            raise CreationError(f"Subscription {subscription.id} has no billable line items")

        order = await self._orders.create(
            RenewalOrder(
                kind=OrderKind.RESUBSCRIBE,
                status=OrderStatus.PENDING,
                currency=subscription.currency,
                total=total,
                line_items=items,
                subscription_ids=[subscription.id],
                billing_cycle_at=self._ctx.now(),
            )
        )
        updated = subscription.model_copy(update={"parent_order_id": order.id})
        await self._subscriptions.save_subscription(updated)

        logger.info("Created resubscribe order %s for subscription %s", order.id, subscription.id)
        await self._ctx.events.emit(EventType.RENEWAL_ORDER_CREATED, self._ctx, order=order, subscription=updated)
        return order

    async def create_retry_order(self, failed_order_id: int) -> RenewalOrder:
        """Create a new attempt at the cycle *failed_order_id* failed to pay.

        Raises
        ------
        NotFound
            If the failed order does not exist.
        CreationError
            If the order did not fail, was already replaced, or a
            subscription it renews is terminal.
        """
        failed = await self._orders.get(failed_order_id)
        if failed.status != OrderStatus.FAILED:
            raise CreationError(f"Order {failed_order_id} is {failed.status.value}, not failed")

        replacement = await self._orders.get_replacement_for(failed_order_id)
        if replacement is not None:
            raise CreationError(f"Order {failed_order_id} was already replaced by order {replacement}")

        subscriptions = [await self._subscriptions.load_subscription(sid) for sid in failed.subscription_ids]
        for sub in subscriptions:
            if sub.is_terminal:
                raise CreationError(
                    f"Subscription {sub.id} is {sub.status.value}; it can no longer be renewed"
                )

        order = await self._orders.create(
            RenewalOrder(
                kind=failed.kind,
                status=OrderStatus.PENDING,
                currency=failed.currency,
                total=failed.total,
                line_items=[item.model_copy() for item in failed.line_items],
                subscription_ids=list(failed.subscription_ids),
                billing_cycle_at=failed.billing_cycle_at,
                replaces_order_id=failed.id,
            )
        )
        logger.info("Created order %s to replace failed order %s", order.id, failed.id)
        for sub in subscriptions:
            await self._ctx.events.emit(EventType.RENEWAL_ORDER_CREATED, self._ctx, order=order, subscription=sub)
        return order
