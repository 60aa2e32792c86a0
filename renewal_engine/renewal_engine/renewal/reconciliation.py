"""Reconcile subscription state with renewal order status changes.

Two entry points can report the same payment: an order status change and
the gateway's payment-complete notification.  Either may arrive first, may
arrive more than once, and the subscription ends up in the same state.
"""

from __future__ import annotations

import logging

from renewal_engine.context import ProcessingContext
from renewal_engine.events.bus import EventType
from renewal_engine.exceptions import NotFound
from renewal_engine.lifecycle.service import SubscriptionLifecycle
from renewal_engine.models.order import (
    PAID_STATUSES,
    PAYABLE_FROM_STATUSES,
    OrderKind,
    OrderStatus,
    RenewalOrder,
)
from renewal_engine.models.subscription import Subscription, SubscriptionStatus
from renewal_engine.state.repository import RenewalOrderRepository, SubscriptionRepository

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Apply renewal order outcomes to the subscriptions they renew."""

    def __init__(self, ctx: ProcessingContext) -> None:
        self._ctx = ctx
        self._orders = RenewalOrderRepository(ctx.session)
        self._subscriptions = SubscriptionRepository(ctx.session)
        self._lifecycle = SubscriptionLifecycle(ctx)

    async def _load_renewal(self, order_id: int) -> RenewalOrder | None:
        try:
            order = await self._orders.get(order_id)
        except NotFound:
            logger.debug("Order %s not found; nothing to reconcile", order_id)
            return None
        if order.kind != OrderKind.RENEWAL or not order.subscription_ids:
            logger.debug("Order %s is not a renewal order; nothing to reconcile", order_id)
            return None
        return order

    async def _linked_subscriptions(self, order: RenewalOrder) -> list[Subscription]:
        subscriptions = []
        for subscription_id in order.subscription_ids:
            try:
                subscriptions.append(await self._subscriptions.load_subscription(subscription_id))
            except NotFound:
                logger.warning(
                    "Subscription %s linked to order %s no longer exists",
                    subscription_id,
                    order.id,
                )
        return subscriptions

    async def _replaces_failed_order(self, order: RenewalOrder) -> bool:
        if order.replaces_order_id is None:
            return False
        try:
            replaced = await self._orders.get(order.replaces_order_id)
        except NotFound:
            return False
        return replaced.status == OrderStatus.FAILED

    async def on_renewal_order_status_changed(
        self,
        order_id: int,
        old_status: OrderStatus | str,
        new_status: OrderStatus | str,
    ) -> list[Subscription]:
        """React to a renewal order moving from *old_status* to *new_status*.

        A move to a paid status records the payment on every linked
        subscription that is not already active.  A move to ``failed``
        puts them on hold.  Unknown or non-renewal orders are a no-op.

        Returns
        -------
        list[Subscription]
            The linked subscriptions after reconciliation.

        Raises
        ------
        InvalidTransition
            If a payment arrives for a cancelled or expired subscription.
        """
        old = OrderStatus(old_status)
        new = OrderStatus(new_status)
        if old == new:
            return []

        order = await self._load_renewal(order_id)
        if order is None:
            return []

        reconciled = []
        for subscription in await self._linked_subscriptions(order):
            if new in PAID_STATUSES and not subscription.has_status(SubscriptionStatus.ACTIVE):
                if old in PAYABLE_FROM_STATUSES:
                    subscription = await self._lifecycle.mark_payment_complete(subscription, order)
                if old == OrderStatus.FAILED or await self._replaces_failed_order(order):
                    await self._ctx.events.emit(
                        EventType.PAID_FOR_FAILED_RENEWAL,
                        self._ctx,
                        order=order,
                        subscription=subscription,
                    )
            elif new == OrderStatus.FAILED:
                subscription = await self._lifecycle.payment_failed(subscription, order=order)
            reconciled.append(subscription)
        return reconciled

    async def on_payment_complete(self, order_id: int) -> list[Subscription]:
        """Record a gateway-confirmed payment for *order_id*.

        Emits ``renewal_order.payment_complete`` and then records the
        payment on each linked subscription.  Repeat delivery is a no-op.
        """
        order = await self._load_renewal(order_id)
        if order is None:
            return []

        await self._ctx.events.emit(EventType.RENEWAL_PAYMENT_COMPLETE, self._ctx, order=order)
        return [
            await self._lifecycle.mark_payment_complete(subscription, order)
            for subscription in await self._linked_subscriptions(order)
        ]
