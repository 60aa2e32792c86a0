"""Renewal order status updates and lookups."""

from __future__ import annotations

import logging

from renewal_engine.context import ProcessingContext
from renewal_engine.exceptions import InvalidTransition, NotFound
from renewal_engine.models.order import (
    PAID_STATUSES,
    OrderKind,
    OrderStatus,
    RenewalOrder,
    is_valid_order_transition,
)
from renewal_engine.renewal.reconciliation import ReconciliationEngine
from renewal_engine.state.repository import RenewalOrderRepository

logger = logging.getLogger(__name__)


class RenewalOrderService:
    """Move renewal orders between statuses and reconcile the result."""

    def __init__(self, ctx: ProcessingContext) -> None:
        self._ctx = ctx
        self._orders = RenewalOrderRepository(ctx.session)
        self._reconciliation = ReconciliationEngine(ctx)

    async def update_status(self, order_id: int, new_status: OrderStatus | str) -> RenewalOrder:
        """Set the status of *order_id* and reconcile its subscriptions.

        Setting the current status again is a no-op.

        Raises
        ------
        NotFound
            If the order does not exist.
        InvalidTransition
            If the order cannot move to *new_status*.  Failed orders are
            terminal; use ``RenewalOrderFactory.create_retry_order``.
        """
        new = OrderStatus(new_status)
        order = await self._orders.get(order_id)
        old = order.status
        if old == new:
            return order
        if not is_valid_order_transition(old, new):
            raise InvalidTransition("renewal order", order_id, old.value, new.value)

        paid_at = self._ctx.now() if new in PAID_STATUSES else None
        await self._orders.update_status(order_id, new, paid_at=paid_at)
        logger.info("Renewal order %s %s -> %s", order_id, old.value, new.value)

        await self._reconciliation.on_renewal_order_status_changed(order_id, old, new)
        return await self._orders.get(order_id)

    async def record_payment(
        self,
        order_id: int,
        status: OrderStatus | str = OrderStatus.COMPLETED,
    ) -> RenewalOrder:
        """Apply a gateway payment confirmation for *order_id*.

        Drives both the status change and the payment-complete notification,
        which must agree however often either is delivered.
        """
        order = await self.update_status(order_id, status)
        await self._reconciliation.on_payment_complete(order_id)
        return order


async def order_contains_renewal(ctx: ProcessingContext, order_id: int) -> bool:
    """Return ``True`` if *order_id* is a renewal order linked to a subscription."""
    try:
        order = await RenewalOrderRepository(ctx.session).get(order_id)
    except NotFound:
        return False
    return order.kind == OrderKind.RENEWAL and bool(order.subscription_ids)


async def get_failed_order_replaced_by(ctx: ProcessingContext, order_id: int) -> int | None:
    """Return the id of the failed order that *order_id* was created to replace."""
    try:
        order = await RenewalOrderRepository(ctx.session).get(order_id)
    except NotFound:
        return None
    return order.replaces_order_id
