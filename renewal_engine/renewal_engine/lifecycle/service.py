"""Persisting subscription transitions.

:class:`SubscriptionLifecycle` is the only code path that writes a changed
subscription status.  Each change is validated by the pure state machine,
saved, recorded as an audit note attributed to the context's source, and
announced as ``subscription.status_changed``.
"""

from __future__ import annotations

import logging

from renewal_engine.context import ProcessingContext
from renewal_engine.events.bus import EventType
from renewal_engine.lifecycle.state_machine import (
    ACTIVATE,
    CANCEL,
    EXPIRE,
    PAYMENT_FAILED,
    SUSPEND,
    Transition,
    apply_transition,
    record_payment,
)
from renewal_engine.models.order import RenewalOrder
from renewal_engine.models.subscription import Subscription, SubscriptionStatus
from renewal_engine.state.repository import SubscriptionRepository

logger = logging.getLogger(__name__)

_STATUS_LABELS: dict[SubscriptionStatus, str] = {
    SubscriptionStatus.PENDING: "Pending",
    SubscriptionStatus.ACTIVE: "Active",
    SubscriptionStatus.ON_HOLD: "On hold",
    SubscriptionStatus.CANCELLED: "Cancelled",
    SubscriptionStatus.EXPIRED: "Expired",
}


def status_label(status: SubscriptionStatus) -> str:
    return _STATUS_LABELS[status]


class SubscriptionLifecycle:
    """Apply and record subscription transitions within a processing context."""

    def __init__(self, ctx: ProcessingContext) -> None:
        self._ctx = ctx
        self._repo = SubscriptionRepository(ctx.session)

    async def transition(
        self,
        subscription: Subscription,
        transition: Transition,
        reason: str,
        *,
        order_id: int | None = None,
    ) -> Subscription:
        """Move *subscription* through *transition* and record *reason*.

        Raises
        ------
        InvalidTransition
            If the current status does not allow it; nothing is written.
        """
        updated = apply_transition(subscription, transition)
        await self._persist(subscription, updated, reason, order_id=order_id)
        return updated

    async def activate(self, subscription: Subscription, reason: str, *, order_id: int | None = None) -> Subscription:
        return await self.transition(subscription, ACTIVATE, reason, order_id=order_id)

    async def suspend(self, subscription: Subscription, reason: str, *, order_id: int | None = None) -> Subscription:
        return await self.transition(subscription, SUSPEND, reason, order_id=order_id)

    async def cancel(self, subscription: Subscription, reason: str) -> Subscription:
        return await self.transition(subscription, CANCEL, reason)

    async def expire(self, subscription: Subscription, reason: str) -> Subscription:
        return await self.transition(subscription, EXPIRE, reason)

    async def payment_failed(
        self,
        subscription: Subscription,
        *,
        order: RenewalOrder | None = None,
        reason: str | None = None,
    ) -> Subscription:
        """Record a failed payment; the subscription is put on hold.

        A repeat failure for the same *order* is a no-op, so the failure
        count and the audit note are written once per order.
        """
        if order is not None and order.id is not None and subscription.last_failed_order_id == order.id:
            logger.debug(
                "Payment failure for order %s already recorded on subscription %s",
                order.id,
                subscription.id,
            )
            return subscription

        if reason is None:
            reason = (
                f"Payment failed for renewal order #{order.id}." if order is not None else "Payment failed."
            )
        updated = apply_transition(subscription, PAYMENT_FAILED)
        if order is not None:
            updated = updated.model_copy(update={"last_failed_order_id": order.id})
        await self._persist(
            subscription,
            updated,
            reason,
            order_id=order.id if order is not None else None,
        )
        return updated

    async def mark_payment_complete(self, subscription: Subscription, order: RenewalOrder) -> Subscription:
        """Record payment of *order*; a repeat for the same order is a no-op."""
        updated = record_payment(subscription, order, paid_at=self._ctx.now())
        if updated is None:
            logger.debug(
                "Payment for order %s already recorded on subscription %s",
                order.id,
                subscription.id,
            )
            return subscription

        await self._persist(
            subscription,
            updated,
            f"Payment received for renewal order #{order.id}.",
            order_id=order.id,
        )
        return updated

    async def _persist(
        self,
        before: Subscription,
        after: Subscription,
        reason: str,
        *,
        order_id: int | None,
    ) -> None:
        await self._repo.save_subscription(after)

        message = reason
        if before.status != after.status:
            message = (
                f"{reason} Status changed from {status_label(before.status)} "
                f"to {status_label(after.status)}."
            )
        await self._repo.add_note(after.id, message, source=self._ctx.source, order_id=order_id)

        logger.info(
            "Subscription %s %s -> %s (source=%s order=%s)",
            after.id,
            before.status.value,
            after.status.value,
            self._ctx.source.value,
            order_id,
        )

        if before.status != after.status:
            await self._ctx.events.emit(
                EventType.SUBSCRIPTION_STATUS_CHANGED,
                self._ctx,
                subscription=after,
                order_id=order_id,
                data={
                    "from": before.status.value,
                    "to": after.status.value,
                    "reason": reason,
                },
            )
