"""Subscription status state machine.

Every transition is a pure function from a :class:`Subscription` to a new
``Subscription``; the input is never modified, so a rejected transition
leaves the caller's object (and the stored record) exactly as it was.
Persistence and audit notes live in :mod:`renewal_engine.lifecycle.service`.

==================  ============================  ==========
Transition          Allowed from                  Target
==================  ============================  ==========
``activate``        pending, on-hold              active
``suspend``         pending, active               on-hold
``payment_failed``  pending, active, on-hold      on-hold
``cancel``          pending, active, on-hold      cancelled
``expire``          pending, active, on-hold      expired
==================  ============================  ==========
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from renewal_engine.exceptions import InvalidTransition
from renewal_engine.lifecycle.schedule import add_billing_interval
from renewal_engine.models.order import RenewalOrder
from renewal_engine.models.subscription import Subscription, SubscriptionStatus

_S = SubscriptionStatus


@dataclass(frozen=True)
class Transition:
    name: str
    allowed_from: frozenset[SubscriptionStatus]
    target: SubscriptionStatus


ACTIVATE = Transition("activate", frozenset({_S.PENDING, _S.ON_HOLD}), _S.ACTIVE)
SUSPEND = Transition("suspend", frozenset({_S.PENDING, _S.ACTIVE}), _S.ON_HOLD)
PAYMENT_FAILED = Transition("payment_failed", frozenset({_S.PENDING, _S.ACTIVE, _S.ON_HOLD}), _S.ON_HOLD)
CANCEL = Transition("cancel", frozenset({_S.PENDING, _S.ACTIVE, _S.ON_HOLD}), _S.CANCELLED)
EXPIRE = Transition("expire", frozenset({_S.PENDING, _S.ACTIVE, _S.ON_HOLD}), _S.EXPIRED)

TRANSITIONS: dict[str, Transition] = {
    t.name: t for t in (ACTIVATE, SUSPEND, PAYMENT_FAILED, CANCEL, EXPIRE)
}


def can_apply(subscription: Subscription, transition: Transition) -> bool:
    return subscription.status in transition.allowed_from


def apply_transition(subscription: Subscription, transition: Transition) -> Subscription:
    """Return a copy of *subscription* moved through *transition*.

    Raises
    ------
    InvalidTransition
        If the subscription's current status does not allow the transition.
    """
    if not can_apply(subscription, transition):
        raise InvalidTransition(
            "subscription",
            subscription.id,
            subscription.status.value,
            transition.target.value,
        )

    updates: dict[str, Any] = {"status": transition.target}
    if transition is SUSPEND:
        updates["suspension_count"] = subscription.suspension_count + 1
    elif transition is PAYMENT_FAILED:
        updates["failed_payment_count"] = subscription.failed_payment_count + 1
    return subscription.model_copy(update=updates)


def record_payment(
    subscription: Subscription,
    order: RenewalOrder,
    *,
    paid_at: datetime,
) -> Subscription | None:
    """Mark the payment for *order* complete on *subscription*.

    The subscription becomes active, failure and suspension counters are
    cleared, and the next payment moves one billing interval past the cycle
    the order paid for.  Returns ``None`` when *order* was already recorded
    as the last payment, which makes repeated delivery a no-op.

    Raises
    ------
    InvalidTransition
        If the subscription is cancelled or expired.
    """
    if order.id is not None and subscription.last_paid_order_id == order.id:
        return None

    if subscription.status != _S.ACTIVE and not can_apply(subscription, ACTIVATE):
        raise InvalidTransition(
            "subscription",
            subscription.id,
            subscription.status.value,
            _S.ACTIVE.value,
        )

    paid_cycle = _paid_cycle(subscription, order) or paid_at
    return subscription.model_copy(
        update={
            "status": _S.ACTIVE,
            "next_payment_at": add_billing_interval(
                paid_cycle,
                subscription.billing_interval,
                subscription.billing_period,
            ),
            "last_paid_order_id": order.id,
            "last_payment_at": paid_at,
            "failed_payment_count": 0,
            "suspension_count": 0,
        }
    )


def _paid_cycle(subscription: Subscription, order: RenewalOrder) -> datetime | None:
    # An order's cycle belongs to the first subscription it renews; the
    # others on a combined order are paid up to their own next payment.
    if order.billing_cycle_at is not None and order.subscription_ids[:1] in ([], [subscription.id]):
        return order.billing_cycle_at
    return subscription.next_payment_at or order.billing_cycle_at
