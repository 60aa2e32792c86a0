"""Renewal order models.

A ``RenewalOrder`` records one payment attempt for one or more
subscriptions.  Its status only moves forward; ``completed``, ``failed`` and
``cancelled`` are terminal.  A failed attempt is retried by creating a new
order whose ``replaces_order_id`` points at the failed one.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from renewal_engine.models.subscription import LineItem


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ON_HOLD = "on-hold"
    CANCELLED = "cancelled"


class OrderKind(str, Enum):
    RENEWAL = "renewal"
    RESUBSCRIBE = "resubscribe"


PAID_STATUSES: frozenset[OrderStatus] = frozenset({OrderStatus.PROCESSING, OrderStatus.COMPLETED})

# Old statuses from which a move to a paid status records a subscription payment.
PAYABLE_FROM_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.ON_HOLD, OrderStatus.FAILED}
)

_ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.COMPLETED,
            OrderStatus.FAILED,
            OrderStatus.ON_HOLD,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.ON_HOLD: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def is_valid_order_transition(old: OrderStatus, new: OrderStatus) -> bool:
    """Return ``True`` if an order may move from *old* to *new*."""
    return new in _ORDER_TRANSITIONS[old]


class RenewalOrder(BaseModel):
    """One payment attempt against one or more subscriptions."""

    id: int | None = None
    kind: OrderKind = OrderKind.RENEWAL
    status: OrderStatus = OrderStatus.PENDING
    currency: str = "USD"
    total: Decimal = Field(default=Decimal("0"), ge=0)
    line_items: list[LineItem] = Field(default_factory=list)
    subscription_ids: list[int] = Field(default_factory=list)
    billing_cycle_at: datetime | None = Field(
        default=None,
        description="The next-payment timestamp this order pays for.",
    )
    replaces_order_id: int | None = Field(
        default=None,
        description="Failed order that this order was created to replace.",
    )
    created_at: datetime | None = None
    paid_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not _ORDER_TRANSITIONS[self.status]
