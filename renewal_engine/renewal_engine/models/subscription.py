"""Subscription models: the long-lived billing agreement and its audit notes.

A ``Subscription`` is owned by the repository and only changes through the
transition helpers in :mod:`renewal_engine.lifecycle`, each of which records
a human-readable ``SubscriptionNote``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Persisted subscription states."""

    PENDING = "pending"
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES: frozenset[SubscriptionStatus] = frozenset(
    {SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}
)


class BillingPeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class NoteSource(str, Enum):
    """Who caused a subscription change."""

    RECONCILIATION = "reconciliation"
    REPAIR = "repair"
    FACTORY = "factory"
    SCHEDULER = "scheduler"
    ADMIN = "admin"
    LEGACY = "legacy"


class LineItem(BaseModel):
    """A recurring line on a subscription or a snapshot on a renewal order."""

    product_id: int
    name: str = ""
    quantity: int = Field(default=1, ge=0)
    recurring_price: Decimal = Field(default=Decimal("0"), ge=0)

    @property
    def is_billable(self) -> bool:
        return self.quantity > 0

    @property
    def line_total(self) -> Decimal:
        return self.recurring_price * self.quantity


class Subscription(BaseModel):
    """Recurring billing agreement.

    ``last_paid_order_id`` is the idempotency key for recording a payment:
    the same renewal order can never advance the schedule twice.
    ``last_failed_order_id`` plays the same role for payment failures.
    """

    id: int | None = None
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    billing_interval: int = Field(default=1, ge=1)
    billing_period: BillingPeriod = BillingPeriod.MONTH
    next_payment_at: datetime | None = None
    payment_method: str = "manual"
    requires_manual_renewal: bool = False
    external_ref: str | None = None
    currency: str = "USD"
    line_items: list[LineItem] = Field(default_factory=list)
    parent_order_id: int | None = None
    customer_id: int | None = None
    last_paid_order_id: int | None = None
    last_payment_at: datetime | None = None
    last_failed_order_id: int | None = None
    failed_payment_count: int = 0
    suspension_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def has_status(self, *statuses: SubscriptionStatus) -> bool:
        return self.status in statuses

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_manual(self) -> bool:
        return self.requires_manual_renewal or self.payment_method == "manual"

    def billable_items(self) -> list[LineItem]:
        return [item for item in self.line_items if item.is_billable]

    def recurring_total(self) -> Decimal:
        return sum((item.line_total for item in self.billable_items()), Decimal("0"))


class SubscriptionNote(BaseModel):
    """Append-only audit record attached to a subscription."""

    id: int | None = None
    subscription_id: int
    message: str
    source: NoteSource = NoteSource.ADMIN
    order_id: int | None = None
    created_at: datetime | None = None


class SubscriptionFilter(BaseModel):
    """Attribute filter for batch subscription queries.

    ``external_ref_not_like`` is a SQL ``LIKE`` pattern; subscriptions with
    no external reference count as not matching it.
    """

    status: SubscriptionStatus | None = None
    payment_method: str | None = None
    external_ref_not_like: str | None = None
    next_payment_before: datetime | None = None
    parent_order_id: int | None = None
