"""Domain models for subscriptions and renewal orders."""

from renewal_engine.models.order import (
    PAID_STATUSES,
    PAYABLE_FROM_STATUSES,
    OrderKind,
    OrderStatus,
    RenewalOrder,
    is_valid_order_transition,
)
from renewal_engine.models.subscription import (
    TERMINAL_STATUSES,
    BillingPeriod,
    LineItem,
    NoteSource,
    Subscription,
    SubscriptionFilter,
    SubscriptionNote,
    SubscriptionStatus,
)

__all__ = [
    "PAID_STATUSES",
    "PAYABLE_FROM_STATUSES",
    "TERMINAL_STATUSES",
    "BillingPeriod",
    "LineItem",
    "NoteSource",
    "OrderKind",
    "OrderStatus",
    "RenewalOrder",
    "Subscription",
    "SubscriptionFilter",
    "SubscriptionNote",
    "SubscriptionStatus",
    "is_valid_order_transition",
]
