"""Subscription status transitions and billing schedule arithmetic."""

from renewal_engine.lifecycle.schedule import add_billing_interval, add_months, is_payment_due
from renewal_engine.lifecycle.state_machine import (
    ACTIVATE,
    CANCEL,
    EXPIRE,
    PAYMENT_FAILED,
    SUSPEND,
    TRANSITIONS,
    Transition,
    apply_transition,
    can_apply,
    record_payment,
)

__all__ = [
    "ACTIVATE",
    "CANCEL",
    "EXPIRE",
    "PAYMENT_FAILED",
    "SUSPEND",
    "TRANSITIONS",
    "Transition",
    "add_billing_interval",
    "add_months",
    "apply_transition",
    "can_apply",
    "is_payment_due",
    "record_payment",
]
