"""Renewal order creation, status updates and reconciliation."""

from renewal_engine.renewal.factory import RenewalOrderFactory
from renewal_engine.renewal.orders import (
    RenewalOrderService,
    get_failed_order_replaced_by,
    order_contains_renewal,
)
from renewal_engine.renewal.reconciliation import ReconciliationEngine
from renewal_engine.renewal.scheduler import RenewalRunResult, RenewalScheduler

__all__ = [
    "ReconciliationEngine",
    "RenewalOrderFactory",
    "RenewalOrderService",
    "RenewalRunResult",
    "RenewalScheduler",
    "get_failed_order_replaced_by",
    "order_contains_renewal",
]
