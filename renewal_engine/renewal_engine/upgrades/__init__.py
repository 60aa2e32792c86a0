"""One-off data repair jobs."""

from renewal_engine.upgrades.paypal_suspended import (
    REPAIR_HOOK,
    REPAIR_LOG_CHANNEL,
    PayPalSuspendedRepair,
    RepairPassResult,
    run_paypal_repair_action,
)

__all__ = [
    "REPAIR_HOOK",
    "REPAIR_LOG_CHANNEL",
    "PayPalSuspendedRepair",
    "RepairPassResult",
    "run_paypal_repair_action",
]
