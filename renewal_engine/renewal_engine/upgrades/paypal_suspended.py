"""Repair subscriptions that PayPal suspended but the store still shows active.

Older releases missed PayPal's suspension notification for subscriptions
billed through a legacy ``S-`` profile (anything not ``B-`` billing
agreement).  Those subscriptions stayed active here with a next payment
long in the past.  This job suspends them in batches, re-queuing itself
while full batches keep turning up.

Progress goes to the dedicated ``renewal_engine.upgrade.paypal_suspended``
logger so that an operator can follow a run separately from the
application log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from renewal_engine.context import ProcessingContext
from renewal_engine.exceptions import NotFound, RecordUnavailable
from renewal_engine.lifecycle.service import SubscriptionLifecycle
from renewal_engine.models.subscription import NoteSource, SubscriptionFilter, SubscriptionStatus
from renewal_engine.state.repository import ScheduledActionRepository, SubscriptionRepository

REPAIR_HOOK = "repair_subscriptions_suspended_paypal_not_store"
REPAIR_LOG_CHANNEL = "renewal_engine.upgrade.paypal_suspended"
REPAIR_NOTE = (
    "Subscription suspended by database repair script. "
    "This subscription was suspended via PayPal."
)

repair_log = logging.getLogger(REPAIR_LOG_CHANNEL)


@dataclass(frozen=True)
class RepairPassResult:
    """Outcome of one repair batch.

    ``more_remaining`` is set when the batch came back full, in which case
    the next pass has already been scheduled.
    """

    selected_count: int
    processed_count: int
    failed_count: int
    more_remaining: bool
    repaired_ids: tuple[int, ...] = field(default=())


class PayPalSuspendedRepair:
    """Batch job suspending active PayPal subscriptions PayPal has suspended."""

    def __init__(self, ctx: ProcessingContext) -> None:
        self._ctx = ctx.with_source(NoteSource.REPAIR)
        self._settings = ctx.settings
        self._subscriptions = SubscriptionRepository(ctx.session)
        self._actions = ScheduledActionRepository(ctx.session)
        self._lifecycle = SubscriptionLifecycle(self._ctx)

    def selection_filter(self) -> SubscriptionFilter:
        """Active PayPal subscriptions overdue by more than the grace period."""
        return SubscriptionFilter(
            status=SubscriptionStatus.ACTIVE,
            payment_method=self._settings.paypal_payment_method,
            external_ref_not_like=f"{self._settings.paypal_agreement_prefix}%",
            next_payment_before=self._ctx.now() - timedelta(days=self._settings.repair_overdue_days),
        )

    async def get_subscriptions_to_repair(self) -> list[int]:
        """Return the next batch of subscription ids needing repair."""
        return await self._subscriptions.find_subscriptions(
            self.selection_filter(),
            self._settings.repair_batch_size,
        )

    async def schedule_repair(self) -> bool:
        """Queue a repair pass after the reschedule delay.

        Returns ``False`` if a pass is already queued.
        """
        run_at = self._ctx.now() + timedelta(seconds=self._settings.repair_reschedule_delay_seconds)
        scheduled = await self._actions.schedule_single(REPAIR_HOOK, run_at)
        if scheduled:
            repair_log.info(
                "Scheduled next repair pass for %s",
                run_at.isoformat(),
                extra={"hook": REPAIR_HOOK},
            )
        return scheduled

    async def _repair(self, subscription_id: int) -> None:
        try:
            subscription = await self._subscriptions.load_subscription(subscription_id)
        except NotFound as exc:
            raise RecordUnavailable(subscription_id, "failed to load subscription") from exc
        await self._lifecycle.suspend(subscription, REPAIR_NOTE)

    async def run_repair_pass(self) -> RepairPassResult:
        """Suspend one batch of affected subscriptions.

        Each subscription is repaired inside its own savepoint.  A failure
        rolls back only that record's changes; it is logged and counted and
        the rest of the batch is still processed.
        """
        selected = await self.get_subscriptions_to_repair()
        repaired: list[int] = []
        failed = 0

        for subscription_id in selected:
            try:
                async with self._ctx.session.begin_nested():
                    await self._repair(subscription_id)
            except Exception as exc:
                failed += 1
                repair_log.error(
                    "--- Exception caught repairing subscription %d - exception message: %s ---",
                    subscription_id,
                    exc,
                    extra={"subscription_id": subscription_id, "source": "repair"},
                )
                continue
            repaired.append(subscription_id)
            repair_log.info(
                "Subscription ID %d suspended from PayPal database repair script.",
                subscription_id,
                extra={"subscription_id": subscription_id, "source": "repair"},
            )

        more_remaining = len(selected) == self._settings.repair_batch_size
        if more_remaining:
            await self.schedule_repair()
        else:
            repair_log.info("Repair of subscriptions suspended in PayPal complete.")

        return RepairPassResult(
            selected_count=len(selected),
            processed_count=len(repaired),
            failed_count=failed,
            more_remaining=more_remaining,
            repaired_ids=tuple(repaired),
        )


async def run_paypal_repair_action(ctx: ProcessingContext) -> None:
    """Delayed-action handler for :data:`REPAIR_HOOK`."""
    await PayPalSuspendedRepair(ctx).run_repair_pass()
