"""Built-in event handlers registered at startup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from renewal_engine.events.bus import EventPayload
from renewal_engine.models.order import OrderKind
from renewal_engine.models.subscription import NoteSource
from renewal_engine.state.repository import SubscriptionRepository

if TYPE_CHECKING:
    from renewal_engine.context import ProcessingContext

logger = logging.getLogger(__name__)


async def add_renewal_order_note(payload: EventPayload, ctx: ProcessingContext) -> None:
    """Record the new order on the subscription it renews."""
    order = payload.order
    subscription = payload.subscription
    if order is None or subscription is None or subscription.id is None:
        return

    if order.kind == OrderKind.RESUBSCRIBE:
        message = f"Order #{order.id} created to record resubscription."
    else:
        message = f"Order #{order.id} created to record renewal."

    repo = SubscriptionRepository(ctx.session)
    await repo.add_note(subscription.id, message, source=NoteSource.FACTORY, order_id=order.id)


async def log_paid_for_failed_renewal(payload: EventPayload, ctx: ProcessingContext) -> None:
    """Log customer and admin notice triggers for a recovered failed renewal."""
    logger.info(
        "NOTICE: renewal order %s paid after a failed attempt (subscription=%s)",
        payload.order_id,
        payload.subscription.id if payload.subscription else None,
    )


async def log_renewal_payment_complete(payload: EventPayload, ctx: ProcessingContext) -> None:
    logger.info("Renewal payment complete for order %s", payload.order_id)


async def audit_log_handler(payload: EventPayload, ctx: ProcessingContext) -> None:
    """Wildcard handler logging every event with its source."""
    logger.info(
        "AUDIT: %s source=%s order=%s subscription=%s corr=%s",
        payload.event_type.value,
        ctx.source.value,
        payload.order_id,
        payload.subscription.id if payload.subscription else None,
        payload.correlation_id[:8],
    )
