"""Wire the event registry and the delayed-action worker at startup."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from renewal_engine.actions.worker import ActionWorker
from renewal_engine.config import Settings
from renewal_engine.events.bus import EventBus, EventType
from renewal_engine.events.handlers import (
    add_renewal_order_note,
    audit_log_handler,
    log_paid_for_failed_renewal,
    log_renewal_payment_complete,
)
from renewal_engine.upgrades.paypal_suspended import REPAIR_HOOK, run_paypal_repair_action

logger = logging.getLogger(__name__)


def build_event_bus() -> EventBus:
    """Return a frozen event bus with the built-in handlers registered."""
    bus = EventBus()
    bus.register_handler(add_renewal_order_note, event_type=EventType.RENEWAL_ORDER_CREATED)
    bus.register_handler(log_paid_for_failed_renewal, event_type=EventType.PAID_FOR_FAILED_RENEWAL)
    bus.register_handler(log_renewal_payment_complete, event_type=EventType.RENEWAL_PAYMENT_COMPLETE)
    bus.register_handler(audit_log_handler)
    bus.freeze()
    logger.debug("Event bus initialised with %d handler(s)", bus.handler_count)
    return bus


def build_worker(
    session_factory: async_sessionmaker[AsyncSession],
    events: EventBus,
    settings: Settings,
) -> ActionWorker:
    """Return an action worker with every known hook registered."""
    worker = ActionWorker(session_factory, events, settings)
    worker.register(REPAIR_HOOK, run_paypal_repair_action)
    return worker
