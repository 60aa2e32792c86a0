"""Event registry for renewal lifecycle notifications.

Maps each :class:`EventType` to an ordered list of handlers.  The registry
is built once at startup (see :func:`renewal_engine.bootstrap.build_event_bus`)
and then frozen; registering a handler afterwards raises ``RuntimeError``.

Handlers run one after another in registration order, wildcard handlers
last.  Handler errors are logged but never propagate to callers, so a
broken email or notice collaborator cannot undo a recorded payment.

Usage::

    bus = EventBus()
    bus.register_handler(add_renewal_order_note, event_type=EventType.RENEWAL_ORDER_CREATED)
    bus.freeze()
    await bus.emit(EventType.RENEWAL_ORDER_CREATED, ctx, order=order, subscription=sub)
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from renewal_engine.models.order import RenewalOrder
from renewal_engine.models.subscription import Subscription

if TYPE_CHECKING:
    from renewal_engine.context import ProcessingContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """Notifications exposed to collaborators (notes, emails, admin notices)."""

    RENEWAL_ORDER_CREATED = "renewal_order.created"
    PAID_FOR_FAILED_RENEWAL = "renewal_order.paid_for_failed"
    RENEWAL_PAYMENT_COMPLETE = "renewal_order.payment_complete"
    SUBSCRIPTION_STATUS_CHANGED = "subscription.status_changed"


# ---------------------------------------------------------------------------
# Event payload
# ---------------------------------------------------------------------------


class EventPayload(BaseModel):
    """Structured event payload dispatched to handlers."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    order_id: int | None = None
    order: RenewalOrder | None = None
    subscription: Subscription | None = None
    data: dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[EventPayload, "ProcessingContext"], Awaitable[None]]


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBus:
    """In-process registry with ordered, sequential handler dispatch."""

    def __init__(self) -> None:
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register_handler(
        self,
        handler: EventHandler,
        *,
        event_type: EventType | None = None,
    ) -> None:
        """Register a handler for a specific event type (or all events).

        Parameters
        ----------
        handler:
            Async callable accepting ``(EventPayload, ProcessingContext)``.
        event_type:
            If ``None``, the handler receives *all* events (wildcard).

        Raises
        ------
        RuntimeError
            If the registry has already been frozen.
        """
        if self._frozen:
            raise RuntimeError(f"Cannot register {handler.__name__}: event registry is frozen")
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(
            "Registered event handler %s for %s",
            handler.__name__,
            event_type.value if event_type else "ALL",
        )

    def freeze(self) -> None:
        """Prevent any further handler registration."""
        self._frozen = True

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        """Return the handlers that :meth:`emit` would call, in order."""
        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._handlers.get(None, []))
        return handlers

    async def emit(
        self,
        event_type: EventType,
        ctx: ProcessingContext,
        *,
        order: RenewalOrder | None = None,
        subscription: Subscription | None = None,
        order_id: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> EventPayload:
        """Dispatch an event to all matching handlers, one at a time.

        Handler exceptions are logged, not raised.  Returns the payload
        that was dispatched.
        """
        payload = EventPayload(
            event_type=event_type,
            timestamp=ctx.now(),
            order=order,
            subscription=subscription,
            order_id=order_id if order_id is not None else (order.id if order else None),
            data=data or {},
        )

        handlers = self.handlers_for(event_type)
        if not handlers:
            logger.debug("No handlers for event %s", event_type.value)
            return payload

        logger.debug(
            "Emitting %s order=%s corr=%s (%d handler(s))",
            event_type.value,
            payload.order_id,
            payload.correlation_id[:8],
            len(handlers),
        )

        for handler in handlers:
            try:
                await handler(payload, ctx)
            except Exception:
                logger.exception(
                    "Handler %s failed for event %s (order=%s)",
                    handler.__name__,
                    event_type.value,
                    payload.order_id,
                )
        return payload

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(v) for v in self._handlers.values())
