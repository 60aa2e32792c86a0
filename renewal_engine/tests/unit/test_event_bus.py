"""Tests for the event registry and the built-in handlers.

Validates handler registration, ordered dispatch, freezing, error
isolation, and the renewal-order note written on creation.
"""

from __future__ import annotations

import logging

import pytest
from renewal_engine.bootstrap import build_event_bus
from renewal_engine.context import ProcessingContext
from renewal_engine.events import EventBus, EventPayload, EventType
from renewal_engine.events.handlers import add_renewal_order_note
from renewal_engine.models import NoteSource, OrderKind
from renewal_engine.state.repository import SubscriptionRepository

# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestHandlerRegistration:
    def test_specific_and_wildcard_counted(self) -> None:
        bus = EventBus()

        async def h1(p: EventPayload, ctx: ProcessingContext) -> None:
            pass

        async def h2(p: EventPayload, ctx: ProcessingContext) -> None:
            pass

        bus.register_handler(h1, event_type=EventType.RENEWAL_ORDER_CREATED)
        bus.register_handler(h2)
        assert bus.handler_count == 2

    def test_frozen_registry_rejects_registration(self) -> None:
        bus = EventBus()
        bus.freeze()

        async def late(p: EventPayload, ctx: ProcessingContext) -> None:
            pass

        with pytest.raises(RuntimeError, match="frozen"):
            bus.register_handler(late)

    def test_bootstrap_bus_is_frozen_with_builtins(self) -> None:
        bus = build_event_bus()
        assert bus.frozen
        assert bus.handler_count == 4

    def test_specific_handlers_precede_wildcards(self) -> None:
        bus = EventBus()

        async def wildcard(p: EventPayload, ctx: ProcessingContext) -> None:
            pass

        async def specific(p: EventPayload, ctx: ProcessingContext) -> None:
            pass

        bus.register_handler(wildcard)
        bus.register_handler(specific, event_type=EventType.RENEWAL_PAYMENT_COMPLETE)
        assert bus.handlers_for(EventType.RENEWAL_PAYMENT_COMPLETE) == [specific, wildcard]
        assert bus.handlers_for(EventType.RENEWAL_ORDER_CREATED) == [wildcard]


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestEmit:
    @pytest.mark.asyncio
    async def test_handlers_run_in_registration_order(self, session, settings) -> None:
        bus = EventBus()
        calls: list[str] = []

        async def first(p: EventPayload, ctx: ProcessingContext) -> None:
            calls.append("first")

        async def second(p: EventPayload, ctx: ProcessingContext) -> None:
            calls.append("second")

        bus.register_handler(first, event_type=EventType.RENEWAL_PAYMENT_COMPLETE)
        bus.register_handler(second, event_type=EventType.RENEWAL_PAYMENT_COMPLETE)
        ctx = ProcessingContext(session=session, events=bus, settings=settings)

        payload = await bus.emit(EventType.RENEWAL_PAYMENT_COMPLETE, ctx, order_id=5, data={"k": "v"})
        assert calls == ["first", "second"]
        assert payload.order_id == 5
        assert payload.data == {"k": "v"}

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, session, settings, caplog) -> None:
        bus = EventBus()
        reached: list[bool] = []

        async def broken(p: EventPayload, ctx: ProcessingContext) -> None:
            raise RuntimeError("handler exploded")

        async def healthy(p: EventPayload, ctx: ProcessingContext) -> None:
            reached.append(True)

        bus.register_handler(broken)
        bus.register_handler(healthy)
        ctx = ProcessingContext(session=session, events=bus, settings=settings)

        with caplog.at_level(logging.ERROR, logger="renewal_engine.events.bus"):
            await bus.emit(EventType.SUBSCRIPTION_STATUS_CHANGED, ctx)

        assert reached == [True]
        assert "broken" in caplog.text

    @pytest.mark.asyncio
    async def test_emit_without_handlers_returns_payload(self, ctx) -> None:
        payload = await EventBus().emit(EventType.PAID_FOR_FAILED_RENEWAL, ctx, order_id=3)
        assert payload.event_type == EventType.PAID_FOR_FAILED_RENEWAL
        assert payload.correlation_id


# ---------------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------------


class TestRenewalOrderNote:
    @pytest.mark.asyncio
    async def test_renewal_note(self, ctx, session, make_subscription, make_order) -> None:
        sub = await make_subscription()
        order = await make_order(sub)
        payload = EventPayload(event_type=EventType.RENEWAL_ORDER_CREATED, order=order, subscription=sub)

        await add_renewal_order_note(payload, ctx)

        notes = await SubscriptionRepository(session).list_notes(sub.id)
        assert [n.message for n in notes] == [f"Order #{order.id} created to record renewal."]
        assert notes[0].source == NoteSource.FACTORY
        assert notes[0].order_id == order.id

    @pytest.mark.asyncio
    async def test_resubscribe_note(self, ctx, session, make_subscription, make_order) -> None:
        sub = await make_subscription()
        order = await make_order(sub, kind=OrderKind.RESUBSCRIBE)
        payload = EventPayload(event_type=EventType.RENEWAL_ORDER_CREATED, order=order, subscription=sub)

        await add_renewal_order_note(payload, ctx)

        notes = await SubscriptionRepository(session).list_notes(sub.id)
        assert notes[0].message == f"Order #{order.id} created to record resubscription."
