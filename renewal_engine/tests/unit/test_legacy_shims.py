"""Tests for the deprecated composite-key entry points."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from renewal_engine.compat import legacy
from renewal_engine.exceptions import NotFound
from renewal_engine.models import NoteSource, OrderKind, OrderStatus, SubscriptionStatus
from renewal_engine.state.repository import RenewalOrderRepository, SubscriptionRepository

KEY = "500_101"


class TestKeyLookup:
    @pytest.mark.asyncio
    async def test_finds_subscription_by_parent_and_product(self, ctx, make_subscription) -> None:
        sub = await make_subscription()
        await make_subscription(parent_order_id=501)

        with pytest.warns(DeprecationWarning, match="get_subscription_from_key"):
            found = await legacy.get_subscription_from_key(ctx, KEY)

        assert found is not None
        assert found.id == sub.id

    @pytest.mark.asyncio
    async def test_unknown_product_returns_none(self, ctx, make_subscription) -> None:
        await make_subscription()
        with pytest.warns(DeprecationWarning):
            assert await legacy.get_subscription_from_key(ctx, "500_999") is None

    @pytest.mark.parametrize("key", ["500", "abc_101", "500_", "_101"])
    @pytest.mark.asyncio
    async def test_malformed_key_rejected(self, ctx, key: str) -> None:
        with pytest.warns(DeprecationWarning), pytest.raises(ValueError):
            await legacy.get_subscription_from_key(ctx, key)


class TestGenerateOrders:
    @pytest.mark.asyncio
    async def test_paid_renewal_order(self, ctx, session, make_subscription) -> None:
        sub = await make_subscription()

        with pytest.warns(DeprecationWarning):
            order_id = await legacy.generate_paid_renewal_order(ctx, 7, KEY)

        order = await RenewalOrderRepository(session).get(order_id)
        assert order.status == OrderStatus.COMPLETED
        stored = await SubscriptionRepository(session).load_subscription(sub.id)
        assert stored.last_paid_order_id == order_id
        assert stored.next_payment_at == datetime(2024, 7, 1, 9, 30, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_failed_renewal_order(self, ctx, session, make_subscription) -> None:
        sub = await make_subscription()

        with pytest.warns(DeprecationWarning):
            order_id = await legacy.generate_failed_payment_renewal_order(ctx, None, KEY)

        assert (await RenewalOrderRepository(session).get(order_id)).status == OrderStatus.FAILED
        stored = await SubscriptionRepository(session).load_subscription(sub.id)
        assert stored.status == SubscriptionStatus.ON_HOLD
        notes = await SubscriptionRepository(session).list_notes(sub.id)
        assert notes[-1].source == NoteSource.LEGACY

    @pytest.mark.asyncio
    async def test_other_customers_key_not_found(self, ctx, make_subscription) -> None:
        await make_subscription(customer_id=7)
        with pytest.warns(DeprecationWarning), pytest.raises(NotFound):
            await legacy.generate_paid_renewal_order(ctx, 8, KEY)

    @pytest.mark.asyncio
    async def test_child_and_parent_roles(self, ctx, session, make_subscription) -> None:
        sub = await make_subscription()

        with pytest.warns(DeprecationWarning):
            child_id = await legacy.generate_renewal_order(ctx, 500, 101)
        with pytest.warns(DeprecationWarning):
            parent_id = await legacy.generate_renewal_order(ctx, 500, 101, new_order_role="parent")

        orders = RenewalOrderRepository(session)
        assert (await orders.get(child_id)).kind == OrderKind.RENEWAL
        assert (await orders.get(parent_id)).kind == OrderKind.RESUBSCRIBE
        stored = await SubscriptionRepository(session).load_subscription(sub.id)
        assert stored.parent_order_id == parent_id

    @pytest.mark.asyncio
    async def test_unknown_role_rejected(self, ctx, make_subscription) -> None:
        await make_subscription()
        with pytest.warns(DeprecationWarning), pytest.raises(ValueError):
            await legacy.generate_renewal_order(ctx, 500, 101, new_order_role="sibling")


class TestQueries:
    @pytest.mark.asyncio
    async def test_renewal_orders_for_parent(self, ctx, make_subscription, make_order) -> None:
        first = await make_subscription()
        second = await make_subscription(line_items=first.line_items)
        a = await make_order(first)
        b = await make_order(second)
        await make_order(first, kind=OrderKind.RESUBSCRIBE)

        with pytest.warns(DeprecationWarning):
            assert await legacy.get_renewal_orders(ctx, 500) == [a.id, b.id]
        with pytest.warns(DeprecationWarning):
            assert await legacy.get_renewal_order_count(ctx, 500) == 2
        with pytest.warns(DeprecationWarning):
            assert await legacy.get_renewal_orders(ctx, 999) == []

    @pytest.mark.asyncio
    async def test_parent_order_id(self, ctx, make_subscription, make_order) -> None:
        order = await make_order(await make_subscription())
        with pytest.warns(DeprecationWarning):
            assert await legacy.get_parent_order_id(ctx, order.id) == 500
        with pytest.warns(DeprecationWarning):
            assert await legacy.get_parent_order_id(ctx, 404) is None

    @pytest.mark.asyncio
    async def test_is_renewal_by_role(self, ctx, make_subscription, make_order) -> None:
        sub = await make_subscription()
        renewal = await make_order(sub)
        resubscribe = await make_order(sub, kind=OrderKind.RESUBSCRIBE)

        with pytest.warns(DeprecationWarning):
            assert await legacy.is_renewal(ctx, renewal.id) is True
        with pytest.warns(DeprecationWarning):
            assert await legacy.is_renewal(ctx, resubscribe.id) is False
        with pytest.warns(DeprecationWarning):
            assert await legacy.is_renewal(ctx, resubscribe.id, order_role="parent") is True
        with pytest.warns(DeprecationWarning):
            assert await legacy.is_renewal(ctx, 404, order_role="parent") is False


class TestChildOrderPayment:
    @pytest.mark.asyncio
    async def test_completed(self, ctx, session, make_subscription, make_order) -> None:
        sub = await make_subscription(status=SubscriptionStatus.ON_HOLD)
        order = await make_order(sub)

        with pytest.warns(DeprecationWarning):
            await legacy.process_subscription_payment_on_child_order(ctx, order.id)

        stored = await SubscriptionRepository(session).load_subscription(sub.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.last_paid_order_id == order.id

    @pytest.mark.asyncio
    async def test_failed(self, ctx, session, make_subscription, make_order) -> None:
        sub = await make_subscription()
        order = await make_order(sub)

        with pytest.warns(DeprecationWarning):
            await legacy.process_subscription_payment_on_child_order(ctx, order.id, "failed")

        assert (await SubscriptionRepository(session).load_subscription(sub.id)).status == SubscriptionStatus.ON_HOLD

    @pytest.mark.asyncio
    async def test_unknown_payment_status(self, ctx, make_subscription, make_order) -> None:
        order = await make_order(await make_subscription())
        with pytest.warns(DeprecationWarning), pytest.raises(ValueError):
            await legacy.process_subscription_payment_on_child_order(ctx, order.id, "refunded")
