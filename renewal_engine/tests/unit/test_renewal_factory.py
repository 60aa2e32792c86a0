"""Tests for RenewalOrderFactory and the order lookup helpers."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from renewal_engine.exceptions import CreationError, NotFound
from renewal_engine.models import LineItem, NoteSource, OrderKind, OrderStatus, SubscriptionStatus
from renewal_engine.renewal import RenewalOrderFactory, get_failed_order_replaced_by, order_contains_renewal
from renewal_engine.state.repository import RenewalOrderRepository, SubscriptionRepository


class TestCreateRenewalOrder:
    @pytest.mark.asyncio
    async def test_snapshots_billable_items(self, ctx, session, make_subscription) -> None:
        sub = await make_subscription(
            line_items=[
                LineItem(product_id=1, name="Beans", quantity=2, recurring_price=Decimal("12.50")),
                LineItem(product_id=2, name="Paused add-on", quantity=0, recurring_price=Decimal("5.00")),
            ]
        )

        order = await RenewalOrderFactory(ctx).create_renewal_order(sub)

        assert order.status == OrderStatus.PENDING
        assert order.kind == OrderKind.RENEWAL
        assert order.subscription_ids == [sub.id]
        assert [item.product_id for item in order.line_items] == [1]
        assert order.total == Decimal("25.00")
        assert order.billing_cycle_at == sub.next_payment_at

    @pytest.mark.asyncio
    async def test_records_creation_note(self, ctx, session, make_subscription) -> None:
        sub = await make_subscription()
        order = await RenewalOrderFactory(ctx).create_renewal_order(sub)

        notes = await SubscriptionRepository(session).list_notes(sub.id)
        assert [n.message for n in notes] == [f"Order #{order.id} created to record renewal."]
        assert notes[0].source == NoteSource.FACTORY

    @pytest.mark.asyncio
    async def test_duplicate_cycle_rejected(self, ctx, make_subscription) -> None:
        sub = await make_subscription()
        factory = RenewalOrderFactory(ctx)
        await factory.create_renewal_order(sub)

        with pytest.raises(CreationError, match="already has a renewal order"):
            await factory.create_renewal_order(sub)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED])
    async def test_terminal_subscription_rejected(self, ctx, session, make_subscription, status) -> None:
        sub = await make_subscription(status=status)
        with pytest.raises(CreationError):
            await RenewalOrderFactory(ctx).create_renewal_order(sub)
        assert await RenewalOrderRepository(session).orders_for_subscription(sub.id) == []

    @pytest.mark.asyncio
    async def test_nothing_billable_rejected(self, ctx, session, make_subscription) -> None:
        sub = await make_subscription(line_items=[LineItem(product_id=1, quantity=0)])
        with pytest.raises(CreationError, match="no billable line items"):
            await RenewalOrderFactory(ctx).create_renewal_order(sub)
        assert await RenewalOrderRepository(session).orders_for_subscription(sub.id) == []

    @pytest.mark.asyncio
    async def test_combined_order_links_every_subscription(self, ctx, session, make_subscription) -> None:
        primary = await make_subscription()
        secondary = await make_subscription(
            line_items=[LineItem(product_id=9, quantity=1, recurring_price=Decimal("4.00"))]
        )

        order = await RenewalOrderFactory(ctx).create_renewal_order(primary, also_renews=[secondary])

        assert order.subscription_ids == [primary.id, secondary.id]
        assert order.total == Decimal("29.00")
        secondary_notes = await SubscriptionRepository(session).list_notes(secondary.id)
        assert secondary_notes[0].order_id == order.id

    @pytest.mark.asyncio
    async def test_combined_order_rejects_already_renewed_subscription(
        self, ctx, session, make_subscription
    ) -> None:
        renewed = await make_subscription()
        other = await make_subscription()
        factory = RenewalOrderFactory(ctx)
        await factory.create_renewal_order(renewed)

        with pytest.raises(CreationError, match=f"Subscription {renewed.id} already has"):
            await factory.create_renewal_order(other, also_renews=[renewed])

        orders = RenewalOrderRepository(session)
        assert len(await orders.orders_for_subscription(renewed.id)) == 1
        assert await orders.orders_for_subscription(other.id) == []

    @pytest.mark.asyncio
    async def test_combined_order_requires_a_shared_cycle(self, ctx, session, make_subscription, now) -> None:
        due_now = await make_subscription()
        due_later = await make_subscription(next_payment_at=now + timedelta(days=2))

        with pytest.raises(CreationError, match="single cycle"):
            await RenewalOrderFactory(ctx).create_renewal_order(due_now, also_renews=[due_later])

        assert await RenewalOrderRepository(session).orders_for_subscription(due_now.id) == []

    @pytest.mark.asyncio
    async def test_same_subscription_twice_rejected(self, ctx, make_subscription) -> None:
        sub = await make_subscription()
        with pytest.raises(CreationError):
            await RenewalOrderFactory(ctx).create_renewal_order(sub, also_renews=[sub])


class TestCreateResubscribeOrder:
    @pytest.mark.asyncio
    async def test_becomes_parent_order(self, ctx, session, make_subscription, now) -> None:
        sub = await make_subscription(status=SubscriptionStatus.CANCELLED)

        order = await RenewalOrderFactory(ctx).create_resubscribe_order(sub)

        assert order.kind == OrderKind.RESUBSCRIBE
        assert order.billing_cycle_at == now
        stored = await SubscriptionRepository(session).load_subscription(sub.id)
        assert stored.parent_order_id == order.id
        notes = await SubscriptionRepository(session).list_notes(sub.id)
        assert notes[-1].message == f"Order #{order.id} created to record resubscription."
        assert await order_contains_renewal(ctx, order.id) is False


class TestCreateRetryOrder:
    @pytest.mark.asyncio
    async def test_replaces_failed_order(self, ctx, make_subscription, make_order) -> None:
        sub = await make_subscription(status=SubscriptionStatus.ON_HOLD)
        failed = await make_order(sub, status=OrderStatus.FAILED)

        retry = await RenewalOrderFactory(ctx).create_retry_order(failed.id)

        assert retry.id != failed.id
        assert retry.status == OrderStatus.PENDING
        assert retry.replaces_order_id == failed.id
        assert retry.billing_cycle_at == failed.billing_cycle_at
        assert retry.total == failed.total
        assert await get_failed_order_replaced_by(ctx, retry.id) == failed.id
        assert await get_failed_order_replaced_by(ctx, failed.id) is None

    @pytest.mark.asyncio
    async def test_failed_order_left_untouched(self, ctx, session, make_subscription, make_order) -> None:
        sub = await make_subscription(status=SubscriptionStatus.ON_HOLD)
        failed = await make_order(sub, status=OrderStatus.FAILED)
        await RenewalOrderFactory(ctx).create_retry_order(failed.id)

        assert (await RenewalOrderRepository(session).get(failed.id)).status == OrderStatus.FAILED

    @pytest.mark.asyncio
    async def test_only_one_replacement(self, ctx, make_subscription, make_order) -> None:
        sub = await make_subscription(status=SubscriptionStatus.ON_HOLD)
        failed = await make_order(sub, status=OrderStatus.FAILED)
        factory = RenewalOrderFactory(ctx)
        await factory.create_retry_order(failed.id)

        with pytest.raises(CreationError, match="already replaced"):
            await factory.create_retry_order(failed.id)

    @pytest.mark.asyncio
    async def test_non_failed_order_rejected(self, ctx, make_subscription, make_order) -> None:
        order = await make_order(await make_subscription())
        with pytest.raises(CreationError, match="not failed"):
            await RenewalOrderFactory(ctx).create_retry_order(order.id)

    @pytest.mark.asyncio
    async def test_missing_order(self, ctx) -> None:
        with pytest.raises(NotFound):
            await RenewalOrderFactory(ctx).create_retry_order(12345)


@pytest.mark.asyncio
async def test_order_contains_renewal(ctx, make_subscription, make_order) -> None:
    order = await make_order(await make_subscription())
    assert await order_contains_renewal(ctx, order.id) is True
    assert await order_contains_renewal(ctx, 9999) is False
