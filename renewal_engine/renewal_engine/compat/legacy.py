"""Deprecated call shapes kept for existing integrations.

Older integrations identify a subscription by a composite key
``"<parent_order_id>_<product_id>"`` and talk about renewal orders as
"child" orders of a "parent".  Each function here adapts one of those
calls onto the current engine and emits a :class:`DeprecationWarning`
naming its replacement.  Nothing else in the package imports this module.
"""

from __future__ import annotations

import warnings

from renewal_engine.context import ProcessingContext
from renewal_engine.exceptions import NotFound
from renewal_engine.models.order import OrderKind, OrderStatus
from renewal_engine.models.subscription import NoteSource, Subscription, SubscriptionFilter
from renewal_engine.renewal.factory import RenewalOrderFactory
from renewal_engine.renewal.orders import RenewalOrderService, order_contains_renewal
from renewal_engine.state.repository import RenewalOrderRepository, SubscriptionRepository

# Upper bound on subscriptions sharing one parent order.
_PARENT_SCAN_LIMIT = 500


def _deprecated(name: str, replacement: str) -> None:
    warnings.warn(
        f"{name}() is deprecated; use {replacement} instead.",
        DeprecationWarning,
        stacklevel=3,
    )


def _parse_key(subscription_key: str) -> tuple[int, int]:
    parent, sep, product_id = subscription_key.partition("_")
    if not sep or not parent.isdigit() or not product_id.isdigit():
        raise ValueError(f"Malformed subscription key: {subscription_key!r}")
    return int(parent), int(product_id)


async def _subscriptions_for_parent(ctx: ProcessingContext, parent_order_id: int) -> list[Subscription]:
    repo = SubscriptionRepository(ctx.session)
    ids = await repo.find_subscriptions(
        SubscriptionFilter(parent_order_id=parent_order_id),
        _PARENT_SCAN_LIMIT,
    )
    return [await repo.load_subscription(sid) for sid in ids]


async def _find_by_key(ctx: ProcessingContext, subscription_key: str) -> Subscription | None:
    parent_order_id, product_id = _parse_key(subscription_key)
    for subscription in await _subscriptions_for_parent(ctx, parent_order_id):
        if any(item.product_id == product_id for item in subscription.line_items):
            return subscription
    return None


async def _require_by_key(ctx: ProcessingContext, user_id: int | None, subscription_key: str) -> Subscription:
    subscription = await _find_by_key(ctx, subscription_key)
    if subscription is None:
        raise NotFound("subscription", subscription_key)
    if user_id is not None and subscription.customer_id not in (None, user_id):
        raise NotFound("subscription", subscription_key)
    return subscription


async def get_subscription_from_key(ctx: ProcessingContext, subscription_key: str) -> Subscription | None:
    _deprecated("get_subscription_from_key", "SubscriptionRepository.load_subscription")
    return await _find_by_key(ctx, subscription_key)


async def generate_paid_renewal_order(ctx: ProcessingContext, user_id: int | None, subscription_key: str) -> int:
    """Create a renewal order for the keyed subscription and mark it paid."""
    _deprecated("generate_paid_renewal_order", "RenewalOrderFactory.create_renewal_order")
    ctx = ctx.with_source(NoteSource.LEGACY)
    subscription = await _require_by_key(ctx, user_id, subscription_key)
    order = await RenewalOrderFactory(ctx).create_renewal_order(subscription)
    await RenewalOrderService(ctx).record_payment(order.id)
    return order.id


async def generate_failed_payment_renewal_order(
    ctx: ProcessingContext,
    user_id: int | None,
    subscription_key: str,
) -> int:
    """Create a renewal order for the keyed subscription and mark it failed."""
    _deprecated("generate_failed_payment_renewal_order", "RenewalOrderFactory.create_renewal_order")
    ctx = ctx.with_source(NoteSource.LEGACY)
    subscription = await _require_by_key(ctx, user_id, subscription_key)
    order = await RenewalOrderFactory(ctx).create_renewal_order(subscription)
    await RenewalOrderService(ctx).update_status(order.id, OrderStatus.FAILED)
    return order.id


async def generate_renewal_order(
    ctx: ProcessingContext,
    original_order_id: int,
    product_id: int,
    new_order_role: str = "child",
) -> int:
    """Create a ``child`` (renewal) or ``parent`` (resubscribe) order."""
    _deprecated(
        "generate_renewal_order",
        "RenewalOrderFactory.create_renewal_order or create_resubscribe_order",
    )
    if new_order_role not in ("parent", "child"):
        raise ValueError(f"new_order_role must be 'parent' or 'child', not {new_order_role!r}")
    ctx = ctx.with_source(NoteSource.LEGACY)
    subscription = await _require_by_key(ctx, None, f"{original_order_id}_{product_id}")
    factory = RenewalOrderFactory(ctx)
    if new_order_role == "parent":
        order = await factory.create_resubscribe_order(subscription)
    else:
        order = await factory.create_renewal_order(subscription)
    return order.id


async def get_parent_order_id(ctx: ProcessingContext, renewal_order_id: int) -> int | None:
    _deprecated("get_parent_order_id", "Subscription.parent_order_id")
    try:
        order = await RenewalOrderRepository(ctx.session).get(renewal_order_id)
    except NotFound:
        return None
    if not order.subscription_ids:
        return None
    subscription = await SubscriptionRepository(ctx.session).load_subscription(order.subscription_ids[0])
    return subscription.parent_order_id


async def get_renewal_orders(ctx: ProcessingContext, parent_order_id: int) -> list[int]:
    """Return ids of renewal orders for every subscription of a parent order."""
    _deprecated("get_renewal_orders", "RenewalOrderRepository.orders_for_subscription")
    orders = RenewalOrderRepository(ctx.session)
    order_ids: set[int] = set()
    for subscription in await _subscriptions_for_parent(ctx, parent_order_id):
        for order in await orders.orders_for_subscription(subscription.id, kind=OrderKind.RENEWAL):
            order_ids.add(order.id)
    return sorted(order_ids)


async def get_renewal_order_count(ctx: ProcessingContext, parent_order_id: int) -> int:
    _deprecated("get_renewal_order_count", "RenewalOrderRepository.orders_for_subscription")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        return len(await get_renewal_orders(ctx, parent_order_id))


async def is_renewal(ctx: ProcessingContext, order_id: int, order_role: str | None = None) -> bool:
    """Return whether *order_id* is a renewal.

    With ``order_role="parent"`` the question is whether the order is a
    resubscribe order; ``"child"`` or ``None`` asks about renewal orders.
    """
    _deprecated("is_renewal", "order_contains_renewal")
    if order_role == "parent":
        try:
            order = await RenewalOrderRepository(ctx.session).get(order_id)
        except NotFound:
            return False
        return order.kind == OrderKind.RESUBSCRIBE
    return await order_contains_renewal(ctx, order_id)


async def process_subscription_payment_on_child_order(
    ctx: ProcessingContext,
    order_id: int,
    payment_status: str = "completed",
) -> None:
    """Apply a ``completed`` or ``failed`` payment result to a renewal order."""
    _deprecated("process_subscription_payment_on_child_order", "RenewalOrderService.record_payment")
    ctx = ctx.with_source(NoteSource.LEGACY)
    service = RenewalOrderService(ctx)
    if payment_status == "completed":
        await service.record_payment(order_id)
    elif payment_status == "failed":
        await service.update_status(order_id, OrderStatus.FAILED)
    else:
        raise ValueError(f"payment_status must be 'completed' or 'failed', not {payment_status!r}")
