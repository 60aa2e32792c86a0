"""Shared fixtures for renewal_engine tests.

Every test gets a fresh in-memory SQLite database (aiosqlite, shared
through a StaticPool) with all tables created, a frozen event bus with the
built-in handlers, and a processing context whose clock is pinned.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from renewal_engine.bootstrap import build_event_bus
from renewal_engine.config import Settings, load_settings
from renewal_engine.context import ProcessingContext
from renewal_engine.events.bus import EventBus
from renewal_engine.models import (
    BillingPeriod,
    LineItem,
    OrderStatus,
    RenewalOrder,
    Subscription,
    SubscriptionStatus,
)
from renewal_engine.state.repository import RenewalOrderRepository, SubscriptionRepository
from renewal_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with every table created."""
    engine = get_local_engine(":memory:")
    await create_local_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return load_settings(database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def bus() -> EventBus:
    return build_event_bus()


@pytest.fixture
def ctx(session: AsyncSession, bus: EventBus, settings: Settings) -> ProcessingContext:
    return ProcessingContext(session=session, events=bus, settings=settings, clock=lambda: NOW)


@pytest.fixture
def make_subscription(session: AsyncSession) -> Callable[..., Awaitable[Subscription]]:
    """Factory fixture persisting a subscription with sensible defaults."""

    async def _make(**overrides: object) -> Subscription:
        fields: dict[str, object] = {
            "status": SubscriptionStatus.ACTIVE,
            "billing_interval": 1,
            "billing_period": BillingPeriod.MONTH,
            "next_payment_at": datetime(2024, 6, 1, 9, 30, tzinfo=UTC),
            "payment_method": "stripe",
            "currency": "USD",
            "line_items": [
                LineItem(product_id=101, name="Coffee club", quantity=1, recurring_price=Decimal("25.00")),
            ],
            "parent_order_id": 500,
            "customer_id": 7,
        }
        fields.update(overrides)
        return await SubscriptionRepository(session).create(Subscription(**fields))

    return _make


@pytest.fixture
def make_order(session: AsyncSession) -> Callable[..., Awaitable[RenewalOrder]]:
    """Factory fixture persisting a renewal order directly, bypassing the factory."""

    async def _make(subscription: Subscription, **overrides: object) -> RenewalOrder:
        fields: dict[str, object] = {
            "status": OrderStatus.PENDING,
            "currency": subscription.currency,
            "total": subscription.recurring_total(),
            "line_items": subscription.billable_items(),
            "subscription_ids": [subscription.id],
            "billing_cycle_at": subscription.next_payment_at,
        }
        fields.update(overrides)
        return await RenewalOrderRepository(session).create(RenewalOrder(**fields))

    return _make
