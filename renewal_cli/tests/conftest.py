"""Fixtures for CLI tests: a file-backed SQLite state database per test."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from renewal_engine.models import LineItem, OrderStatus, RenewalOrder, Subscription, SubscriptionStatus
from renewal_engine.state import (
    RenewalOrderRepository,
    SubscriptionRepository,
    create_local_tables,
    get_local_engine,
    get_session,
)
from sqlalchemy.ext.asyncio import AsyncSession


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "state.db"

    async def _init() -> None:
        engine = get_local_engine(path)
        try:
            await create_local_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    return path


@pytest.fixture
def database_url(db_path: Path) -> str:
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture
def with_db(db_path: Path) -> Callable[[Callable[[AsyncSession], Awaitable[Any]]], Any]:
    """Run *fn* against the test database in a committed session."""

    def _run(fn: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
        async def _go() -> Any:
            engine = get_local_engine(db_path)
            try:
                async with get_session(engine) as session:
                    return await fn(session)
            finally:
                await engine.dispose()

        return asyncio.run(_go())

    return _run


def new_subscription(**overrides: Any) -> Subscription:
    fields: dict[str, Any] = {
        "status": SubscriptionStatus.ACTIVE,
        "next_payment_at": datetime(2024, 6, 1, 9, 30, tzinfo=UTC),
        "payment_method": "stripe",
        "line_items": [LineItem(product_id=101, name="Coffee club", recurring_price=Decimal("25.00"))],
        "parent_order_id": 500,
    }
    fields.update(overrides)
    return Subscription(**fields)


@pytest.fixture
def seed_subscription(with_db):
    def _seed(**overrides: Any) -> Subscription:
        return with_db(lambda s: SubscriptionRepository(s).create(new_subscription(**overrides)))

    return _seed


@pytest.fixture
def seed_order(with_db):
    def _seed(subscription: Subscription, **overrides: Any) -> RenewalOrder:
        fields: dict[str, Any] = {
            "status": OrderStatus.PENDING,
            "total": subscription.recurring_total(),
            "line_items": subscription.billable_items(),
            "subscription_ids": [subscription.id],
            "billing_cycle_at": subscription.next_payment_at,
        }
        fields.update(overrides)
        return with_db(lambda s: RenewalOrderRepository(s).create(RenewalOrder(**fields)))

    return _seed
