"""Repository classes providing access to the renewal state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated ids are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).

Rows are mapped to and from the pydantic domain models so that the state
machine never sees ORM objects.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from renewal_engine.exceptions import NotFound
from renewal_engine.models.order import OrderKind, OrderStatus, RenewalOrder
from renewal_engine.models.subscription import (
    BillingPeriod,
    LineItem,
    NoteSource,
    Subscription,
    SubscriptionFilter,
    SubscriptionNote,
    SubscriptionStatus,
)
from renewal_engine.state.tables import (
    RenewalOrderSubscriptionTable,
    RenewalOrderTable,
    ScheduledActionTable,
    SubscriptionNoteTable,
    SubscriptionTable,
)

logger = logging.getLogger(__name__)


def _dump_line_items(items: list[LineItem]) -> list[dict[str, Any]]:
    return [
        {
            "product_id": item.product_id,
            "name": item.name,
            "quantity": item.quantity,
            "recurring_price": str(item.recurring_price),
        }
        for item in items
    ]


def _load_line_items(raw: list[dict[str, Any]] | None) -> list[LineItem]:
    return [
        LineItem(
            product_id=entry["product_id"],
            name=entry.get("name", ""),
            quantity=entry.get("quantity", 1),
            recurring_price=Decimal(str(entry.get("recurring_price", "0"))),
        )
        for entry in raw or []
    ]


# ---------------------------------------------------------------------------
# SubscriptionRepository
# ---------------------------------------------------------------------------


class SubscriptionRepository:
    """Persistence for subscriptions and their audit notes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _to_model(row: SubscriptionTable) -> Subscription:
        return Subscription(
            id=row.id,
            status=SubscriptionStatus(row.status),
            billing_interval=row.billing_interval,
            billing_period=BillingPeriod(row.billing_period),
            next_payment_at=row.next_payment_at,
            payment_method=row.payment_method,
            requires_manual_renewal=row.requires_manual_renewal,
            external_ref=row.external_ref,
            currency=row.currency,
            line_items=_load_line_items(row.line_items_json),
            parent_order_id=row.parent_order_id,
            customer_id=row.customer_id,
            last_paid_order_id=row.last_paid_order_id,
            last_payment_at=row.last_payment_at,
            last_failed_order_id=row.last_failed_order_id,
            failed_payment_count=row.failed_payment_count,
            suspension_count=row.suspension_count,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _column_values(subscription: Subscription) -> dict[str, Any]:
        return {
            "status": subscription.status.value,
            "billing_interval": subscription.billing_interval,
            "billing_period": subscription.billing_period.value,
            "next_payment_at": subscription.next_payment_at,
            "payment_method": subscription.payment_method,
            "requires_manual_renewal": subscription.requires_manual_renewal,
            "external_ref": subscription.external_ref,
            "currency": subscription.currency,
            "line_items_json": _dump_line_items(subscription.line_items),
            "parent_order_id": subscription.parent_order_id,
            "customer_id": subscription.customer_id,
            "last_paid_order_id": subscription.last_paid_order_id,
            "last_payment_at": subscription.last_payment_at,
            "last_failed_order_id": subscription.last_failed_order_id,
            "failed_payment_count": subscription.failed_payment_count,
            "suspension_count": subscription.suspension_count,
        }

    async def create(self, subscription: Subscription) -> Subscription:
        """Insert a new subscription and return it with its generated id."""
        row = SubscriptionTable(**self._column_values(subscription))
        self._session.add(row)
        await self._session.flush()
        return self._to_model(row)

    async def load_subscription(self, subscription_id: int) -> Subscription:
        """Return the subscription with *subscription_id*.

        Raises
        ------
        NotFound
            If no such subscription exists.
        """
        row = await self._session.get(SubscriptionTable, subscription_id, populate_existing=True)
        if row is None:
            raise NotFound("subscription", subscription_id)
        return self._to_model(row)

    async def save_subscription(self, subscription: Subscription) -> None:
        """Persist every mutable attribute of *subscription*.

        Raises
        ------
        NotFound
            If the subscription has no id or no longer exists.
        """
        if subscription.id is None:
            raise NotFound("subscription", None)
        row = await self._session.get(SubscriptionTable, subscription.id)
        if row is None:
            raise NotFound("subscription", subscription.id)
        for column, value in self._column_values(subscription).items():
            setattr(row, column, value)
        await self._session.flush()

    async def find_subscriptions(
        self,
        criteria: SubscriptionFilter,
        limit: int,
    ) -> list[int]:
        """Return up to *limit* subscription ids matching *criteria*, by id."""
        stmt = select(SubscriptionTable.id)

        if criteria.status is not None:
            stmt = stmt.where(SubscriptionTable.status == criteria.status.value)
        if criteria.payment_method is not None:
            stmt = stmt.where(SubscriptionTable.payment_method == criteria.payment_method)
        if criteria.external_ref_not_like is not None:
            stmt = stmt.where(
                or_(
                    SubscriptionTable.external_ref.is_(None),
                    not_(SubscriptionTable.external_ref.like(criteria.external_ref_not_like)),
                )
            )
        if criteria.next_payment_before is not None:
            stmt = stmt.where(
                SubscriptionTable.next_payment_at.is_not(None),
                SubscriptionTable.next_payment_at <= criteria.next_payment_before,
            )
        if criteria.parent_order_id is not None:
            stmt = stmt.where(SubscriptionTable.parent_order_id == criteria.parent_order_id)

        stmt = stmt.order_by(SubscriptionTable.id.asc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def find_due_for_renewal(self, now: datetime, limit: int) -> list[int]:
        """Return ids of active subscriptions whose next payment is due.

        Subscriptions that already have a renewal order for their current
        cycle are awaiting a gateway result and are left out.
        """
        has_order = (
            select(RenewalOrderSubscriptionTable.order_id)
            .join(RenewalOrderTable, RenewalOrderTable.id == RenewalOrderSubscriptionTable.order_id)
            .where(
                RenewalOrderSubscriptionTable.subscription_id == SubscriptionTable.id,
                RenewalOrderTable.kind == OrderKind.RENEWAL.value,
                RenewalOrderTable.billing_cycle_at == SubscriptionTable.next_payment_at,
            )
            .exists()
        )
        result = await self._session.execute(
            select(SubscriptionTable.id)
            .where(
                SubscriptionTable.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionTable.next_payment_at.is_not(None),
                SubscriptionTable.next_payment_at <= now,
                ~has_order,
            )
            .order_by(SubscriptionTable.next_payment_at.asc(), SubscriptionTable.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def add_note(
        self,
        subscription_id: int,
        message: str,
        *,
        source: NoteSource,
        order_id: int | None = None,
    ) -> int:
        """Append an audit note and return its id."""
        row = SubscriptionNoteTable(
            subscription_id=subscription_id,
            message=message,
            source=source.value,
            order_id=order_id,
        )
        self._session.add(row)
        await self._session.flush()
        return row.id

    async def list_notes(self, subscription_id: int) -> list[SubscriptionNote]:
        """Return all notes for a subscription, oldest first."""
        result = await self._session.execute(
            select(SubscriptionNoteTable)
            .where(SubscriptionNoteTable.subscription_id == subscription_id)
            .order_by(SubscriptionNoteTable.id.asc())
        )
        return [
            SubscriptionNote(
                id=row.id,
                subscription_id=row.subscription_id,
                message=row.message,
                source=NoteSource(row.source),
                order_id=row.order_id,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]


# ---------------------------------------------------------------------------
# RenewalOrderRepository
# ---------------------------------------------------------------------------


class RenewalOrderRepository:
    """Persistence for renewal orders and their subscription links."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _to_model(self, row: RenewalOrderTable) -> RenewalOrder:
        return RenewalOrder(
            id=row.id,
            kind=OrderKind(row.kind),
            status=OrderStatus(row.status),
            currency=row.currency,
            total=Decimal(str(row.total)),
            line_items=_load_line_items(row.line_items_json),
            subscription_ids=await self.subscriptions_for_order(row.id),
            billing_cycle_at=row.billing_cycle_at,
            replaces_order_id=row.replaces_order_id,
            created_at=row.created_at,
            paid_at=row.paid_at,
        )

    async def create(self, order: RenewalOrder) -> RenewalOrder:
        """Insert *order* and its subscription links; return it with its id."""
        row = RenewalOrderTable(
            kind=order.kind.value,
            status=order.status.value,
            currency=order.currency,
            total=order.total,
            line_items_json=_dump_line_items(order.line_items),
            billing_cycle_at=order.billing_cycle_at,
            replaces_order_id=order.replaces_order_id,
            paid_at=order.paid_at,
        )
        self._session.add(row)
        await self._session.flush()

        for position, subscription_id in enumerate(order.subscription_ids):
            self._session.add(
                RenewalOrderSubscriptionTable(
                    order_id=row.id,
                    subscription_id=subscription_id,
                    position=position,
                )
            )
        await self._session.flush()
        return await self._to_model(row)

    async def get(self, order_id: int) -> RenewalOrder:
        """Return the order with *order_id*.

        Raises
        ------
        NotFound
            If no such order exists.
        """
        row = await self._session.get(RenewalOrderTable, order_id, populate_existing=True)
        if row is None:
            raise NotFound("renewal order", order_id)
        return await self._to_model(row)

    async def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        *,
        paid_at: datetime | None = None,
    ) -> None:
        """Persist a new status (and payment timestamp, when given)."""
        values: dict[str, Any] = {"status": status.value}
        if paid_at is not None:
            values["paid_at"] = paid_at
        result = await self._session.execute(
            update(RenewalOrderTable).where(RenewalOrderTable.id == order_id).values(**values)
        )
        if (result.rowcount or 0) == 0:  # type: ignore[attr-defined]
            raise NotFound("renewal order", order_id)
        await self._session.flush()

    async def subscriptions_for_order(self, order_id: int) -> list[int]:
        """Return the ids of the subscriptions *order_id* renews, in order."""
        result = await self._session.execute(
            select(RenewalOrderSubscriptionTable.subscription_id)
            .where(RenewalOrderSubscriptionTable.order_id == order_id)
            .order_by(RenewalOrderSubscriptionTable.position.asc())
        )
        return list(result.scalars().all())

    async def orders_for_subscription(
        self,
        subscription_id: int,
        *,
        kind: OrderKind | None = None,
    ) -> list[RenewalOrder]:
        """Return every order linked to *subscription_id*, oldest first."""
        stmt = (
            select(RenewalOrderTable)
            .join(
                RenewalOrderSubscriptionTable,
                RenewalOrderSubscriptionTable.order_id == RenewalOrderTable.id,
            )
            .where(RenewalOrderSubscriptionTable.subscription_id == subscription_id)
            .order_by(RenewalOrderTable.id.asc())
        )
        if kind is not None:
            stmt = stmt.where(RenewalOrderTable.kind == kind.value)
        result = await self._session.execute(stmt)
        return [await self._to_model(row) for row in result.scalars().all()]

    async def count_for_cycle(self, subscription_id: int, billing_cycle_at: datetime) -> int:
        """Count renewal orders for a subscription's billing cycle.

        Orders created to replace a failed attempt are excluded: the cycle
        is already represented by the order they replace.
        """
        result = await self._session.execute(
            select(func.count())
            .select_from(RenewalOrderTable)
            .join(
                RenewalOrderSubscriptionTable,
                RenewalOrderSubscriptionTable.order_id == RenewalOrderTable.id,
            )
            .where(
                RenewalOrderSubscriptionTable.subscription_id == subscription_id,
                RenewalOrderTable.kind == OrderKind.RENEWAL.value,
                RenewalOrderTable.billing_cycle_at == billing_cycle_at,
                RenewalOrderTable.replaces_order_id.is_(None),
            )
        )
        return result.scalar_one()

    async def get_replacement_for(self, failed_order_id: int) -> int | None:
        """Return the id of the order created to replace *failed_order_id*."""
        result = await self._session.execute(
            select(RenewalOrderTable.id)
            .where(RenewalOrderTable.replaces_order_id == failed_order_id)
            .order_by(RenewalOrderTable.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# ScheduledActionRepository
# ---------------------------------------------------------------------------


class ScheduledActionRepository:
    """Durable delayed-task queue keyed by hook name.

    At most one ``pending`` action exists per hook: :meth:`schedule_single`
    checks before inserting.  Actions are claimed (``running``) before they
    execute, so a handler can schedule its own next run.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_scheduled(self, hook: str) -> datetime | None:
        """Return the run time of the pending action for *hook*, if any."""
        result = await self._session.execute(
            select(ScheduledActionTable.run_at)
            .where(
                ScheduledActionTable.hook == hook,
                ScheduledActionTable.status == "pending",
            )
            .order_by(ScheduledActionTable.run_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def schedule_single(self, hook: str, run_at: datetime) -> bool:
        """Schedule *hook* to run once at *run_at*.

        Returns ``False`` without inserting when a pending action for the
        same hook already exists.
        """
        if await self.next_scheduled(hook) is not None:
            return False
        self._session.add(ScheduledActionTable(hook=hook, run_at=run_at, status="pending"))
        await self._session.flush()
        return True

    async def pending_count(self, hook: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(ScheduledActionTable)
            .where(
                ScheduledActionTable.hook == hook,
                ScheduledActionTable.status == "pending",
            )
        )
        return result.scalar_one()

    async def claim_due(self, now: datetime, limit: int = 25) -> list[ScheduledActionTable]:
        """Mark up to *limit* due pending actions as running and return them."""
        result = await self._session.execute(
            select(ScheduledActionTable)
            .where(
                ScheduledActionTable.status == "pending",
                ScheduledActionTable.run_at <= now,
            )
            .order_by(ScheduledActionTable.run_at.asc(), ScheduledActionTable.id.asc())
            .limit(limit)
        )
        rows = list(result.scalars().all())
        for row in rows:
            row.status = "running"
            row.attempts += 1
            row.claimed_at = now
        await self._session.flush()
        return rows

    async def mark_complete(self, action_id: int, completed_at: datetime) -> None:
        await self._session.execute(
            update(ScheduledActionTable)
            .where(ScheduledActionTable.id == action_id)
            .values(status="complete", completed_at=completed_at, last_error=None)
        )
        await self._session.flush()

    async def mark_failed(self, action_id: int, error: str, completed_at: datetime) -> None:
        await self._session.execute(
            update(ScheduledActionTable)
            .where(ScheduledActionTable.id == action_id)
            .values(status="failed", completed_at=completed_at, last_error=error[:4000])
        )
        await self._session.flush()

    async def release_stale(self, now: datetime, timeout: timedelta) -> int:
        """Return actions stuck in ``running`` longer than *timeout* to pending.

        Covers a worker that died mid-action; the action runs again, which
        is the at-least-once guarantee handlers are written for.  A stale
        action whose hook already has a pending action is marked failed
        instead, so each hook keeps at most one pending action.
        """
        result = await self._session.execute(
            select(ScheduledActionTable)
            .where(
                ScheduledActionTable.status == "running",
                ScheduledActionTable.claimed_at <= now - timeout,
            )
            .order_by(ScheduledActionTable.run_at.asc(), ScheduledActionTable.id.asc())
        )
        released = 0
        for row in result.scalars().all():
            if await self.next_scheduled(row.hook) is not None:
                row.status = "failed"
                row.completed_at = now
                row.last_error = "Stale claim superseded by a pending action for the same hook"
                logger.warning("Discarded stale action %s for hook %s", row.id, row.hook)
            else:
                row.status = "pending"
                row.claimed_at = None
                released += 1
            await self._session.flush()
        return released
