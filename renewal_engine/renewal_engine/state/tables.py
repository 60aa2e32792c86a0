"""SQLAlchemy 2.0 ORM table definitions for the renewal state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for the repository layer and for
``create_local_tables``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend.

    SQLite stores datetimes without an offset; values are normalised to UTC
    on the way in and re-tagged as UTC on the way out so comparisons against
    aware datetimes keep working.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all renewal engine tables."""


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class SubscriptionTable(Base):
    """Long-lived billing agreements."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    billing_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False, default="month")
    next_payment_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(64), nullable=False, default="manual")
    requires_manual_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    line_items_json: Mapped[list[dict[str, Any]]] = mapped_column(_JsonType, nullable=False, default=list)
    parent_order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    customer_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_paid_order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_payment_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_failed_order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    failed_payment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    suspension_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','active','on-hold','cancelled','expired')",
            name="ck_subscriptions_status",
        ),
        CheckConstraint(
            "billing_period IN ('day','week','month','year')",
            name="ck_subscriptions_billing_period",
        ),
        Index("ix_subscriptions_status_method_next", "status", "payment_method", "next_payment_at"),
        Index("ix_subscriptions_parent_order", "parent_order_id"),
    )


class SubscriptionNoteTable(Base):
    """Append-only audit notes explaining every subscription change."""

    __tablename__ = "subscription_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_subscription_notes_subscription", "subscription_id"),)


# ---------------------------------------------------------------------------
# Renewal orders
# ---------------------------------------------------------------------------


class RenewalOrderTable(Base):
    """Payment attempts.  Status only moves forward."""

    __tablename__ = "renewal_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="renewal")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    total: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    line_items_json: Mapped[list[dict[str, Any]]] = mapped_column(_JsonType, nullable=False, default=list)
    billing_cycle_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    replaces_order_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("renewal_orders.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','completed','failed','on-hold','cancelled')",
            name="ck_renewal_orders_status",
        ),
        CheckConstraint("kind IN ('renewal','resubscribe')", name="ck_renewal_orders_kind"),
        Index("ix_renewal_orders_replaces", "replaces_order_id"),
    )


class RenewalOrderSubscriptionTable(Base):
    """Links an order to every subscription it renews, in billing order."""

    __tablename__ = "renewal_order_subscriptions"

    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("renewal_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    subscription_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        PrimaryKeyConstraint("order_id", "subscription_id"),
        Index("ix_renewal_order_subscriptions_subscription", "subscription_id"),
    )


# ---------------------------------------------------------------------------
# Scheduled actions
# ---------------------------------------------------------------------------


class ScheduledActionTable(Base):
    """Durable delayed tasks keyed by hook name."""

    __tablename__ = "scheduled_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hook: Mapped[str] = mapped_column(String(191), nullable=False)
    run_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','running','complete','failed')",
            name="ck_scheduled_actions_status",
        ),
        Index("ix_scheduled_actions_hook_status", "hook", "status"),
        Index("ix_scheduled_actions_due", "status", "run_at"),
    )
