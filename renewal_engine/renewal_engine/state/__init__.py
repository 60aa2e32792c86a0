"""Persistence layer: tables, engines, sessions and repositories."""

from renewal_engine.state.database import get_engine, get_session, get_session_factory
from renewal_engine.state.repository import (
    RenewalOrderRepository,
    ScheduledActionRepository,
    SubscriptionRepository,
)
from renewal_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from renewal_engine.state.tables import Base

__all__ = [
    "Base",
    "RenewalOrderRepository",
    "ScheduledActionRepository",
    "SubscriptionRepository",
    "create_local_tables",
    "get_engine",
    "get_local_engine",
    "get_session",
    "get_session_factory",
]
