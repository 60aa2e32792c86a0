"""Per-operation processing context.

Carries the session, event registry, settings, clock and the *source* of a
unit of work through the call chain.  Nothing in the engine keeps ambient
"currently reconciling" state; a repair pass and a live reconciliation
event each build their own context.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from renewal_engine.config import Settings, load_settings
from renewal_engine.events.bus import EventBus
from renewal_engine.models.subscription import NoteSource


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ProcessingContext:
    session: AsyncSession
    events: EventBus
    settings: Settings = field(default_factory=load_settings)
    source: NoteSource = NoteSource.RECONCILIATION
    clock: Callable[[], datetime] = _utcnow

    def now(self) -> datetime:
        return self.clock()

    def with_source(self, source: NoteSource) -> ProcessingContext:
        """Return a copy of this context attributing changes to *source*."""
        return dataclasses.replace(self, source=source)
