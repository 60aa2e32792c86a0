"""Run delayed actions from the ``scheduled_actions`` queue.

Due actions are claimed in one short transaction, then each runs in its own
session so that a failing action rolls back only its own writes.  The
worker can be driven once (``run_due``) or as an ``asyncio`` background
task polling at ``worker_poll_interval``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from renewal_engine.config import Settings
from renewal_engine.context import ProcessingContext
from renewal_engine.events.bus import EventBus
from renewal_engine.state.repository import ScheduledActionRepository

logger = logging.getLogger(__name__)

ActionHandler = Callable[[ProcessingContext], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ActionWorker:
    """Execute scheduled actions by hook name.

    Parameters
    ----------
    session_factory:
        Creates a session for the claim step and for each action.
    events:
        Event registry handed to every action's context.
    settings:
        Poll interval, claim limit and stale-claim timeout.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        events: EventBus,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._events = events
        self._settings = settings
        self._clock = clock
        self._handlers: dict[str, ActionHandler] = {}
        self._running = False
        self._task: asyncio.Task[None] | None = None

    def register(self, hook: str, handler: ActionHandler) -> None:
        if hook in self._handlers:
            raise ValueError(f"A handler is already registered for hook '{hook}'")
        self._handlers[hook] = handler

    @property
    def hooks(self) -> list[str]:
        return sorted(self._handlers)

    @property
    def running(self) -> bool:
        return self._running

    async def run_due(self, now: datetime | None = None) -> int:
        """Run every action due at *now*; return how many succeeded."""
        now = now or self._clock()
        async with self._session_factory() as session:
            repo = ScheduledActionRepository(session)
            released = await repo.release_stale(
                now, timedelta(seconds=self._settings.worker_stale_after_seconds)
            )
            if released:
                logger.warning("Released %d stale scheduled action(s)", released)
            claimed = [
                (row.id, row.hook)
                for row in await repo.claim_due(now, self._settings.worker_claim_limit)
            ]
            await session.commit()

        succeeded = 0
        for action_id, hook in claimed:
            if await self._run_action(action_id, hook):
                succeeded += 1
        return succeeded

    async def _run_action(self, action_id: int, hook: str) -> bool:
        handler = self._handlers.get(hook)
        if handler is None:
            await self._finish(action_id, error=f"No handler registered for hook '{hook}'")
            logger.error("Scheduled action %d has unknown hook %s", action_id, hook)
            return False

        async with self._session_factory() as session:
            ctx = ProcessingContext(
                session=session,
                events=self._events,
                settings=self._settings,
                clock=self._clock,
            )
            try:
                await handler(ctx)
                await ScheduledActionRepository(session).mark_complete(action_id, self._clock())
                await session.commit()
            except Exception as exc:
                await session.rollback()
                logger.error("Scheduled action %d (%s) failed: %s", action_id, hook, exc, exc_info=True)
                await self._finish(action_id, error=str(exc))
                return False

        logger.info("Scheduled action %d (%s) complete", action_id, hook)
        return True

    async def _finish(self, action_id: int, *, error: str) -> None:
        async with self._session_factory() as session:
            await ScheduledActionRepository(session).mark_failed(action_id, error, self._clock())
            await session.commit()

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._running:
            logger.warning("ActionWorker already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("ActionWorker started for hooks %s", self.hooks)

    async def stop(self) -> None:
        """Stop the polling loop gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ActionWorker stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_due()
            except asyncio.CancelledError:
                raise
            except (OperationalError, InterfaceError) as exc:
                logger.error("ActionWorker database error: %s", exc, exc_info=True)
            await asyncio.sleep(self._settings.worker_poll_interval)
