"""Delayed-action queue worker."""

from renewal_engine.actions.worker import ActionHandler, ActionWorker

__all__ = ["ActionHandler", "ActionWorker"]
