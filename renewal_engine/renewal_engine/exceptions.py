"""Error taxonomy shared by the reconciliation, factory and repair paths.

* :class:`NotFound` -- an id does not resolve.  Reconciliation treats this
  as a no-op; the repair job records it as a per-item failure.
* :class:`InvalidTransition` -- a status change the state machine forbids.
  The record is left untouched.
* :class:`CreationError` -- a renewal order cannot be built.  Nothing is
  persisted.
* :class:`RecordUnavailable` -- a repository failure while repairing a
  single record.  Isolated to that record.
"""

from __future__ import annotations


class RenewalEngineError(Exception):
    """Base class for all renewal engine errors."""


class NotFound(RenewalEngineError):
    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id!r} not found")


class InvalidTransition(RenewalEngineError):
    def __init__(self, entity: str, entity_id: object, current: str, requested: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move {entity} {entity_id!r} from '{current}' to '{requested}'")


class CreationError(RenewalEngineError):
    pass


class RecordUnavailable(RenewalEngineError):
    def __init__(self, subscription_id: int, reason: str) -> None:
        self.subscription_id = subscription_id
        self.reason = reason
        super().__init__(f"Subscription {subscription_id} unavailable: {reason}")
