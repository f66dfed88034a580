"""Exceptions raised inside the sync engine."""


class SyncError(RuntimeError):
    """Base exception for sync engine failures.

    Handlers never let these escape to the event bus; they are logged at the
    handler boundary.
    """


class UnknownEventError(SyncError):
    """Raised when an event payload or sub-kind is not recognized."""


class MalformedPayloadError(SyncError):
    """Raised when an entity lacks the natural key needed to store it."""


class NotificationError(SyncError):
    """Raised by a notification sink when delivery fails."""
