"""Exceptions raised by the decision engine services.

API routes map each class to an HTTP status; the scheduler records them per
decision and keeps going.
"""


class EngineError(Exception):
    """Base exception for decision engine operations."""
    pass


class NotFoundError(EngineError):
    """Decision, participant or proposal does not exist."""
    pass


class ForbiddenError(EngineError):
    """Caller is not allowed to perform this action (now, or ever)."""
    pass


class InvalidStateError(EngineError):
    """Operation not allowed in the decision's current state."""
    pass


class ConflictError(EngineError):
    """Concurrent modification detected (compare-and-swap matched no row)."""
    pass


class ValidationError(EngineError):
    """Input does not fit the decision (wrong payload, bad window, ...)."""
    pass


class OperationTimeoutError(EngineError):
    """Unit of work did not finish within the configured timeout."""
    pass
