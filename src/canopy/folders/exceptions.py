"""Custom exception hierarchy for the Canopy folder layer."""


class CanopyError(Exception):
    """Base exception for all Canopy errors."""


class NotFoundError(CanopyError):
    """Raised when a folder or share does not exist or is not visible to the actor.

    The two cases are indistinguishable to the caller.
    """


class ForbiddenError(CanopyError):
    """Raised when an entity is visible but the actor lacks the required permission."""


class ConflictError(CanopyError):
    """Raised when a uniqueness invariant or a state transition would be violated."""


class CyclicMoveError(CanopyError):
    """Raised when a move would make a folder its own ancestor."""


class InvalidArgumentError(CanopyError, ValueError):
    """Raised on malformed input such as an empty name or a self-targeted share."""


class StorageError(CanopyError):
    """Raised on storage backend failures (DB connection, constraint engine, etc.)."""


class ConsistencyError(CanopyError):
    """Raised when stored data breaks a tree invariant (dangling parent, runaway depth)."""
