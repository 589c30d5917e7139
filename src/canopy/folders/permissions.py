"""Permission levels, share statuses, and revoke reasons."""

from __future__ import annotations

from enum import Enum


class PermissionLevel(str, Enum):
    """Effective permission of an actor on a folder.

    Totally ordered ``NONE < VIEW < EDIT < CREATE < FULL``.  Only the four
    levels above ``NONE`` can be stored on a share.
    """

    NONE = "NONE"
    VIEW = "VIEW"
    EDIT = "EDIT"
    CREATE = "CREATE"
    FULL = "FULL"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def allows(self, required: PermissionLevel) -> bool:
        """Return True if this level satisfies *required*."""
        return self.rank >= required.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str | PermissionLevel) -> PermissionLevel:
        """Parse a grantable permission (``VIEW``..``FULL``), case-insensitive.

        Raises ``ValueError`` for unknown values and for ``NONE``.
        """
        if isinstance(value, PermissionLevel):
            level = value
        else:
            try:
                level = cls(str(value).upper())
            except ValueError:
                raise ValueError(
                    f"Invalid permission: {value!r}. Must be one of VIEW, EDIT, CREATE, FULL."
                ) from None
        if level is cls.NONE:
            raise ValueError("Invalid permission: NONE cannot be granted")
        return level


_RANK: dict[PermissionLevel, int] = {
    PermissionLevel.NONE: 0,
    PermissionLevel.VIEW: 1,
    PermissionLevel.EDIT: 2,
    PermissionLevel.CREATE: 3,
    PermissionLevel.FULL: 4,
}


class ShareStatus(str, Enum):
    """Invitation lifecycle state of a stored share."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RevokeReason(str, Enum):
    """Why a share was removed."""

    EXPLICIT_REVOKE = "explicit-revoke"
    CASCADE_DELETE = "cascade-delete"
    LEAVE = "leave"
