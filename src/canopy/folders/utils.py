"""Validation helpers for folder names, account identifiers, and listing cursors."""

from __future__ import annotations

import base64
import binascii
import json
from datetime import UTC, datetime

from .exceptions import InvalidArgumentError

MAX_NAME_LENGTH = 255
DEFAULT_MAX_DEPTH = 256
"""Upper bound on ancestor/descendant walks; deeper chains are treated as corrupt."""
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def normalize_name(name: str | None) -> str:
    """Strip surrounding whitespace from *name* and validate it.

    Raises ``InvalidArgumentError`` for empty, overlong, or
    control-character names.
    """
    if name is None:
        raise InvalidArgumentError("Folder name is required")
    name = name.strip()
    if not name:
        raise InvalidArgumentError("Folder name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidArgumentError(f"Folder name too long (max {MAX_NAME_LENGTH} characters)")
    if any(ord(c) < 32 for c in name):
        raise InvalidArgumentError("Folder name contains control characters")
    return name


def require_account_id(user_id: str | None, field: str = "actor_id") -> str:
    """Raise if *user_id* is missing or blank."""
    if not user_id or not user_id.strip():
        raise InvalidArgumentError(f"{field} is required")
    return user_id


def escape_like(value: str) -> str:
    """Escape SQL LIKE wildcards in *value* (use with ``escape='\\\\'``)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def check_page_size(limit: int) -> int:
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidArgumentError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return limit


def encode_cursor(sort_name: str, folder_id: str) -> str:
    """Opaque keyset cursor for the position after (*sort_name*, *folder_id*)."""
    raw = json.dumps([sort_name, folder_id], separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str) -> tuple[str, str]:
    """Inverse of ``encode_cursor``. Raises ``InvalidArgumentError`` on garbage."""
    try:
        raw = base64.urlsafe_b64decode(cursor + "=" * (-len(cursor) % 4))
        sort_name, folder_id = json.loads(raw)
    except (binascii.Error, ValueError, TypeError):
        raise InvalidArgumentError(f"Invalid cursor: {cursor!r}") from None
    if not isinstance(sort_name, str) or not isinstance(folder_id, str):
        raise InvalidArgumentError(f"Invalid cursor: {cursor!r}")
    return sort_name, folder_id


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize an aware datetime to UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
