"""EventBus and share lifecycle events for the notification emitter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from canopy.folders.permissions import PermissionLevel, RevokeReason

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of share lifecycle events delivered to notification handlers."""

    SHARE_INVITED = "share_invited"
    SHARE_ACCEPTED = "share_accepted"
    SHARE_REJECTED = "share_rejected"
    SHARE_PERMISSION_CHANGED = "share_permission_changed"
    SHARE_REVOKED = "share_revoked"


@dataclass(frozen=True, slots=True)
class ShareEvent:
    """Immutable record of a share lifecycle transition.

    Attributes:
        event_type: The kind of transition that occurred.
        share_id: Identifier of the affected share.
        folder_id: Folder the share points at.
        shared_by_user_id: Owner who created the share.
        shared_with_user_id: Account the share targets.
        permission: Permission on the share after the transition.
        old_permission: Previous permission (permission changes only).
        reason: Why the share was removed (revocations only).
        actor_id: Account whose operation caused the event.
    """

    event_type: EventType
    share_id: str
    folder_id: str | None = None
    shared_by_user_id: str | None = None
    shared_with_user_id: str | None = None
    permission: PermissionLevel | None = None
    old_permission: PermissionLevel | None = None
    reason: RevokeReason | None = None
    actor_id: str | None = None


class EventBus:
    """Dispatches share events to registered handlers.

    Handlers are called sequentially in registration order.
    Exceptions are logged but never propagated.  Delivery is
    fire-and-forget, so handlers must tolerate duplicates.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Callable[..., Any]]] = {et: [] for et in EventType}

    def register(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Append *handler* to the list for *event_type*."""
        self._handlers[event_type].append(handler)

    def register_all(self, handler: Callable[..., Any]) -> None:
        """Append *handler* to every event type."""
        for event_type in EventType:
            self.register(event_type, handler)

    def unregister(self, event_type: EventType, handler: Callable[..., Any]) -> bool:
        """Remove first occurrence of *handler*. Return True if found."""
        handlers = self._handlers[event_type]
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def emit(self, event: ShareEvent) -> None:
        """Dispatch *event* to all registered handlers for its type."""
        for handler in self._handlers[event.event_type]:
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on share %s",
                    handler,
                    event.event_type.value,
                    event.share_id,
                    exc_info=True,
                )

    async def emit_all(self, events: list[ShareEvent]) -> None:
        """Dispatch *events* in order."""
        for event in events:
            await self.emit(event)

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        """Remove all registered handlers."""
        for handlers in self._handlers.values():
            handlers.clear()
