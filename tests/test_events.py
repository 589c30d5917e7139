"""Tests for EventBus and share event types."""

from __future__ import annotations

import logging

import pytest

from canopy.events import EventBus, EventType, ShareEvent
from canopy.folders.permissions import PermissionLevel, RevokeReason

# =========================================================================
# Helpers
# =========================================================================


async def _collecting_handler(
    events: list[ShareEvent], event: ShareEvent
) -> None:
    """Append event to a list for assertion."""
    events.append(event)


async def _failing_handler(event: ShareEvent) -> None:
    """Handler that always raises."""
    raise RuntimeError(f"boom on {event.share_id}")


def _invited(share_id: str = "s1") -> ShareEvent:
    return ShareEvent(
        event_type=EventType.SHARE_INVITED,
        share_id=share_id,
        folder_id="f1",
        shared_by_user_id="alice",
        shared_with_user_id="bob",
        permission=PermissionLevel.VIEW,
    )


# =========================================================================
# EventType
# =========================================================================


class TestEventType:
    def test_member_count(self) -> None:
        assert len(EventType) == 5

    def test_values(self) -> None:
        assert EventType.SHARE_INVITED.value == "share_invited"
        assert EventType.SHARE_ACCEPTED.value == "share_accepted"
        assert EventType.SHARE_REJECTED.value == "share_rejected"
        assert EventType.SHARE_PERMISSION_CHANGED.value == "share_permission_changed"
        assert EventType.SHARE_REVOKED.value == "share_revoked"

    def test_unique_values(self) -> None:
        values = [et.value for et in EventType]
        assert len(values) == len(set(values))


# =========================================================================
# ShareEvent
# =========================================================================


class TestShareEvent:
    def test_construction(self) -> None:
        ev = _invited()
        assert ev.event_type is EventType.SHARE_INVITED
        assert ev.share_id == "s1"
        assert ev.permission is PermissionLevel.VIEW
        assert ev.old_permission is None
        assert ev.reason is None

    def test_permission_changed(self) -> None:
        ev = ShareEvent(
            event_type=EventType.SHARE_PERMISSION_CHANGED,
            share_id="s1",
            permission=PermissionLevel.EDIT,
            old_permission=PermissionLevel.VIEW,
        )
        assert ev.old_permission is PermissionLevel.VIEW
        assert ev.permission is PermissionLevel.EDIT

    def test_revoked_reason(self) -> None:
        ev = ShareEvent(
            event_type=EventType.SHARE_REVOKED,
            share_id="s1",
            reason=RevokeReason.CASCADE_DELETE,
        )
        assert ev.reason.value == "cascade-delete"

    def test_immutable(self) -> None:
        ev = _invited()
        with pytest.raises(AttributeError):
            ev.share_id = "changed"  # type: ignore[misc]


# =========================================================================
# EventBus Registration
# =========================================================================


class TestEventBusRegistration:
    def test_initial_handler_count(self) -> None:
        bus = EventBus()
        assert bus.handler_count == 0

    def test_register_increments_count(self) -> None:
        bus = EventBus()
        bus.register(EventType.SHARE_INVITED, _failing_handler)
        assert bus.handler_count == 1

    def test_register_all(self) -> None:
        bus = EventBus()
        bus.register_all(_failing_handler)
        assert bus.handler_count == len(EventType)

    def test_unregister_returns_true(self) -> None:
        bus = EventBus()
        bus.register(EventType.SHARE_INVITED, _failing_handler)
        assert bus.unregister(EventType.SHARE_INVITED, _failing_handler) is True
        assert bus.handler_count == 0

    def test_unregister_missing_returns_false(self) -> None:
        bus = EventBus()
        assert bus.unregister(EventType.SHARE_INVITED, _failing_handler) is False

    def test_clear(self) -> None:
        bus = EventBus()
        bus.register(EventType.SHARE_INVITED, _failing_handler)
        bus.register(EventType.SHARE_REVOKED, _failing_handler)
        bus.clear()
        assert bus.handler_count == 0


# =========================================================================
# EventBus Emit
# =========================================================================


class TestEventBusEmit:
    async def test_handler_called_with_event(self) -> None:
        bus = EventBus()
        collected: list[ShareEvent] = []

        async def handler(event: ShareEvent) -> None:
            await _collecting_handler(collected, event)

        bus.register(EventType.SHARE_INVITED, handler)
        ev = _invited()
        await bus.emit(ev)
        assert collected == [ev]

    async def test_multiple_handlers_called_in_order(self) -> None:
        bus = EventBus()
        order: list[int] = []

        async def first(event: ShareEvent) -> None:
            order.append(1)

        async def second(event: ShareEvent) -> None:
            order.append(2)

        bus.register(EventType.SHARE_INVITED, first)
        bus.register(EventType.SHARE_INVITED, second)
        await bus.emit(_invited())
        assert order == [1, 2]

    async def test_type_filtering(self) -> None:
        bus = EventBus()
        invited: list[ShareEvent] = []
        revoked: list[ShareEvent] = []

        async def on_invite(event: ShareEvent) -> None:
            await _collecting_handler(invited, event)

        async def on_revoke(event: ShareEvent) -> None:
            await _collecting_handler(revoked, event)

        bus.register(EventType.SHARE_INVITED, on_invite)
        bus.register(EventType.SHARE_REVOKED, on_revoke)

        await bus.emit(_invited())
        assert len(invited) == 1
        assert len(revoked) == 0

    async def test_emit_all_preserves_order(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        async def handler(event: ShareEvent) -> None:
            seen.append(event.share_id)

        bus.register(EventType.SHARE_INVITED, handler)
        await bus.emit_all([_invited("a"), _invited("b"), _invited("c")])
        assert seen == ["a", "b", "c"]

    async def test_no_handler_noop(self) -> None:
        bus = EventBus()
        await bus.emit(_invited())

    async def test_error_isolation(self) -> None:
        bus = EventBus()
        collected: list[ShareEvent] = []

        async def good_handler(event: ShareEvent) -> None:
            await _collecting_handler(collected, event)

        bus.register(EventType.SHARE_INVITED, _failing_handler)
        bus.register(EventType.SHARE_INVITED, good_handler)

        await bus.emit(_invited())
        assert len(collected) == 1

    async def test_error_logging(self, caplog: pytest.LogCaptureFixture) -> None:
        bus = EventBus()
        bus.register(EventType.SHARE_INVITED, _failing_handler)

        with caplog.at_level(logging.WARNING, logger="canopy.events"):
            await bus.emit(_invited("s-42"))

        assert "failed" in caplog.text
        assert "share_invited" in caplog.text
        assert "s-42" in caplog.text
