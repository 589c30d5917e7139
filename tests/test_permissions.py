"""Tests for permission levels, share statuses, and revoke reasons."""

from __future__ import annotations

import pytest

from canopy.folders.permissions import PermissionLevel, RevokeReason, ShareStatus


class TestPermissionOrdering:
    def test_total_order(self):
        levels = [
            PermissionLevel.FULL,
            PermissionLevel.NONE,
            PermissionLevel.CREATE,
            PermissionLevel.VIEW,
            PermissionLevel.EDIT,
        ]
        assert sorted(levels) == [
            PermissionLevel.NONE,
            PermissionLevel.VIEW,
            PermissionLevel.EDIT,
            PermissionLevel.CREATE,
            PermissionLevel.FULL,
        ]

    def test_comparisons(self):
        assert PermissionLevel.VIEW < PermissionLevel.EDIT
        assert PermissionLevel.EDIT <= PermissionLevel.EDIT
        assert PermissionLevel.FULL > PermissionLevel.CREATE
        assert PermissionLevel.CREATE >= PermissionLevel.EDIT
        assert not PermissionLevel.VIEW >= PermissionLevel.EDIT

    def test_order_is_not_alphabetical(self):
        # "CREATE" < "EDIT" as strings, but CREATE outranks EDIT
        assert PermissionLevel.CREATE > PermissionLevel.EDIT

    def test_allows(self):
        assert PermissionLevel.FULL.allows(PermissionLevel.VIEW)
        assert PermissionLevel.EDIT.allows(PermissionLevel.EDIT)
        assert not PermissionLevel.VIEW.allows(PermissionLevel.EDIT)
        assert not PermissionLevel.NONE.allows(PermissionLevel.VIEW)

    def test_compare_with_str_not_supported(self):
        with pytest.raises(TypeError):
            _ = PermissionLevel.VIEW < 3  # type: ignore[operator]

    def test_hashable(self):
        assert {PermissionLevel.VIEW: 1}[PermissionLevel("VIEW")] == 1


class TestPermissionParse:
    @pytest.mark.parametrize("raw", ["VIEW", "view", "View"])
    def test_case_insensitive(self, raw):
        assert PermissionLevel.parse(raw) is PermissionLevel.VIEW

    def test_passthrough(self):
        assert PermissionLevel.parse(PermissionLevel.FULL) is PermissionLevel.FULL

    def test_unknown(self):
        with pytest.raises(ValueError, match="Invalid permission"):
            PermissionLevel.parse("admin")

    def test_none_not_grantable(self):
        with pytest.raises(ValueError, match="NONE"):
            PermissionLevel.parse("NONE")


class TestStatusAndReason:
    def test_status_values(self):
        assert [s.value for s in ShareStatus] == ["pending", "accepted", "rejected"]

    def test_reason_values(self):
        assert {r.value for r in RevokeReason} == {"explicit-revoke", "cascade-delete", "leave"}
