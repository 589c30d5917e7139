"""Tests for SharingService — invitations, responses, permission changes, removal."""

from __future__ import annotations

import pytest

from canopy.folders.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from canopy.folders.permissions import PermissionLevel, RevokeReason, ShareStatus
from canopy.folders.protocol import StaticIdentityProvider
from canopy.folders.sharing import SharingService
from canopy.folders.types import AccountInfo
from canopy.models.folders import Folder
from canopy.models.shares import FolderShare

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def folder(tree, async_session):
    return await tree.create_folder(async_session, "alice", "Receipts")


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreateShare:
    async def test_pending_invitation(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob", "EDIT")
        assert share.status is ShareStatus.PENDING
        assert share.permission is PermissionLevel.EDIT
        assert share.shared_by.id == "alice"
        assert share.shared_with.id == "bob"
        assert share.folder_name == "Receipts"

    async def test_default_view(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        assert share.permission is PermissionLevel.VIEW

    async def test_lowercase_permission(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob", "create")
        assert share.permission is PermissionLevel.CREATE

    @pytest.mark.parametrize("permission", ["NONE", "ADMIN", ""])
    async def test_invalid_permission(self, sharing, async_session, folder, permission):
        with pytest.raises(InvalidArgumentError):
            await sharing.create_share(async_session, "alice", folder.id, "bob", permission)

    async def test_share_with_self(self, sharing, async_session, folder):
        with pytest.raises(InvalidArgumentError):
            await sharing.create_share(async_session, "alice", folder.id, "alice")

    async def test_blank_target(self, sharing, async_session, folder):
        with pytest.raises(InvalidArgumentError, match="target_user_id"):
            await sharing.create_share(async_session, "alice", folder.id, "")

    async def test_missing_folder(self, sharing, async_session):
        with pytest.raises(NotFoundError):
            await sharing.create_share(async_session, "alice", "nope", "bob")

    async def test_stranger_gets_not_found(self, sharing, async_session, folder):
        with pytest.raises(NotFoundError):
            await sharing.create_share(async_session, "mallory", folder.id, "bob")

    async def test_recipient_cannot_reshare(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob", "FULL")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        with pytest.raises(ForbiddenError):
            await sharing.create_share(async_session, "bob", folder.id, "carol")

    async def test_duplicate_conflicts(self, sharing, async_session, folder):
        await sharing.create_share(async_session, "alice", folder.id, "bob")
        with pytest.raises(ConflictError):
            await sharing.create_share(async_session, "alice", folder.id, "bob", "FULL")

    async def test_constraint_backstops_precheck(self, sharing, async_session, folder):
        # A racing writer's row is not visible to the duplicate check; the
        # unique constraint still rejects the second invitation.
        with async_session.no_autoflush:
            async_session.add(
                FolderShare(
                    folder_id=folder.id,
                    shared_by_user_id="alice",
                    shared_with_user_id="bob",
                )
            )
            with pytest.raises(ConflictError, match="already shared"):
                await sharing.create_share(async_session, "alice", folder.id, "bob")

    async def test_duplicate_after_reject_conflicts(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.respond_to_share(async_session, "bob", share.id, False)
        with pytest.raises(ConflictError):
            await sharing.create_share(async_session, "alice", folder.id, "bob")

    async def test_reinvite_after_remove(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.remove_share(async_session, "alice", share.id)
        again = await sharing.create_share(async_session, "alice", folder.id, "bob")
        assert again.id != share.id
        assert again.status is ShareStatus.PENDING

    async def test_subfolder_share(self, tree, sharing, async_session, folder):
        sub = await tree.create_folder(async_session, "alice", "2024", folder.id)
        share = await sharing.create_share(async_session, "alice", sub.id, "bob")
        assert share.folder_id == sub.id


# ---------------------------------------------------------------------------
# Respond
# ---------------------------------------------------------------------------


class TestRespondToShare:
    async def test_accept(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        accepted = await sharing.respond_to_share(async_session, "bob", share.id, True)
        assert accepted.status is ShareStatus.ACCEPTED

    async def test_reject(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        rejected = await sharing.respond_to_share(async_session, "bob", share.id, False)
        assert rejected.status is ShareStatus.REJECTED

    async def test_records_response_time(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        record = await async_session.get(FolderShare, share.id)
        assert record.responded_at is not None

    async def test_only_target_may_respond(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        with pytest.raises(NotFoundError):
            await sharing.respond_to_share(async_session, "alice", share.id, True)
        with pytest.raises(NotFoundError):
            await sharing.respond_to_share(async_session, "carol", share.id, True)

    async def test_respond_twice_conflicts(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        with pytest.raises(ConflictError):
            await sharing.respond_to_share(async_session, "bob", share.id, False)

    async def test_missing_share(self, sharing, async_session):
        with pytest.raises(NotFoundError):
            await sharing.respond_to_share(async_session, "bob", "nope", True)


# ---------------------------------------------------------------------------
# Update permission
# ---------------------------------------------------------------------------


class TestUpdatePermission:
    async def test_sharer_changes_level(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        updated, old = await sharing.update_permission(async_session, "alice", share.id, "FULL")
        assert updated.permission is PermissionLevel.FULL
        assert old is PermissionLevel.VIEW

    async def test_status_unchanged(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        updated, _ = await sharing.update_permission(async_session, "alice", share.id, "EDIT")
        assert updated.status is ShareStatus.ACCEPTED

    async def test_same_level_is_noop(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob", "EDIT")
        updated, old = await sharing.update_permission(async_session, "alice", share.id, "EDIT")
        assert updated.permission is old

    async def test_target_forbidden(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        with pytest.raises(ForbiddenError):
            await sharing.update_permission(async_session, "bob", share.id, "FULL")

    async def test_third_party_not_found(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        with pytest.raises(NotFoundError):
            await sharing.update_permission(async_session, "carol", share.id, "FULL")

    async def test_none_rejected(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        with pytest.raises(InvalidArgumentError):
            await sharing.update_permission(async_session, "alice", share.id, "NONE")


# ---------------------------------------------------------------------------
# Remove
# ---------------------------------------------------------------------------


class TestRemoveShare:
    async def test_sharer_revokes(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        removed, reason = await sharing.remove_share(async_session, "alice", share.id)
        assert removed.id == share.id
        assert reason is RevokeReason.EXPLICIT_REVOKE
        with pytest.raises(NotFoundError):
            await sharing.get_share(async_session, "alice", share.id)

    async def test_target_leaves(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        _, reason = await sharing.remove_share(async_session, "bob", share.id)
        assert reason is RevokeReason.LEAVE

    async def test_withdraw_pending(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        removed, _ = await sharing.remove_share(async_session, "alice", share.id)
        assert removed.status is ShareStatus.PENDING
        assert await sharing.pending_count(async_session, "bob") == 0

    async def test_third_party_not_found(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        with pytest.raises(NotFoundError):
            await sharing.remove_share(async_session, "carol", share.id)

    async def test_access_gone_after_removal(self, sharing, resolver, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob", "EDIT")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        await sharing.remove_share(async_session, "bob", share.id)
        assert await resolver.resolve(async_session, "bob", folder.id) is PermissionLevel.NONE


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class TestListings:
    async def test_shared_with_me(self, tree, sharing, async_session, folder):
        other = await tree.create_folder(async_session, "carol", "Carol's", color="green")
        s1 = await sharing.create_share(async_session, "alice", folder.id, "bob")
        s2 = await sharing.create_share(async_session, "carol", other.id, "bob", "EDIT")
        await sharing.respond_to_share(async_session, "bob", s2.id, True)

        listed = await sharing.list_shared_with_me(async_session, "bob")
        assert [(f.share_id, f.name, f.owner.id) for f in listed] == [
            (s1.id, "Receipts", "alice"),
            (s2.id, "Carol's", "carol"),
        ]
        assert listed[1].color == "green"
        assert listed[1].permission is PermissionLevel.EDIT

    async def test_shared_with_me_status_filter(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        assert len(await sharing.list_shared_with_me(async_session, "bob", "pending")) == 1
        assert await sharing.list_shared_with_me(async_session, "bob", ShareStatus.ACCEPTED) == []
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        accepted = await sharing.list_shared_with_me(async_session, "bob", "accepted")
        assert [f.id for f in accepted] == [folder.id]

    async def test_invalid_status(self, sharing, async_session):
        with pytest.raises(InvalidArgumentError):
            await sharing.list_shared_with_me(async_session, "bob", "removed")

    async def test_shared_by_me(self, sharing, async_session, folder):
        await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.create_share(async_session, "alice", folder.id, "carol")
        by_me = await sharing.list_shared_by_me(async_session, "alice")
        assert {s.shared_with.id for s in by_me} == {"bob", "carol"}
        assert await sharing.list_shared_by_me(async_session, "bob") == []

    async def test_folder_shares_owner_only(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob", "FULL")
        await sharing.respond_to_share(async_session, "bob", share.id, True)
        assert [s.id for s in await sharing.list_folder_shares(
            async_session, "alice", folder.id
        )] == [share.id]
        with pytest.raises(ForbiddenError):
            await sharing.list_folder_shares(async_session, "bob", folder.id)

    async def test_pending_count(self, tree, sharing, async_session, folder):
        other = await tree.create_folder(async_session, "alice", "Other")
        s1 = await sharing.create_share(async_session, "alice", folder.id, "bob")
        await sharing.create_share(async_session, "alice", other.id, "bob")
        assert await sharing.pending_count(async_session, "bob") == 2
        await sharing.respond_to_share(async_session, "bob", s1.id, False)
        assert await sharing.pending_count(async_session, "bob") == 1

    async def test_get_share_parties_only(self, sharing, async_session, folder):
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        assert (await sharing.get_share(async_session, "bob", share.id)).id == share.id
        with pytest.raises(NotFoundError):
            await sharing.get_share(async_session, "carol", share.id)


# ---------------------------------------------------------------------------
# Identity provider
# ---------------------------------------------------------------------------


class TestIdentityJoin:
    async def test_accounts_joined(self, tree, resolver, async_session):
        provider = StaticIdentityProvider(
            [
                AccountInfo(id="alice", name="Alice", email="alice@example.com"),
                AccountInfo(id="bob", name="Bob", email="bob@example.com"),
            ]
        )
        sharing = SharingService(Folder, FolderShare, resolver, provider)
        folder = await tree.create_folder(async_session, "alice", "Receipts")
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        assert share.shared_by.email == "alice@example.com"
        assert share.shared_with.name == "Bob"

        listed = await sharing.list_shared_with_me(async_session, "bob")
        assert listed[0].owner.name == "Alice"

    async def test_unknown_account_falls_back_to_id(self, tree, resolver, async_session):
        sharing = SharingService(Folder, FolderShare, resolver, StaticIdentityProvider())
        folder = await tree.create_folder(async_session, "alice", "Receipts")
        share = await sharing.create_share(async_session, "alice", folder.id, "bob")
        assert share.shared_with == AccountInfo(id="bob")
