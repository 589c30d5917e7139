"""SharingService — folder invitations, lifecycle transitions, and listings.

Stateless service that receives the models and a ``PermissionResolver``
at construction and a session at call time, following the
``FolderTreeService`` pattern.  Methods flush but never commit.

Share state machine::

    (none) --create--> pending --accept--> accepted
                          |  \\--reject--> rejected
                          |
    any status --remove (revoke by sharer / leave by target)--> (row deleted)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .dialect import is_unique_violation
from .exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from .permissions import PermissionLevel, RevokeReason, ShareStatus
from .protocol import lookup_accounts
from .types import AccountInfo, ShareInfo, SharedFolderInfo
from .utils import require_account_id

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.folders import FolderBase
    from canopy.models.shares import FolderShareBase

    from .protocol import IdentityProvider
    from .resolver import PermissionResolver

logger = logging.getLogger(__name__)


class SharingService:
    """Manages folder shares between accounts.

    Constructor receives the concrete share and folder models so callers
    can use custom SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        share_model: type[FolderShareBase],
        resolver: PermissionResolver,
        identity_provider: IdentityProvider | None = None,
    ) -> None:
        self._folder_model = folder_model
        self._share_model = share_model
        self._resolver = resolver
        self._identity = identity_provider

    @staticmethod
    def share_to_info(
        share: FolderShareBase,
        folder_name: str = "",
        accounts: dict[str, AccountInfo] | None = None,
    ) -> ShareInfo:
        """Convert a share record to ShareInfo, joining identities when known."""
        accounts = accounts or {}
        return ShareInfo(
            id=share.id,
            folder_id=share.folder_id,
            folder_name=folder_name,
            shared_by=accounts.get(share.shared_by_user_id)
            or AccountInfo(id=share.shared_by_user_id),
            shared_with=accounts.get(share.shared_with_user_id)
            or AccountInfo(id=share.shared_with_user_id),
            permission=PermissionLevel(share.permission),
            status=ShareStatus(share.status),
            created_at=share.created_at,
            updated_at=share.updated_at,
        )

    @staticmethod
    def _parse_permission(permission: str | PermissionLevel) -> PermissionLevel:
        try:
            return PermissionLevel.parse(permission)
        except ValueError as exc:
            raise InvalidArgumentError(str(exc)) from None

    async def _get_share(
        self,
        session: AsyncSession,
        share_id: str,
        *,
        for_update: bool = False,
    ) -> FolderShareBase | None:
        model = self._share_model
        query = select(model).where(model.id == share_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def _folder_names(self, session: AsyncSession, folder_ids: set[str]) -> dict[str, str]:
        if not folder_ids:
            return {}
        model = self._folder_model
        result = await session.execute(
            select(model.id, model.name).where(model.id.in_(list(folder_ids)))  # type: ignore[union-attr]
        )
        return {row[0]: row[1] for row in result.all()}

    async def _to_info(self, session: AsyncSession, share: FolderShareBase) -> ShareInfo:
        names = await self._folder_names(session, {share.folder_id})
        accounts = await lookup_accounts(
            self._identity, [share.shared_by_user_id, share.shared_with_user_id]
        )
        return self.share_to_info(share, names.get(share.folder_id, ""), accounts)

    async def _to_infos(
        self, session: AsyncSession, shares: list[FolderShareBase]
    ) -> list[ShareInfo]:
        names = await self._folder_names(session, {s.folder_id for s in shares})
        accounts = await lookup_accounts(
            self._identity,
            [uid for s in shares for uid in (s.shared_by_user_id, s.shared_with_user_id)],
        )
        return [self.share_to_info(s, names.get(s.folder_id, ""), accounts) for s in shares]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_share(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        target_user_id: str,
        permission: str | PermissionLevel = PermissionLevel.VIEW,
    ) -> ShareInfo:
        """Invite *target_user_id* to *folder_id*. Flushes but does not commit.

        Only the folder's owner may share it.  The result is ``pending``.
        Raises ``ConflictError`` if a share for the same folder and target
        already exists, whatever its status; the storage unique constraint
        backs the check against concurrent inserts.
        """
        owner_id = require_account_id(owner_id, "owner_id")
        target_user_id = require_account_id(target_user_id, "target_user_id")
        level = self._parse_permission(permission)
        if target_user_id == owner_id:
            raise InvalidArgumentError("Cannot share a folder with yourself")

        folder, _ = await self._resolver.require(
            session, owner_id, folder_id, PermissionLevel.VIEW
        )
        if folder.owner_id != owner_id:
            raise ForbiddenError(f"Access denied: only the owner can share folder {folder_id}")

        model = self._share_model
        existing = await session.execute(
            select(model.id).where(
                model.folder_id == folder.id,
                model.shared_with_user_id == target_user_id,
            )
        )
        if existing.first() is not None:
            raise ConflictError(
                f"Folder {folder_id} is already shared with {target_user_id!r}"
            )

        share = model(
            folder_id=folder.id,
            shared_by_user_id=owner_id,
            shared_with_user_id=target_user_id,
            permission=level.value,
            status=ShareStatus.PENDING.value,
        )
        session.add(share)
        try:
            await session.flush()
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise ConflictError(
                    f"Folder {folder_id} is already shared with {target_user_id!r}"
                ) from exc
            raise

        logger.info(
            "Share %s created: folder %s -> %s (%s)",
            share.id,
            folder.id,
            target_user_id,
            level.value,
        )
        return await self._to_info(session, share)

    async def respond_to_share(
        self,
        session: AsyncSession,
        actor_id: str,
        share_id: str,
        accept: bool,
    ) -> ShareInfo:
        """Accept or reject a pending invitation. Only the target may respond."""
        actor_id = require_account_id(actor_id)
        share = await self._get_share(session, share_id, for_update=True)
        if share is None or share.shared_with_user_id != actor_id:
            raise NotFoundError(f"Share not found: {share_id}")
        if share.status != ShareStatus.PENDING.value:
            raise ConflictError(
                f"Share {share_id} is {share.status}; only pending shares can be answered"
            )

        now = datetime.now(UTC)
        share.status = (ShareStatus.ACCEPTED if accept else ShareStatus.REJECTED).value
        share.responded_at = now
        share.updated_at = now
        await session.flush()
        logger.info("Share %s %s by %s", share.id, share.status, actor_id)
        return await self._to_info(session, share)

    async def update_permission(
        self,
        session: AsyncSession,
        actor_id: str,
        share_id: str,
        permission: str | PermissionLevel,
    ) -> tuple[ShareInfo, PermissionLevel]:
        """Change the permission of a share. Only the sharer may do this.

        Status is left untouched.  Returns the updated share and the
        previous permission.
        """
        actor_id = require_account_id(actor_id)
        level = self._parse_permission(permission)
        share = await self._get_share(session, share_id, for_update=True)
        if share is None or actor_id not in (share.shared_by_user_id, share.shared_with_user_id):
            raise NotFoundError(f"Share not found: {share_id}")
        if share.shared_by_user_id != actor_id:
            raise ForbiddenError(
                f"Access denied: only the sharer can change permission on share {share_id}"
            )

        old = PermissionLevel(share.permission)
        if old is not level:
            share.permission = level.value
            share.updated_at = datetime.now(UTC)
            await session.flush()
            logger.info(
                "Share %s permission changed %s -> %s by %s",
                share.id,
                old.value,
                level.value,
                actor_id,
            )
        return await self._to_info(session, share), old

    async def remove_share(
        self,
        session: AsyncSession,
        actor_id: str,
        share_id: str,
    ) -> tuple[ShareInfo, RevokeReason]:
        """Delete a share: revoke by the sharer or leave by the target.

        Works at any status; revoking a pending share withdraws the
        invitation.  Returns the removed share and the reason.
        """
        actor_id = require_account_id(actor_id)
        share = await self._get_share(session, share_id, for_update=True)
        if share is None or actor_id not in (share.shared_by_user_id, share.shared_with_user_id):
            raise NotFoundError(f"Share not found: {share_id}")

        reason = (
            RevokeReason.EXPLICIT_REVOKE
            if actor_id == share.shared_by_user_id
            else RevokeReason.LEAVE
        )
        info = await self._to_info(session, share)
        await session.delete(share)
        await session.flush()
        logger.info("Share %s removed (%s) by %s", share_id, reason.value, actor_id)
        return info, reason

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def get_share(self, session: AsyncSession, actor_id: str, share_id: str) -> ShareInfo:
        """A single share, visible to its two parties only."""
        share = await self._get_share(session, share_id)
        if share is None or actor_id not in (share.shared_by_user_id, share.shared_with_user_id):
            raise NotFoundError(f"Share not found: {share_id}")
        return await self._to_info(session, share)

    async def list_shared_with_me(
        self,
        session: AsyncSession,
        actor_id: str,
        status: str | ShareStatus | None = None,
    ) -> list[SharedFolderInfo]:
        """Folders shared with *actor_id*, optionally filtered by *status*.

        Each entry carries the folder's display metadata and the owner's
        identity, never the subtree contents.
        """
        actor_id = require_account_id(actor_id)
        smodel = self._share_model
        fmodel = self._folder_model
        query = (
            select(smodel, fmodel)
            .join(fmodel, fmodel.id == smodel.folder_id)  # type: ignore[arg-type]
            .where(smodel.shared_with_user_id == actor_id)
            .order_by(smodel.created_at, smodel.id)
        )
        if status is not None:
            try:
                query = query.where(smodel.status == ShareStatus(status).value)
            except ValueError:
                raise InvalidArgumentError(f"Invalid share status: {status!r}") from None
        result = await session.execute(query)
        rows = list(result.all())

        owners = await lookup_accounts(self._identity, [s.shared_by_user_id for s, _ in rows])
        return [
            SharedFolderInfo(
                id=folder.id,
                name=folder.name,
                icon=folder.icon,
                color=folder.color,
                permission=PermissionLevel(share.permission),
                status=ShareStatus(share.status),
                owner=owners[share.shared_by_user_id],
                share_id=share.id,
                created_at=share.created_at,
            )
            for share, folder in rows
        ]

    async def list_shared_by_me(self, session: AsyncSession, owner_id: str) -> list[ShareInfo]:
        """Every share created by *owner_id*, joined with target identities."""
        owner_id = require_account_id(owner_id, "owner_id")
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.shared_by_user_id == owner_id)
            .order_by(model.created_at, model.id)
        )
        return await self._to_infos(session, list(result.scalars().all()))

    async def list_folder_shares(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
    ) -> list[ShareInfo]:
        """All shares on *folder_id*. Owner only."""
        actor_id = require_account_id(actor_id)
        folder, _ = await self._resolver.require(
            session, actor_id, folder_id, PermissionLevel.VIEW
        )
        if folder.owner_id != actor_id:
            raise ForbiddenError(
                f"Access denied: only the owner can list shares on folder {folder_id}"
            )
        model = self._share_model
        result = await session.execute(
            select(model).where(model.folder_id == folder.id).order_by(model.created_at, model.id)
        )
        return await self._to_infos(session, list(result.scalars().all()))

    async def pending_count(self, session: AsyncSession, actor_id: str) -> int:
        """Number of pending invitations targeting *actor_id*."""
        model = self._share_model
        result = await session.execute(
            select(func.count())
            .select_from(model)
            .where(
                model.shared_with_user_id == actor_id,
                model.status == ShareStatus.PENDING.value,
            )
        )
        return int(result.scalar_one())
