"""PermissionResolver — effective permission from ownership and accepted shares.

Stateless service that receives the folder and share models at
construction and a session at call time.  Every mutating operation in
``FolderTreeService`` and ``SharingService`` goes through ``require``.

Resolution rule:

- the folder's owner holds ``FULL``;
- otherwise the accepted share for the actor on the folder itself, or on
  the nearest ancestor that carries one, decides the level, so a share on
  a subfolder overrides a share further up;
- otherwise ``NONE``, which callers report exactly like a missing folder.

Pending and rejected shares never grant access.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import ConsistencyError, ForbiddenError, NotFoundError
from .permissions import PermissionLevel, ShareStatus
from .utils import DEFAULT_MAX_DEPTH

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.folders import FolderBase
    from canopy.models.shares import FolderShareBase

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Computes effective permissions; never writes."""

    def __init__(
        self,
        folder_model: type[FolderBase],
        share_model: type[FolderShareBase],
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._folder_model = folder_model
        self._share_model = share_model
        self.max_depth = max_depth

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_folder(
        self,
        session: AsyncSession,
        folder_id: str | None,
        *,
        for_update: bool = False,
    ) -> FolderBase | None:
        """Get a folder record by id, optionally row-locked."""
        if not folder_id:
            return None
        model = self._folder_model
        query = select(model).where(model.id == folder_id)
        if for_update:
            # refresh rows already in the identity map with what the lock saw
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def ancestor_chain(
        self,
        session: AsyncSession,
        folder: FolderBase,
        *,
        strict: bool = True,
        for_update: bool = False,
    ) -> list[FolderBase]:
        """Return the folders from *folder* up to its root, nearest first.

        The walk is iterative and bounded by ``max_depth``.  With
        *strict*, a ``parent_id`` that does not resolve raises
        ``NotFoundError``; otherwise the chain simply stops there.
        A chain that revisits a folder raises ``ConsistencyError``.
        With *for_update* every ancestor is row-locked as it is read.
        """
        chain: list[FolderBase] = [folder]
        seen = {folder.id}
        current = folder
        while current.parent_id is not None:
            if len(chain) > self.max_depth:
                raise ConsistencyError(
                    f"Ancestor chain of folder {folder.id} exceeds max depth {self.max_depth}"
                )
            parent = await self.get_folder(session, current.parent_id, for_update=for_update)
            if parent is None:
                if strict:
                    raise NotFoundError(f"Folder not found: {current.parent_id}")
                logger.warning(
                    "Folder %s references missing parent %s", current.id, current.parent_id
                )
                break
            if parent.id in seen:
                raise ConsistencyError(f"Cycle detected above folder {folder.id}")
            seen.add(parent.id)
            chain.append(parent)
            current = parent
        return chain

    async def accepted_shares(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_ids: Sequence[str],
    ) -> dict[str, FolderShareBase]:
        """Map folder id to the actor's accepted share, for the given folders."""
        if not folder_ids:
            return {}
        model = self._share_model
        result = await session.execute(
            select(model).where(
                model.shared_with_user_id == actor_id,
                model.status == ShareStatus.ACCEPTED.value,
                model.folder_id.in_(list(folder_ids)),  # type: ignore[union-attr]
            )
        )
        return {share.folder_id: share for share in result.scalars().all()}

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_folder(
        self,
        session: AsyncSession,
        actor_id: str,
        folder: FolderBase,
    ) -> PermissionLevel:
        """Effective permission of *actor_id* on an already loaded *folder*."""
        if folder.owner_id == actor_id:
            return PermissionLevel.FULL
        chain = await self.ancestor_chain(session, folder, strict=False)
        shares = await self.accepted_shares(session, actor_id, [f.id for f in chain])
        for node in chain:
            share = shares.get(node.id)
            if share is not None:
                return PermissionLevel(share.permission)
        return PermissionLevel.NONE

    async def resolve(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
    ) -> PermissionLevel:
        """Effective permission of *actor_id* on *folder_id*.

        Missing folders resolve to ``NONE``, same as invisible ones.
        """
        folder = await self.get_folder(session, folder_id)
        if folder is None:
            return PermissionLevel.NONE
        return await self.resolve_folder(session, actor_id, folder)

    async def require(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
        required: PermissionLevel,
        *,
        for_update: bool = False,
    ) -> tuple[FolderBase, PermissionLevel]:
        """Load *folder_id* and check *actor_id* holds at least *required*.

        Raises ``NotFoundError`` when the folder is missing or resolves to
        ``NONE``, and ``ForbiddenError`` when it is visible but the level
        is insufficient.
        """
        folder = await self.get_folder(session, folder_id, for_update=for_update)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        level = await self.resolve_folder(session, actor_id, folder)
        if level is PermissionLevel.NONE:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if not level.allows(required):
            raise ForbiddenError(
                f"Access denied: {actor_id!r} holds {level.value} on folder {folder_id}, "
                f"{required.value} required"
            )
        return folder, level

    async def resolve_children(
        self,
        session: AsyncSession,
        actor_id: str,
        parent_level: PermissionLevel,
        children: Sequence[FolderBase],
    ) -> dict[str, PermissionLevel]:
        """Levels for direct children of a folder the actor resolved to *parent_level*.

        A child's own accepted share wins; otherwise it inherits the parent's level.
        """
        levels: dict[str, PermissionLevel] = {}
        owned = [c for c in children if c.owner_id == actor_id]
        for child in owned:
            levels[child.id] = PermissionLevel.FULL
        others = [c for c in children if c.owner_id != actor_id]
        shares = await self.accepted_shares(session, actor_id, [c.id for c in others])
        for child in others:
            share = shares.get(child.id)
            levels[child.id] = PermissionLevel(share.permission) if share else parent_level
        return levels

    async def accessible_roots(
        self,
        session: AsyncSession,
        actor_id: str,
    ) -> list[FolderBase]:
        """Roots of the actor's view.

        The actor's own root-level folders, plus every folder that is the
        direct target of an accepted share held by the actor, regardless
        of its ``parent_id`` in the owner's tree.
        """
        fmodel = self._folder_model
        smodel = self._share_model

        owned = await session.execute(
            select(fmodel).where(
                fmodel.owner_id == actor_id,
                fmodel.parent_id.is_(None),  # type: ignore[union-attr]
            )
        )
        roots: dict[str, FolderBase] = {f.id: f for f in owned.scalars().all()}

        shared = await session.execute(
            select(fmodel)
            .join(smodel, smodel.folder_id == fmodel.id)  # type: ignore[arg-type]
            .where(
                smodel.shared_with_user_id == actor_id,
                smodel.status == ShareStatus.ACCEPTED.value,
            )
        )
        for folder in shared.scalars().all():
            roots.setdefault(folder.id, folder)

        return sorted(roots.values(), key=lambda f: (f.owner_id != actor_id, f.name.lower(), f.id))
