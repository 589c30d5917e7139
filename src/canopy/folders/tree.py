"""FolderTreeService — folder CRUD, moves with cycle prevention, cascade delete.

Stateless service that receives the models and a ``PermissionResolver``
at construction and a session at call time.  Methods flush but never
commit; the caller owns the transaction and the per-owner lock.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, or_, update
from sqlmodel import select

from canopy.models.folders import SYSTEM_FOLDERS

from .exceptions import (
    ConflictError,
    ConsistencyError,
    CyclicMoveError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from .permissions import PermissionLevel, ShareStatus
from .sharing import SharingService
from .types import DeleteResult, FolderInfo, FolderNode, FolderPage
from .utils import (
    DEFAULT_PAGE_SIZE,
    as_utc,
    check_page_size,
    decode_cursor,
    encode_cursor,
    escape_like,
    normalize_name,
    require_account_id,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from canopy.models.folders import FolderBase
    from canopy.models.shares import FolderShareBase

    from .resolver import PermissionResolver

logger = logging.getLogger(__name__)


class FolderTreeService:
    """Manages the folder forest.

    Constructor receives the concrete folder and share models so callers
    can use custom SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        share_model: type[FolderShareBase],
        resolver: PermissionResolver,
    ) -> None:
        self._folder_model = folder_model
        self._share_model = share_model
        self._resolver = resolver

    @property
    def max_depth(self) -> int:
        return self._resolver.max_depth

    @staticmethod
    def folder_to_info(f: FolderBase, permission: PermissionLevel | None = None) -> FolderInfo:
        """Convert a folder record to FolderInfo."""
        return FolderInfo(
            id=f.id,
            name=f.name,
            owner_id=f.owner_id,
            parent_id=f.parent_id,
            icon=f.icon,
            color=f.color,
            is_system=f.is_system,
            system_type=f.system_type,
            permission=permission,
            created_at=f.created_at,
            updated_at=f.updated_at,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        name: str,
        parent_id: str | None = None,
        *,
        icon: str | None = None,
        color: str | None = None,
        is_system: bool = False,
        system_type: str | None = None,
    ) -> FolderInfo:
        """Create a folder owned by *owner_id*. Flushes but does not commit.

        *parent_id*, when given, must be a folder owned by *owner_id*.
        """
        owner_id = require_account_id(owner_id, "owner_id")
        name = normalize_name(name)

        if parent_id is not None:
            parent = await self._resolver.get_folder(session, parent_id)
            if parent is None or parent.owner_id != owner_id:
                raise NotFoundError(f"Folder not found: {parent_id}")
            depth = len(await self._resolver.ancestor_chain(session, parent))
            if depth >= self.max_depth:
                raise InvalidArgumentError(
                    f"Folder tree too deep: max depth is {self.max_depth}"
                )

        values: dict[str, Any] = {
            "owner_id": owner_id,
            "name": name,
            "parent_id": parent_id,
            "is_system": is_system,
            "system_type": system_type,
        }
        if icon is not None:
            values["icon"] = icon
        if color is not None:
            values["color"] = color
        folder = self._folder_model(**values)
        session.add(folder)
        await session.flush()
        logger.info("Created folder %s (%r) for %s", folder.id, name, owner_id)
        return self.folder_to_info(folder, PermissionLevel.FULL)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def _compare_and_set(
        self,
        session: AsyncSession,
        folder: FolderBase,
        **values: Any,
    ) -> None:
        """Write *values* only if the folder's version is still the one we read.

        Bumps ``version`` and ``updated_at``.  Raises ``ConflictError`` if
        another transaction changed the folder in between.
        """
        model = self._folder_model
        seen = folder.version
        result = await session.execute(
            update(model)
            .where(model.id == folder.id, model.version == seen)  # type: ignore[arg-type]
            .values(version=seen + 1, updated_at=datetime.now(UTC), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise ConflictError(f"Folder {folder.id} was modified concurrently; retry")
        await session.refresh(folder)

    async def move_folder(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
        new_parent_id: str | None,
    ) -> FolderInfo:
        """Re-parent *folder_id* under *new_parent_id* (``None`` for root level).

        Requires ``FULL`` on the folder and ``CREATE`` on the destination.
        The destination and its ancestors are row-locked as they are walked,
        in the caller's transaction, so two opposing moves cannot both pass
        the cycle check: one waits for the other or is aborted as a deadlock.
        """
        actor_id = require_account_id(actor_id)
        if new_parent_id == folder_id:
            raise CyclicMoveError(f"Cannot move folder {folder_id} into itself")

        folder, level = await self._resolver.require(
            session, actor_id, folder_id, PermissionLevel.FULL, for_update=True
        )
        if folder.is_system:
            raise ForbiddenError(f"System folder cannot be moved: {folder_id}")

        if new_parent_id is not None:
            parent = await self._resolver.get_folder(session, new_parent_id, for_update=True)
            if parent is None or parent.owner_id != folder.owner_id:
                raise NotFoundError(f"Folder not found: {new_parent_id}")
            parent_level = await self._resolver.resolve_folder(session, actor_id, parent)
            if parent_level is PermissionLevel.NONE:
                raise NotFoundError(f"Folder not found: {new_parent_id}")
            if not parent_level.allows(PermissionLevel.CREATE):
                raise ForbiddenError(
                    f"Access denied: {actor_id!r} cannot add folders to {new_parent_id}"
                )

            chain = await self._resolver.ancestor_chain(session, parent, for_update=True)
            if any(node.id == folder.id for node in chain):
                raise CyclicMoveError(
                    f"Cannot move folder {folder_id} under its own descendant {new_parent_id}"
                )
            height = len(await self._descendant_levels(session, folder.id))
            if len(chain) + height + 1 > self.max_depth:
                raise InvalidArgumentError(
                    f"Folder tree too deep: max depth is {self.max_depth}"
                )

        if folder.parent_id == new_parent_id:
            return self.folder_to_info(folder, level)

        old_parent_id = folder.parent_id
        await self._compare_and_set(session, folder, parent_id=new_parent_id)
        logger.info(
            "Moved folder %s from %s to %s by %s", folder.id, old_parent_id, new_parent_id, actor_id
        )
        return self.folder_to_info(folder, level)

    async def rename_folder(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
        name: str,
    ) -> FolderInfo:
        """Rename *folder_id*. Requires ``EDIT``."""
        actor_id = require_account_id(actor_id)
        name = normalize_name(name)
        folder, level = await self._resolver.require(
            session, actor_id, folder_id, PermissionLevel.EDIT, for_update=True
        )
        if folder.name != name:
            await self._compare_and_set(session, folder, name=name)
            logger.info("Renamed folder %s to %r by %s", folder.id, name, actor_id)
        return self.folder_to_info(folder, level)

    async def update_folder(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
        *,
        icon: str | None = None,
        color: str | None = None,
    ) -> FolderInfo:
        """Change display metadata of *folder_id*. Requires ``EDIT``."""
        actor_id = require_account_id(actor_id)
        folder, level = await self._resolver.require(
            session, actor_id, folder_id, PermissionLevel.EDIT, for_update=True
        )
        values: dict[str, Any] = {}
        if icon is not None and icon != folder.icon:
            values["icon"] = icon
        if color is not None and color != folder.color:
            values["color"] = color
        if values:
            await self._compare_and_set(session, folder, **values)
        return self.folder_to_info(folder, level)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def _descendant_levels(
        self,
        session: AsyncSession,
        folder_id: str,
    ) -> list[list[FolderBase]]:
        """Descendants of *folder_id* grouped by depth, breadth-first.

        Iterative over the ``parent_id`` index and bounded by ``max_depth``.
        """
        model = self._folder_model
        levels: list[list[FolderBase]] = []
        seen = {folder_id}
        frontier = [folder_id]
        while frontier:
            if len(levels) >= self.max_depth:
                raise ConsistencyError(
                    f"Subtree of folder {folder_id} exceeds max depth {self.max_depth}"
                )
            result = await session.execute(
                select(model)
                .where(model.parent_id.in_(frontier))  # type: ignore[union-attr]
                .order_by(func.lower(model.name), model.id)
            )
            children = [c for c in result.scalars().all() if c.id not in seen]
            if not children:
                break
            seen.update(c.id for c in children)
            levels.append(children)
            frontier = [c.id for c in children]
        return levels

    async def descendant_ids(self, session: AsyncSession, folder_id: str) -> list[str]:
        """Ids of every descendant of *folder_id* (not including itself)."""
        return [f.id for level in await self._descendant_levels(session, folder_id) for f in level]

    async def delete_folder(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
    ) -> DeleteResult:
        """Delete *folder_id*, its descendants, and every share on them.

        Owner only.  The share rows are locked before removal so a
        concurrent response lands entirely before or after the cascade.
        Deleting rows that are already gone is a no-op, so a failed
        cascade can be retried.
        """
        actor_id = require_account_id(actor_id)
        folder, _level = await self._resolver.require(
            session, actor_id, folder_id, PermissionLevel.VIEW, for_update=True
        )
        if folder.owner_id != actor_id:
            raise ForbiddenError(f"Access denied: only the owner can delete folder {folder_id}")
        if folder.is_system:
            raise ForbiddenError(f"System folder cannot be deleted: {folder_id}")

        levels = await self._descendant_levels(session, folder.id)
        subtree = [folder, *(f for level in levels for f in level)]
        names = {f.id: f.name for f in subtree}
        ids = list(names)

        smodel = self._share_model
        shares_result = await session.execute(
            select(smodel)
            .where(smodel.folder_id.in_(ids))  # type: ignore[union-attr]
            .with_for_update()
        )
        shares = list(shares_result.scalars().all())
        revoked = [SharingService.share_to_info(s, names.get(s.folder_id, "")) for s in shares]

        await session.execute(
            delete(smodel)
            .where(smodel.folder_id.in_(ids))  # type: ignore[union-attr]
            .execution_options(synchronize_session=False)
        )
        fmodel = self._folder_model
        await session.execute(
            delete(fmodel)
            .where(fmodel.id.in_(ids))  # type: ignore[union-attr]
            .execution_options(synchronize_session=False)
        )
        for obj in (*shares, *subtree):
            session.expunge(obj)
        await session.flush()

        logger.info(
            "Deleted folder %s with %d descendant(s) and %d share(s) by %s",
            folder_id,
            len(ids) - 1,
            len(revoked),
            actor_id,
        )
        return DeleteResult(
            folder_id=folder_id,
            deleted_folder_ids=ids,
            revoked_share_ids=[s.id for s in revoked],
            revoked_shares=revoked,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_folder(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
    ) -> FolderInfo:
        """Folder metadata with the actor's effective permission. Requires ``VIEW``."""
        folder, level = await self._resolver.require(
            session, actor_id, folder_id, PermissionLevel.VIEW
        )
        return self.folder_to_info(folder, level)

    async def resolve_path(
        self,
        session: AsyncSession,
        folder_id: str,
        *,
        actor_id: str | None = None,
    ) -> list[FolderInfo]:
        """Folders from the root down to *folder_id*, for breadcrumbs.

        Without *actor_id* the full chain is returned.  With *actor_id*
        the folder must be visible to the actor, and for a share
        recipient the chain starts at the topmost shared folder so the
        owner's unshared ancestors are never revealed.
        """
        folder = await self._resolver.get_folder(session, folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")

        chain = list(reversed(await self._resolver.ancestor_chain(session, folder)))
        if actor_id is None or folder.owner_id == actor_id:
            level = PermissionLevel.FULL if actor_id is not None else None
            return [self.folder_to_info(f, level) for f in chain]

        shares = await self._resolver.accepted_shares(session, actor_id, [f.id for f in chain])
        start = next((i for i, f in enumerate(chain) if f.id in shares), None)
        if start is None:
            raise NotFoundError(f"Folder not found: {folder_id}")

        out: list[FolderInfo] = []
        level = PermissionLevel.NONE
        for node in chain[start:]:
            share = shares.get(node.id)
            if share is not None:
                level = PermissionLevel(share.permission)
            out.append(self.folder_to_info(node, level))
        return out

    async def list_children(
        self,
        session: AsyncSession,
        actor_id: str,
        parent_id: str | None = None,
    ) -> list[FolderInfo]:
        """One level of the actor's view.

        ``parent_id=None`` lists the actor's accessible roots; otherwise
        the parent must resolve to at least ``VIEW``.
        """
        actor_id = require_account_id(actor_id)
        if parent_id is None:
            roots = await self._resolver.accessible_roots(session, actor_id)
            return [
                self.folder_to_info(f, await self._resolver.resolve_folder(session, actor_id, f))
                for f in roots
            ]

        parent, parent_level = await self._resolver.require(
            session, actor_id, parent_id, PermissionLevel.VIEW
        )
        model = self._folder_model
        result = await session.execute(
            select(model)
            .where(model.parent_id == parent.id)
            .order_by(func.lower(model.name), model.id)
        )
        children = list(result.scalars().all())
        levels = await self._resolver.resolve_children(session, actor_id, parent_level, children)
        return [self.folder_to_info(c, levels[c.id]) for c in children]

    async def get_tree(
        self,
        session: AsyncSession,
        actor_id: str,
        folder_id: str,
    ) -> FolderNode:
        """The subtree rooted at *folder_id* as nested nodes. Requires ``VIEW``."""
        actor_id = require_account_id(actor_id)
        root, root_level = await self._resolver.require(
            session, actor_id, folder_id, PermissionLevel.VIEW
        )
        root_node = FolderNode(folder=self.folder_to_info(root, root_level))
        nodes: dict[str, FolderNode] = {root.id: root_node}

        for level in await self._descendant_levels(session, root.id):
            by_parent: defaultdict[str, list[FolderBase]] = defaultdict(list)
            for child in level:
                by_parent[child.parent_id or ""].append(child)
            for pid, children in by_parent.items():
                parent_node = nodes[pid]
                parent_level = parent_node.folder.permission or PermissionLevel.NONE
                levels = await self._resolver.resolve_children(
                    session, actor_id, parent_level, children
                )
                for child in children:
                    node = FolderNode(folder=self.folder_to_info(child, levels[child.id]))
                    parent_node.children.append(node)
                    nodes[child.id] = node
        return root_node

    async def list_folders(
        self,
        session: AsyncSession,
        actor_id: str,
        *,
        parent_id: str | None = None,
        flat: bool = False,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
        color: str | None = None,
        icon: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> FolderPage:
        """Filtered, keyset-paginated folder listing ordered by name.

        Scope:

        - ``parent_id=None, flat=False``: the actor's roots (owned roots
          plus directly shared folders), same set as ``list_children``;
        - ``parent_id=None, flat=True``: every folder the actor owns;
        - ``parent_id=X, flat=False``: direct children of ``X``;
        - ``parent_id=X, flat=True``: every descendant of ``X``.

        Listing under ``X`` requires ``VIEW`` on it.  *search* is a
        case-insensitive substring of the name; *created_from* and
        *created_to* bound ``created_at`` inclusively.
        """
        actor_id = require_account_id(actor_id)
        check_page_size(limit)
        model = self._folder_model
        smodel = self._share_model
        sort_name = func.lower(model.name)

        parent_level: PermissionLevel | None = None
        if parent_id is None and not flat:
            shared_ids = select(smodel.folder_id).where(
                smodel.shared_with_user_id == actor_id,
                smodel.status == ShareStatus.ACCEPTED.value,
            )
            scope = or_(
                and_(model.owner_id == actor_id, model.parent_id.is_(None)),  # type: ignore[union-attr]
                model.id.in_(shared_ids),  # type: ignore[union-attr]
            )
        elif parent_id is None:
            scope = model.owner_id == actor_id
        else:
            parent, parent_level = await self._resolver.require(
                session, actor_id, parent_id, PermissionLevel.VIEW
            )
            if flat:
                scope = model.id.in_(await self.descendant_ids(session, parent.id))  # type: ignore[union-attr]
            else:
                scope = model.parent_id == parent.id

        query = select(model, sort_name.label("sort_name")).where(scope)
        if search and search.strip():
            pattern = f"%{escape_like(search.strip().lower())}%"
            query = query.where(sort_name.like(pattern, escape="\\"))
        if color is not None:
            query = query.where(model.color == color)
        if icon is not None:
            query = query.where(model.icon == icon)
        if created_from is not None:
            query = query.where(model.created_at >= as_utc(created_from))
        if created_to is not None:
            query = query.where(model.created_at <= as_utc(created_to))
        if cursor is not None:
            after_name, after_id = decode_cursor(cursor)
            query = query.where(
                or_(
                    sort_name > after_name,
                    and_(sort_name == after_name, model.id > after_id),
                )
            )

        result = await session.execute(query.order_by(sort_name, model.id).limit(limit + 1))
        rows = list(result.all())
        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            last, last_sort = rows[-1]
            next_cursor = encode_cursor(last_sort, last.id)

        folders = [row[0] for row in rows]
        if parent_level is not None and not flat:
            levels = await self._resolver.resolve_children(
                session, actor_id, parent_level, folders
            )
        else:
            levels = {
                f.id: await self._resolver.resolve_folder(session, actor_id, f) for f in folders
            }
        return FolderPage(
            items=[self.folder_to_info(f, levels[f.id]) for f in folders],
            next_cursor=next_cursor,
        )

    async def search_folders(
        self,
        session: AsyncSession,
        owner_id: str,
        query: str,
        *,
        limit: int = 50,
    ) -> list[FolderInfo]:
        """Case-insensitive substring search over folder names owned by *owner_id*."""
        owner_id = require_account_id(owner_id, "owner_id")
        query = query.strip()
        if not query:
            return []
        model = self._folder_model
        pattern = f"%{escape_like(query.lower())}%"
        result = await session.execute(
            select(model)
            .where(
                model.owner_id == owner_id,
                func.lower(model.name).like(pattern, escape="\\"),
            )
            .order_by(func.lower(model.name), model.id)
            .limit(limit)
        )
        return [self.folder_to_info(f, PermissionLevel.FULL) for f in result.scalars().all()]

    # ------------------------------------------------------------------
    # System folders
    # ------------------------------------------------------------------

    async def list_system_folders(self, session: AsyncSession, owner_id: str) -> list[FolderInfo]:
        """System folders (Inbox, Trash, ...) owned by *owner_id*."""
        model = self._folder_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id, model.is_system.is_(True))  # type: ignore[attr-defined]
            .order_by(model.system_type)
        )
        return [self.folder_to_info(f, PermissionLevel.FULL) for f in result.scalars().all()]

    async def ensure_system_folders(self, session: AsyncSession, owner_id: str) -> list[FolderInfo]:
        """Create any missing system folders for *owner_id*. Idempotent."""
        owner_id = require_account_id(owner_id, "owner_id")
        existing = {f.system_type for f in await self.list_system_folders(session, owner_id)}
        for system_type, name in SYSTEM_FOLDERS.items():
            if system_type in existing:
                continue
            await self.create_folder(
                session,
                owner_id,
                name,
                icon=system_type,
                is_system=True,
                system_type=system_type,
            )
            logger.debug("Created system folder %s for %s", system_type, owner_id)
        return await self.list_system_folders(session, owner_id)
