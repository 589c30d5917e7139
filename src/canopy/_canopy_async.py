"""CanopyAsync — primary async facade: sessions, owner locks, events."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from canopy.events import EventBus, EventType, ShareEvent
from canopy.folders.dialect import begin_write, get_dialect, is_lock_conflict
from canopy.folders.exceptions import CanopyError, ConflictError, StorageError
from canopy.folders.locks import OwnerLocks
from canopy.folders.permissions import PermissionLevel, RevokeReason
from canopy.folders.resolver import PermissionResolver
from canopy.folders.sharing import SharingService
from canopy.folders.tree import FolderTreeService
from canopy.folders.utils import DEFAULT_MAX_DEPTH, DEFAULT_PAGE_SIZE
from canopy.models.folders import Folder
from canopy.models.shares import FolderShare

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from canopy.folders.permissions import ShareStatus
    from canopy.folders.protocol import IdentityProvider
    from canopy.folders.types import (
        DeleteResult,
        FolderInfo,
        FolderNode,
        FolderPage,
        SharedFolderInfo,
        ShareInfo,
    )
    from canopy.models.folders import FolderBase
    from canopy.models.shares import FolderShareBase

logger = logging.getLogger(__name__)


class CanopyAsync:
    """Async facade wiring the folder tree, share registry, resolver, and event bus.

    Every operation is one unit of work: it takes the lock of the folder
    owner it touches, opens a session, runs the service call, commits,
    and only then dispatches share events.  Any failure rolls the
    session back, so a rejected operation never leaves partial state.

    Engine-based setup::

        engine = create_async_engine("postgresql+asyncpg://...")
        canopy = CanopyAsync(engine=engine)
        await canopy.open()
        folder = await canopy.create_folder("alice", "Receipts")

    Session-factory setup (tables managed elsewhere, e.g. by migrations)::

        canopy = CanopyAsync(session_factory=my_factory)
    """

    def __init__(
        self,
        *,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        folder_model: type[FolderBase] | None = None,
        share_model: type[FolderShareBase] | None = None,
        identity_provider: IdentityProvider | None = None,
        event_bus: EventBus | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        if engine is not None and session_factory is not None:
            raise ValueError("Provide engine or session_factory, not both")
        if engine is None and session_factory is None:
            raise ValueError("Provide engine or session_factory")
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")

        self._engine = engine
        self._session_factory: Callable[..., AsyncSession] = session_factory or async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        self.dialect = get_dialect(engine) if engine is not None else None

        fm: type[FolderBase] = folder_model or Folder  # type: ignore[assignment]
        sm: type[FolderShareBase] = share_model or FolderShare  # type: ignore[assignment]
        self._folder_model = fm
        self._share_model = sm

        self._event_bus = event_bus or EventBus()
        self._locks = OwnerLocks()
        self._closed = False

        # Composed services
        self.resolver = PermissionResolver(fm, sm, max_depth=max_depth)
        self.tree = FolderTreeService(fm, sm, self.resolver)
        self.sharing = SharingService(fm, sm, self.resolver, identity_provider)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def folder_model(self) -> type[FolderBase]:
        return self._folder_model

    @property
    def share_model(self) -> type[FolderShareBase]:
        return self._share_model

    def on(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Register an async *handler* for *event_type* on the event bus."""
        self._event_bus.register(event_type, handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the folder and share tables if an engine was provided."""
        if self._engine is None:
            return
        fm = self._folder_model
        sm = self._share_model
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: fm.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
            )
            await conn.run_sync(
                lambda c: sm.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
            )
        logger.debug("Canopy tables ready on %s", self.dialect)

    async def close(self) -> None:
        """Mark closed. The engine belongs to the caller and is not disposed."""
        self._closed = True

    async def __aenter__(self) -> CanopyAsync:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Session management (per-operation only)
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session that commits on success and rolls back on any error.

        Database failures surface as ``StorageError``, except lost lock races
        (deadlock, serialization failure, busy SQLite database), which surface
        as ``ConflictError`` so the caller can retry.  ``CanopyError``
        rejections propagate unchanged.
        """
        if self._closed:
            raise CanopyError("Canopy is closed")
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except CanopyError:
            await session.rollback()
            raise
        except DBAPIError as exc:
            await session.rollback()
            if is_lock_conflict(exc):
                raise ConflictError(f"Concurrent update, retry: {exc.orig}") from exc
            raise StorageError(f"Storage failure: {exc}") from exc
        except SQLAlchemyError as exc:
            await session.rollback()
            raise StorageError(f"Storage failure: {exc}") from exc
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def _unit_of_work(self, owner_id: str | None) -> AsyncGenerator[AsyncSession]:
        """Hold *owner_id*'s lock around a committed session.

        The owner lock only orders callers of this instance.  The session
        opens with ``begin_write`` so that other instances and processes on
        the same database are ordered by the database itself.  With no owner
        (the target does not exist) the operation still runs so that it
        raises its own ``NotFoundError``.
        """
        if owner_id is None:
            async with self._session() as session:
                await begin_write(session)
                yield session
            return
        async with self._locks.hold(owner_id), self._session() as session:
            await begin_write(session)
            yield session

    async def _owner_of_folder(self, folder_id: str | None) -> str | None:
        if not folder_id:
            return None
        model = self._folder_model
        async with self._session() as session:
            result = await session.execute(select(model.owner_id).where(model.id == folder_id))
            return result.scalar_one_or_none()

    async def _owner_of_share(self, share_id: str) -> str | None:
        model = self._share_model
        async with self._session() as session:
            result = await session.execute(
                select(model.shared_by_user_id).where(model.id == share_id)
            )
            return result.scalar_one_or_none()

    async def _emit(self, events: list[ShareEvent]) -> None:
        await self._event_bus.emit_all(events)

    @staticmethod
    def _share_event(
        event_type: EventType,
        share: ShareInfo,
        actor_id: str,
        *,
        old_permission: PermissionLevel | None = None,
        reason: RevokeReason | None = None,
    ) -> ShareEvent:
        return ShareEvent(
            event_type=event_type,
            share_id=share.id,
            folder_id=share.folder_id,
            shared_by_user_id=share.shared_by.id,
            shared_with_user_id=share.shared_with.id,
            permission=share.permission,
            old_permission=old_permission,
            reason=reason,
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Folder tree
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        owner_id: str,
        name: str,
        parent_id: str | None = None,
        *,
        icon: str | None = None,
        color: str | None = None,
    ) -> FolderInfo:
        async with self._unit_of_work(owner_id) as session:
            return await self.tree.create_folder(
                session, owner_id, name, parent_id, icon=icon, color=color
            )

    async def move_folder(
        self,
        actor_id: str,
        folder_id: str,
        new_parent_id: str | None,
    ) -> FolderInfo:
        owner_id = await self._owner_of_folder(folder_id)
        async with self._unit_of_work(owner_id) as session:
            return await self.tree.move_folder(session, actor_id, folder_id, new_parent_id)

    async def rename_folder(self, actor_id: str, folder_id: str, name: str) -> FolderInfo:
        owner_id = await self._owner_of_folder(folder_id)
        async with self._unit_of_work(owner_id) as session:
            return await self.tree.rename_folder(session, actor_id, folder_id, name)

    async def update_folder(
        self,
        actor_id: str,
        folder_id: str,
        *,
        icon: str | None = None,
        color: str | None = None,
    ) -> FolderInfo:
        owner_id = await self._owner_of_folder(folder_id)
        async with self._unit_of_work(owner_id) as session:
            return await self.tree.update_folder(
                session, actor_id, folder_id, icon=icon, color=color
            )

    async def delete_folder(self, actor_id: str, folder_id: str) -> DeleteResult:
        """Delete a folder subtree and its shares, then emit one revoke per share."""
        owner_id = await self._owner_of_folder(folder_id)
        async with self._unit_of_work(owner_id) as session:
            result = await self.tree.delete_folder(session, actor_id, folder_id)
        await self._emit(
            [
                self._share_event(
                    EventType.SHARE_REVOKED,
                    share,
                    actor_id,
                    reason=RevokeReason.CASCADE_DELETE,
                )
                for share in result.revoked_shares
            ]
        )
        return result

    async def get_folder(self, actor_id: str, folder_id: str) -> FolderInfo:
        async with self._session() as session:
            return await self.tree.get_folder(session, actor_id, folder_id)

    async def resolve_path(
        self,
        folder_id: str,
        *,
        actor_id: str | None = None,
    ) -> list[FolderInfo]:
        async with self._session() as session:
            return await self.tree.resolve_path(session, folder_id, actor_id=actor_id)

    async def list_children(
        self,
        actor_id: str,
        parent_id: str | None = None,
    ) -> list[FolderInfo]:
        async with self._session() as session:
            return await self.tree.list_children(session, actor_id, parent_id)

    async def get_tree(self, actor_id: str, folder_id: str) -> FolderNode:
        async with self._session() as session:
            return await self.tree.get_tree(session, actor_id, folder_id)

    async def list_folders(
        self,
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
        """One page of the actor's folders; see ``FolderTreeService.list_folders``."""
        async with self._session() as session:
            return await self.tree.list_folders(
                session,
                actor_id,
                parent_id=parent_id,
                flat=flat,
                cursor=cursor,
                limit=limit,
                search=search,
                color=color,
                icon=icon,
                created_from=created_from,
                created_to=created_to,
            )

    async def search_folders(self, owner_id: str, query: str, *, limit: int = 50) -> list[FolderInfo]:
        async with self._session() as session:
            return await self.tree.search_folders(session, owner_id, query, limit=limit)

    async def ensure_system_folders(self, owner_id: str) -> list[FolderInfo]:
        async with self._unit_of_work(owner_id) as session:
            return await self.tree.ensure_system_folders(session, owner_id)

    async def list_system_folders(self, owner_id: str) -> list[FolderInfo]:
        async with self._session() as session:
            return await self.tree.list_system_folders(session, owner_id)

    # ------------------------------------------------------------------
    # Share registry
    # ------------------------------------------------------------------

    async def create_share(
        self,
        owner_id: str,
        folder_id: str,
        target_user_id: str,
        permission: str | PermissionLevel = PermissionLevel.VIEW,
    ) -> ShareInfo:
        folder_owner = await self._owner_of_folder(folder_id)
        async with self._unit_of_work(folder_owner) as session:
            share = await self.sharing.create_share(
                session, owner_id, folder_id, target_user_id, permission
            )
        await self._emit([self._share_event(EventType.SHARE_INVITED, share, owner_id)])
        return share

    async def respond_to_share(self, actor_id: str, share_id: str, accept: bool) -> ShareInfo:
        owner_id = await self._owner_of_share(share_id)
        async with self._unit_of_work(owner_id) as session:
            share = await self.sharing.respond_to_share(session, actor_id, share_id, accept)
        event_type = EventType.SHARE_ACCEPTED if accept else EventType.SHARE_REJECTED
        await self._emit([self._share_event(event_type, share, actor_id)])
        return share

    async def update_permission(
        self,
        actor_id: str,
        share_id: str,
        permission: str | PermissionLevel,
    ) -> ShareInfo:
        owner_id = await self._owner_of_share(share_id)
        async with self._unit_of_work(owner_id) as session:
            share, old = await self.sharing.update_permission(
                session, actor_id, share_id, permission
            )
        if old is not share.permission:
            await self._emit(
                [
                    self._share_event(
                        EventType.SHARE_PERMISSION_CHANGED, share, actor_id, old_permission=old
                    )
                ]
            )
        return share

    async def remove_share(self, actor_id: str, share_id: str) -> ShareInfo:
        owner_id = await self._owner_of_share(share_id)
        async with self._unit_of_work(owner_id) as session:
            share, reason = await self.sharing.remove_share(session, actor_id, share_id)
        await self._emit(
            [self._share_event(EventType.SHARE_REVOKED, share, actor_id, reason=reason)]
        )
        return share

    async def get_share(self, actor_id: str, share_id: str) -> ShareInfo:
        async with self._session() as session:
            return await self.sharing.get_share(session, actor_id, share_id)

    async def list_shared_with_me(
        self,
        actor_id: str,
        status: str | ShareStatus | None = None,
    ) -> list[SharedFolderInfo]:
        async with self._session() as session:
            return await self.sharing.list_shared_with_me(session, actor_id, status)

    async def list_shared_by_me(self, owner_id: str) -> list[ShareInfo]:
        async with self._session() as session:
            return await self.sharing.list_shared_by_me(session, owner_id)

    async def list_folder_shares(self, actor_id: str, folder_id: str) -> list[ShareInfo]:
        async with self._session() as session:
            return await self.sharing.list_folder_shares(session, actor_id, folder_id)

    async def pending_count(self, actor_id: str) -> int:
        async with self._session() as session:
            return await self.sharing.pending_count(session, actor_id)

    # ------------------------------------------------------------------
    # Permission resolver
    # ------------------------------------------------------------------

    async def resolve(self, actor_id: str, folder_id: str) -> PermissionLevel:
        """Effective permission of *actor_id* on *folder_id* (``NONE`` if invisible)."""
        async with self._session() as session:
            return await self.resolver.resolve(session, actor_id, folder_id)

    async def accessible_roots(self, actor_id: str) -> list[FolderInfo]:
        """The actor's root view: owned roots plus directly shared folders."""
        return await self.list_children(actor_id, None)
