"""Canopy — sync wrappers over CanopyAsync on a private event loop."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from canopy._canopy_async import CanopyAsync

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

    from canopy.events import EventBus, EventType
    from canopy.folders.permissions import PermissionLevel, ShareStatus
    from canopy.folders.protocol import IdentityProvider
    from canopy.folders.types import (
        DeleteResult,
        FolderInfo,
        FolderNode,
        FolderPage,
        SharedFolderInfo,
        ShareInfo,
    )

logger = logging.getLogger(__name__)


class Canopy:
    """Synchronous facade over ``CanopyAsync``.

    Runs a private event loop in a daemon thread so callers can use
    Canopy from plain sync code or from inside an existing async context.
    A database URL creates (and on close disposes) its own engine.

    Usage::

        with Canopy("sqlite+aiosqlite:///canopy.db") as canopy:
            inbox = canopy.create_folder("alice", "Receipts")
            share = canopy.create_share("alice", inbox.id, "bob", "EDIT")
    """

    def __init__(
        self,
        url: str,
        *,
        identity_provider: IdentityProvider | None = None,
        event_bus: EventBus | None = None,
        echo: bool = False,
        **kwargs: Any,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        try:
            self._run(self._async_init(url, identity_provider, event_bus, echo, kwargs))
        except BaseException:
            self._stop_loop()
            raise

    async def _async_init(
        self,
        url: str,
        identity_provider: IdentityProvider | None,
        event_bus: EventBus | None,
        echo: bool,
        kwargs: dict[str, Any],
    ) -> None:
        from sqlalchemy.ext.asyncio import create_async_engine

        self._engine: AsyncEngine = create_async_engine(url, echo=echo)
        self._async = CanopyAsync(
            engine=self._engine,
            identity_provider=identity_provider,
            event_bus=event_bus,
            **kwargs,
        )
        await self._async.open()
        logger.debug("Canopy opened on %s", self._async.dialect)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)

    @property
    def aio(self) -> CanopyAsync:
        """The underlying async facade."""
        return self._async

    @property
    def event_bus(self) -> EventBus:
        return self._async.event_bus

    def on(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Register an async *handler*; it runs on the private loop."""
        self._async.on(event_type, handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Dispose the engine, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._async_close())
        finally:
            self._stop_loop()

    async def _async_close(self) -> None:
        await self._async.close()
        await self._engine.dispose()

    def __enter__(self) -> Canopy:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Folder tree wrappers (sync)
    # ------------------------------------------------------------------

    def create_folder(
        self,
        owner_id: str,
        name: str,
        parent_id: str | None = None,
        *,
        icon: str | None = None,
        color: str | None = None,
    ) -> FolderInfo:
        return self._run(
            self._async.create_folder(owner_id, name, parent_id, icon=icon, color=color)
        )

    def move_folder(self, actor_id: str, folder_id: str, new_parent_id: str | None) -> FolderInfo:
        return self._run(self._async.move_folder(actor_id, folder_id, new_parent_id))

    def rename_folder(self, actor_id: str, folder_id: str, name: str) -> FolderInfo:
        return self._run(self._async.rename_folder(actor_id, folder_id, name))

    def update_folder(
        self,
        actor_id: str,
        folder_id: str,
        *,
        icon: str | None = None,
        color: str | None = None,
    ) -> FolderInfo:
        return self._run(self._async.update_folder(actor_id, folder_id, icon=icon, color=color))

    def delete_folder(self, actor_id: str, folder_id: str) -> DeleteResult:
        return self._run(self._async.delete_folder(actor_id, folder_id))

    def get_folder(self, actor_id: str, folder_id: str) -> FolderInfo:
        return self._run(self._async.get_folder(actor_id, folder_id))

    def resolve_path(self, folder_id: str, *, actor_id: str | None = None) -> list[FolderInfo]:
        return self._run(self._async.resolve_path(folder_id, actor_id=actor_id))

    def list_children(self, actor_id: str, parent_id: str | None = None) -> list[FolderInfo]:
        return self._run(self._async.list_children(actor_id, parent_id))

    def get_tree(self, actor_id: str, folder_id: str) -> FolderNode:
        return self._run(self._async.get_tree(actor_id, folder_id))

    def list_folders(self, actor_id: str, **filters: Any) -> FolderPage:
        """One page of the actor's folders; keyword filters as ``CanopyAsync.list_folders``."""
        return self._run(self._async.list_folders(actor_id, **filters))

    def search_folders(self, owner_id: str, query: str, *, limit: int = 50) -> list[FolderInfo]:
        return self._run(self._async.search_folders(owner_id, query, limit=limit))

    def ensure_system_folders(self, owner_id: str) -> list[FolderInfo]:
        return self._run(self._async.ensure_system_folders(owner_id))

    def list_system_folders(self, owner_id: str) -> list[FolderInfo]:
        return self._run(self._async.list_system_folders(owner_id))

    # ------------------------------------------------------------------
    # Share registry wrappers (sync)
    # ------------------------------------------------------------------

    def create_share(
        self,
        owner_id: str,
        folder_id: str,
        target_user_id: str,
        permission: str | PermissionLevel = "VIEW",
    ) -> ShareInfo:
        return self._run(
            self._async.create_share(owner_id, folder_id, target_user_id, permission)
        )

    def respond_to_share(self, actor_id: str, share_id: str, accept: bool) -> ShareInfo:
        return self._run(self._async.respond_to_share(actor_id, share_id, accept))

    def update_permission(
        self, actor_id: str, share_id: str, permission: str | PermissionLevel
    ) -> ShareInfo:
        return self._run(self._async.update_permission(actor_id, share_id, permission))

    def remove_share(self, actor_id: str, share_id: str) -> ShareInfo:
        return self._run(self._async.remove_share(actor_id, share_id))

    def get_share(self, actor_id: str, share_id: str) -> ShareInfo:
        return self._run(self._async.get_share(actor_id, share_id))

    def list_shared_with_me(
        self, actor_id: str, status: str | ShareStatus | None = None
    ) -> list[SharedFolderInfo]:
        return self._run(self._async.list_shared_with_me(actor_id, status))

    def list_shared_by_me(self, owner_id: str) -> list[ShareInfo]:
        return self._run(self._async.list_shared_by_me(owner_id))

    def list_folder_shares(self, actor_id: str, folder_id: str) -> list[ShareInfo]:
        return self._run(self._async.list_folder_shares(actor_id, folder_id))

    def pending_count(self, actor_id: str) -> int:
        return self._run(self._async.pending_count(actor_id))

    # ------------------------------------------------------------------
    # Permission resolver wrappers (sync)
    # ------------------------------------------------------------------

    def resolve(self, actor_id: str, folder_id: str) -> PermissionLevel:
        return self._run(self._async.resolve(actor_id, folder_id))

    def accessible_roots(self, actor_id: str) -> list[FolderInfo]:
        return self._run(self._async.accessible_roots(actor_id))
