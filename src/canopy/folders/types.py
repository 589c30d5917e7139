"""Result types: FolderInfo, ShareInfo, SharedFolderInfo, etc."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from .permissions import PermissionLevel, ShareStatus


@dataclass
class AccountInfo:
    """Identity of an account as supplied by the identity provider."""

    id: str
    name: str = ""
    email: str = ""


@dataclass
class FolderInfo:
    """Folder metadata as seen by one actor."""

    id: str
    name: str
    owner_id: str
    parent_id: str | None = None
    icon: str = ""
    color: str = ""
    is_system: bool = False
    system_type: str | None = None
    permission: PermissionLevel | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class FolderNode:
    """A folder with its visible descendants, for subtree listings."""

    folder: FolderInfo
    children: list[FolderNode] = field(default_factory=list)

    def walk(self) -> list[FolderInfo]:
        """Return this node and all descendants, breadth-first."""
        out: list[FolderInfo] = []
        queue: deque[FolderNode] = deque([self])
        while queue:
            node = queue.popleft()
            out.append(node.folder)
            queue.extend(node.children)
        return out


@dataclass
class FolderPage:
    """One page of a folder listing.

    Pass ``next_cursor`` back as ``cursor`` to fetch the following page;
    it is ``None`` on the last page.
    """

    items: list[FolderInfo] = field(default_factory=list)
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


@dataclass
class ShareInfo:
    """Share metadata joined with folder name and both parties."""

    id: str
    folder_id: str
    folder_name: str
    shared_by: AccountInfo
    shared_with: AccountInfo
    permission: PermissionLevel
    status: ShareStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class SharedFolderInfo:
    """A folder shared with the caller: display metadata, share, and owner."""

    id: str
    name: str
    icon: str
    color: str
    permission: PermissionLevel
    status: ShareStatus
    owner: AccountInfo
    share_id: str
    created_at: datetime | None = None


@dataclass
class DeleteResult:
    """Result of a cascading folder delete."""

    folder_id: str
    deleted_folder_ids: list[str] = field(default_factory=list)
    revoked_share_ids: list[str] = field(default_factory=list)
    revoked_shares: list[ShareInfo] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return len(self.deleted_folder_ids)
