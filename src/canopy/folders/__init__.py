"""Folder layer — tree store, share registry, permission resolver."""

from canopy.folders.exceptions import (
    CanopyError,
    ConflictError,
    ConsistencyError,
    CyclicMoveError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
)
from canopy.folders.locks import OwnerLocks
from canopy.folders.permissions import PermissionLevel, RevokeReason, ShareStatus
from canopy.folders.protocol import IdentityProvider, StaticIdentityProvider
from canopy.folders.resolver import PermissionResolver
from canopy.folders.sharing import SharingService
from canopy.folders.tree import FolderTreeService
from canopy.folders.types import (
    AccountInfo,
    DeleteResult,
    FolderInfo,
    FolderNode,
    FolderPage,
    SharedFolderInfo,
    ShareInfo,
)

__all__ = [
    "AccountInfo",
    "CanopyError",
    "ConflictError",
    "ConsistencyError",
    "CyclicMoveError",
    "DeleteResult",
    "FolderInfo",
    "FolderNode",
    "FolderPage",
    "FolderTreeService",
    "ForbiddenError",
    "IdentityProvider",
    "InvalidArgumentError",
    "NotFoundError",
    "OwnerLocks",
    "PermissionLevel",
    "PermissionResolver",
    "RevokeReason",
    "ShareInfo",
    "ShareStatus",
    "SharedFolderInfo",
    "SharingService",
    "StaticIdentityProvider",
    "StorageError",
]
