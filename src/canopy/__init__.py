"""Canopy: folder trees with graded sharing.

Acyclic folder hierarchies, invitation-based folder sharing, and
effective-permission resolution on top of SQLModel.
"""

__version__ = "0.1.0"

from canopy._canopy import Canopy
from canopy._canopy_async import CanopyAsync
from canopy.events import EventBus, EventType, ShareEvent
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
from canopy.folders.permissions import PermissionLevel, RevokeReason, ShareStatus
from canopy.folders.protocol import IdentityProvider, StaticIdentityProvider
from canopy.folders.types import (
    AccountInfo,
    DeleteResult,
    FolderInfo,
    FolderNode,
    FolderPage,
    SharedFolderInfo,
    ShareInfo,
)
from canopy.models.folders import Folder, FolderBase
from canopy.models.shares import FolderShare, FolderShareBase

__all__ = [
    "AccountInfo",
    "Canopy",
    "CanopyAsync",
    "CanopyError",
    "ConflictError",
    "ConsistencyError",
    "CyclicMoveError",
    "DeleteResult",
    "EventBus",
    "EventType",
    "Folder",
    "FolderBase",
    "FolderInfo",
    "FolderNode",
    "FolderPage",
    "FolderShare",
    "FolderShareBase",
    "ForbiddenError",
    "IdentityProvider",
    "InvalidArgumentError",
    "NotFoundError",
    "PermissionLevel",
    "RevokeReason",
    "ShareEvent",
    "ShareInfo",
    "ShareStatus",
    "SharedFolderInfo",
    "StaticIdentityProvider",
    "StorageError",
    "__version__",
]
