"""SQLModel database models for Canopy."""

from canopy.models.folders import SYSTEM_FOLDERS, Folder, FolderBase
from canopy.models.shares import FolderShare, FolderShareBase

__all__ = [
    "SYSTEM_FOLDERS",
    "Folder",
    "FolderBase",
    "FolderShare",
    "FolderShareBase",
]
