"""Folder model — self-referential folder tree stored as flat rows.

Provides ``FolderBase`` (non-table) and ``Folder`` (concrete table).
Subclass ``FolderBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per backend.

The tree is kept as an arena of rows linked by ``parent_id``; ancestor and
descendant walks are iterative queries over the ``parent_id`` index, never
recursive object graphs.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel

SYSTEM_FOLDERS: dict[str, str] = {
    "inbox": "Inbox",
    "trash": "Trash",
}
"""System folder types created per owner, mapped to their display names."""


class FolderBase(SQLModel):
    """Base fields for a folder node. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    name: str = Field(default="")
    parent_id: str | None = Field(default=None, index=True)
    icon: str = Field(default="folder")
    color: str = Field(default="")
    is_system: bool = Field(default=False)
    system_type: str | None = Field(default=None)
    version: int = Field(default=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Folder(FolderBase, table=True):
    """Default folder table — ``canopy_folders``."""

    __tablename__ = "canopy_folders"
    __table_args__ = (Index("ix_canopy_folders_owner_parent", "owner_id", "parent_id"),)
