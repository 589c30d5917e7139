"""FolderShare model — tracks folder invitations between accounts.

Provides ``FolderShareBase`` (non-table) and ``FolderShare`` (concrete table).
Subclass ``FolderShareBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per backend.  Concrete subclasses must carry
a unique constraint on ``(folder_id, shared_with_user_id)``: removed shares
are deleted, so every stored row counts as non-removed.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


class FolderShareBase(SQLModel):
    """Base fields for a folder share. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    folder_id: str = Field(index=True)
    shared_by_user_id: str = Field(index=True)
    shared_with_user_id: str = Field(index=True)
    permission: str = Field(default="VIEW")
    status: str = Field(default="pending")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    responded_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class FolderShare(FolderShareBase, table=True):
    """Default folder share table — ``canopy_folder_shares``."""

    __tablename__ = "canopy_folder_shares"
    __table_args__ = (
        UniqueConstraint(
            "folder_id",
            "shared_with_user_id",
            name="uq_canopy_folder_shares_folder_target",
        ),
        Index("ix_canopy_folder_shares_target_status", "shared_with_user_id", "status"),
    )
