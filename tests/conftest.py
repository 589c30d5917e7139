"""Shared fixtures for Canopy tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import Session, SQLModel, create_engine

from canopy._canopy_async import CanopyAsync
from canopy.events import EventType, ShareEvent
from canopy.folders.resolver import PermissionResolver
from canopy.folders.sharing import SharingService
from canopy.folders.tree import FolderTreeService
from canopy.models.folders import Folder
from canopy.models.shares import FolderShare

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine


@pytest.fixture
def engine() -> Engine:
    """In-memory SQLite engine with all tables created."""
    eng = create_engine("sqlite://", echo=False)
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine: Engine) -> Iterator[Session]:
    """SQLModel session bound to the in-memory engine, rolled back after each test."""
    with Session(engine) as s:
        s.begin()
        yield s
        s.rollback()


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services (session-level)
# ---------------------------------------------------------------------------


@pytest.fixture
def resolver() -> PermissionResolver:
    return PermissionResolver(Folder, FolderShare)


@pytest.fixture
def tree(resolver: PermissionResolver) -> FolderTreeService:
    return FolderTreeService(Folder, FolderShare, resolver)


@pytest.fixture
def sharing(resolver: PermissionResolver) -> SharingService:
    return SharingService(Folder, FolderShare, resolver)


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


@pytest.fixture
async def canopy(async_engine: AsyncEngine) -> AsyncIterator[CanopyAsync]:
    """CanopyAsync on the in-memory engine."""
    async with CanopyAsync(engine=async_engine) as c:
        yield c


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Async file-backed SQLite engine, for tests that run operations concurrently."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'canopy.db'}", echo=False)
    yield eng
    await eng.dispose()


@pytest.fixture
async def file_canopy(file_engine: AsyncEngine) -> AsyncIterator[CanopyAsync]:
    async with CanopyAsync(engine=file_engine) as c:
        yield c


@pytest.fixture
def collected(canopy: CanopyAsync) -> list[ShareEvent]:
    """Every event emitted by the ``canopy`` fixture, in order."""
    events: list[ShareEvent] = []

    async def handler(event: ShareEvent) -> None:
        events.append(event)

    for et in EventType:
        canopy.on(et, handler)
    return events
