"""Dialect helpers — engine dialect detection and constraint error mapping."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.exc import DBAPIError, IntegrityError
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Return 'sqlite', 'postgresql', or 'mssql'."""
    # AsyncEngine wraps a sync engine
    sync_engine = getattr(engine, "sync_engine", engine)
    name = sync_engine.dialect.name
    if name == "sqlite":
        return "sqlite"
    if name in ("postgresql", "postgres"):
        return "postgresql"
    if name in ("mssql", "pyodbc"):
        return "mssql"
    return name


def is_unique_violation(exc: IntegrityError) -> bool:
    """Return True if *exc* was raised by a unique constraint.

    Checks the driver message, which differs per backend:
    SQLite says ``UNIQUE constraint failed``, PostgreSQL
    ``duplicate key value``, MSSQL ``Violation of UNIQUE KEY``.
    """
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return any(
        marker in message
        for marker in ("unique constraint", "duplicate key", "violation of unique key")
    )


def is_lock_conflict(exc: DBAPIError) -> bool:
    """Return True if *exc* means the transaction lost a lock race and can be retried.

    PostgreSQL aborts one side of a deadlock (``deadlock detected``) or a
    serialization failure; SQLite gives up waiting with ``database is locked``.
    """
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return any(
        marker in message
        for marker in ("deadlock", "could not serialize", "database is locked")
    )


async def begin_write(session: AsyncSession) -> None:
    """Start *session*'s transaction holding the database write lock where needed.

    SQLite only takes its write lock at the first write, so two
    transactions could both read an ancestor chain and then both write.
    ``BEGIN IMMEDIATE`` takes the lock before the first read.  Other
    backends lock the rows they read with ``SELECT ... FOR UPDATE``.
    """
    conn = await session.connection()
    if conn.dialect.name == "sqlite":
        await conn.exec_driver_sql("BEGIN IMMEDIATE")
