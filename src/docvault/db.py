"""Engine helpers — dialect detection, SQLite foreign keys, table creation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlmodel import SQLModel

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine


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


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def enable_sqlite_foreign_keys(engine: Engine | AsyncEngine) -> None:
    """Turn on foreign-key enforcement for every new SQLite connection.

    SQLite ignores ``FOREIGN KEY`` clauses unless the pragma is set per
    connection; without it a document could reference a deleted folder.
    No-op for other dialects.
    """
    if get_dialect(engine) != "sqlite":
        return
    sync_engine = getattr(engine, "sync_engine", engine)
    if not event.contains(sync_engine, "connect", _set_sqlite_pragma):
        event.listen(sync_engine, "connect", _set_sqlite_pragma)


async def create_tables(engine: AsyncEngine) -> None:
    """Create all docvault tables that do not exist yet."""
    # Registers the tables on SQLModel.metadata
    import docvault.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
