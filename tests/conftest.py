"""Shared fixtures for docvault tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from docvault import DocVault, LocalBlobStore, Role, StaticIdentityProvider, UserInfo
from docvault.db import create_tables, enable_sqlite_foreign_keys

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

ADMIN = 1
TECH = 2
ALICE = 3
BOB = 4


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with foreign keys on and all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    enable_sqlite_foreign_keys(eng)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine; each session gets its own connection."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vault.db'}", echo=False)
    enable_sqlite_foreign_keys(eng)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider(
        [
            UserInfo(ADMIN, Role.ADMIN),
            UserInfo(TECH, Role.TECHNICIAN),
            UserInfo(ALICE),
            UserInfo(BOB),
        ]
    )


@pytest.fixture
def blobs(tmp_path: Path) -> LocalBlobStore:
    root = tmp_path / "blobs"
    root.mkdir()
    return LocalBlobStore(root)


@pytest.fixture
def vault(
    async_engine: AsyncEngine,
    blobs: LocalBlobStore,
    identity: StaticIdentityProvider,
) -> DocVault:
    return DocVault(engine=async_engine, blobs=blobs, identity=identity)
