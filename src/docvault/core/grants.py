"""PermissionStore — per (folder, user) grant CRUD.

Stateless service that receives a session at call time, following the
FolderService pattern.  Authorization of who may change a grant lives in
the facade; this layer only keeps the records consistent.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from docvault.models.folders import FolderPermission

from .exceptions import ConflictError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .permissions import PermissionFlags


class PermissionStore:
    """Holds at most one ``FolderPermission`` per ``(folder_id, user_id)``."""

    async def get(
        self, session: AsyncSession, folder_id: int, user_id: int
    ) -> FolderPermission | None:
        """Get the direct grant of *user_id* on *folder_id*."""
        result = await session.execute(
            select(FolderPermission).where(
                FolderPermission.folder_id == folder_id,
                FolderPermission.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_folder(
        self, session: AsyncSession, folder_id: int
    ) -> list[FolderPermission]:
        """List all grants on a folder."""
        result = await session.execute(
            select(FolderPermission)
            .where(FolderPermission.folder_id == folder_id)
            .order_by(FolderPermission.id)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())

    async def list_by_user(
        self, session: AsyncSession, user_id: int
    ) -> list[FolderPermission]:
        """List all grants held by a user."""
        result = await session.execute(
            select(FolderPermission)
            .where(FolderPermission.user_id == user_id)
            .order_by(FolderPermission.folder_id)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())

    async def list_for_chain(
        self, session: AsyncSession, folder_ids: list[int], user_id: int
    ) -> list[FolderPermission]:
        """Grants of *user_id* on any of *folder_ids*, in one query."""
        if not folder_ids:
            return []
        result = await session.execute(
            select(FolderPermission).where(
                FolderPermission.user_id == user_id,
                FolderPermission.folder_id.in_(folder_ids),  # type: ignore[attr-defined]
            )
        )
        return list(result.scalars().all())

    async def count_owners(self, session: AsyncSession, folder_id: int) -> int:
        """Number of direct owner grants on a folder."""
        result = await session.execute(
            select(func.count())
            .select_from(FolderPermission)
            .where(
                FolderPermission.folder_id == folder_id,
                FolderPermission.is_owner.is_(True),  # type: ignore[attr-defined]
            )
        )
        return int(result.scalar_one())

    async def create(
        self,
        session: AsyncSession,
        folder_id: int,
        user_id: int,
        flags: PermissionFlags,
    ) -> FolderPermission:
        """Create a grant. Raises ``ConflictError`` if one already exists."""
        if await self.get(session, folder_id, user_id) is not None:
            raise ConflictError(
                f"User {user_id} already has a grant on folder {folder_id}; update it instead"
            )

        permission = FolderPermission(
            folder_id=folder_id,
            user_id=user_id,
            can_view=flags.can_view,
            can_edit=flags.can_edit,
            can_delete=flags.can_delete,
            can_share=flags.can_share,
            is_owner=flags.is_owner,
        )
        session.add(permission)
        try:
            await session.flush()
        except IntegrityError as e:
            # A concurrent grant for the same pair won the unique constraint
            raise ConflictError(
                f"User {user_id} already has a grant on folder {folder_id}"
            ) from e
        return permission

    async def update(
        self,
        session: AsyncSession,
        permission: FolderPermission,
        flags: PermissionFlags,
    ) -> FolderPermission:
        """Overwrite the capability flags of an existing grant."""
        permission.can_view = flags.can_view
        permission.can_edit = flags.can_edit
        permission.can_delete = flags.can_delete
        permission.can_share = flags.can_share
        permission.is_owner = flags.is_owner
        permission.updated_at = datetime.now(UTC)
        await session.flush()
        return permission

    async def delete(self, session: AsyncSession, permission: FolderPermission) -> None:
        """Delete one grant."""
        await session.delete(permission)
        await session.flush()

    async def delete_for_folder(self, session: AsyncSession, folder_id: int) -> None:
        """Delete every grant on a folder."""
        await session.execute(
            sa_delete(FolderPermission).where(
                FolderPermission.folder_id == folder_id,  # type: ignore[arg-type]
            )
        )
