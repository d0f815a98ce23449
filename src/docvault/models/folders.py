"""Folder and FolderPermission models.

``Folder.parent_id`` forms the hierarchy; ``path`` is a cached, display-only
materialization of the chain of names.  ``FolderPermission`` holds at most one
grant per ``(folder_id, user_id)`` pair.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class Folder(SQLModel, table=True):
    """Hierarchical document container — ``docvault_folders``."""

    __tablename__ = "docvault_folders"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    path: str = Field(default="/")
    parent_id: int | None = Field(default=None, foreign_key="docvault_folders.id", index=True)
    created_by: int | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class FolderPermission(SQLModel, table=True):
    """Capabilities one user holds on one folder — ``docvault_folder_permissions``.

    An owner implicitly holds every capability regardless of the stored
    flags; see :func:`docvault.core.permissions.allows`.
    """

    __tablename__ = "docvault_folder_permissions"
    __table_args__ = (UniqueConstraint("folder_id", "user_id", name="uq_folder_permission_user"),)

    id: int | None = Field(default=None, primary_key=True)
    folder_id: int = Field(foreign_key="docvault_folders.id", index=True)
    user_id: int = Field(index=True)
    can_view: bool = Field(default=True)
    can_edit: bool = Field(default=False)
    can_delete: bool = Field(default=False)
    can_share: bool = Field(default=False)
    is_owner: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
