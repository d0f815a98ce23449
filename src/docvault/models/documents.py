"""Document and DocumentVersion models.

``Document.current_version`` always equals the highest committed
``DocumentVersion.version`` for the document.  Only
:class:`~docvault.core.versioning.VersioningService` advances it.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class Document(SQLModel, table=True):
    """A stored document — ``docvault_documents``.

    ``folder_id`` is ``None`` for documents at the root.  ``path`` is the
    storage reference of the current version.
    """

    __tablename__ = "docvault_documents"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    folder_id: int | None = Field(default=None, foreign_key="docvault_folders.id", index=True)
    path: str = Field(default="")
    type: str = Field(default="")
    size: int = Field(default=0)
    original_extension: str | None = Field(default=None)
    current_version: int = Field(default=1)
    created_by: int | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class DocumentVersion(SQLModel, table=True):
    """Immutable version record — ``docvault_document_versions``."""

    __tablename__ = "docvault_document_versions"
    __table_args__ = (UniqueConstraint("document_id", "version", name="uq_document_version"),)

    id: int | None = Field(default=None, primary_key=True)
    document_id: int = Field(foreign_key="docvault_documents.id", index=True)
    version: int = Field(default=1)
    path: str = Field(default="")
    size: int = Field(default=0)
    created_by: int | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
