"""DocumentActivity model — the append-only audit trail."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class ActivityAction(str, Enum):
    """Kinds of document activity recorded in the audit trail."""

    CREATED = "created"
    UPLOADED = "uploaded"
    NEW_VERSION = "new_version"
    EDIT = "edit"
    RENAMED = "renamed"
    MOVED = "moved"
    DOWNLOAD = "download"
    DELETE = "delete"


class DocumentActivity(SQLModel, table=True):
    """One audit record — ``docvault_document_activity``.

    ``user_id`` is ``None`` for system-initiated actions.  ``document_id`` is
    ``None`` only for the tombstone written when a document is deleted.
    """

    __tablename__ = "docvault_document_activity"

    id: int | None = Field(default=None, primary_key=True)
    document_id: int | None = Field(default=None, foreign_key="docvault_documents.id", index=True)
    user_id: int | None = Field(default=None, index=True)
    action: str = Field(default=ActivityAction.EDIT.value)
    details: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
        index=True,
    )
