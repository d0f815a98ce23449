"""ActivityLog — append-only audit records keyed by document."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlmodel import select

from docvault.models.activity import ActivityAction, DocumentActivity
from docvault.models.documents import Document

from .exceptions import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class ActivityLog:
    """Append and read audit records.

    Records are written in the caller's session, so an activity commits
    or rolls back together with the mutation it describes.  There is no
    update method; rows leave the table only through
    :meth:`delete_for_document` when their document is purged.
    """

    async def append(
        self,
        session: AsyncSession,
        document_id: int,
        user_id: int | None,
        action: ActivityAction,
        details: str = "",
    ) -> DocumentActivity:
        """Append one record for an existing document. Flushes but does not commit."""
        if await session.get(Document, document_id) is None:
            raise NotFoundError(f"Document not found: {document_id}")
        return await self._insert(session, document_id, user_id, action, details)

    async def append_tombstone(
        self,
        session: AsyncSession,
        document_id: int,
        name: str,
        user_id: int | None,
    ) -> DocumentActivity:
        """Record the deletion of a document whose history is being purged.

        The tombstone carries the deleted id in its details rather than as
        a reference, so it outlives the document.
        """
        return await self._insert(
            session,
            None,
            user_id,
            ActivityAction.DELETE,
            f"Document {name} (id {document_id}) deleted",
        )

    async def _insert(
        self,
        session: AsyncSession,
        document_id: int | None,
        user_id: int | None,
        action: ActivityAction,
        details: str,
    ) -> DocumentActivity:
        activity = DocumentActivity(
            document_id=document_id,
            user_id=user_id,
            action=ActivityAction(action).value,
            details=details,
        )
        session.add(activity)
        await session.flush()
        return activity

    async def list_by_document(
        self, session: AsyncSession, document_id: int
    ) -> list[DocumentActivity]:
        """All records for a document, newest first."""
        result = await session.execute(
            select(DocumentActivity)
            .where(DocumentActivity.document_id == document_id)
            .order_by(
                DocumentActivity.created_at.desc(),  # type: ignore[attr-defined]
                DocumentActivity.id.desc(),  # type: ignore[union-attr]
            )
        )
        return list(result.scalars().all())

    async def list_recent(self, session: AsyncSession, limit: int = 10) -> list[DocumentActivity]:
        """The *limit* most recent records across all documents, newest first."""
        result = await session.execute(
            select(DocumentActivity)
            .order_by(
                DocumentActivity.created_at.desc(),  # type: ignore[attr-defined]
                DocumentActivity.id.desc(),  # type: ignore[union-attr]
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_for_document(self, session: AsyncSession, document_id: int) -> None:
        """Delete every record of a document. Only document purge calls this."""
        await session.execute(
            sa_delete(DocumentActivity).where(
                DocumentActivity.document_id == document_id,  # type: ignore[arg-type]
            )
        )
