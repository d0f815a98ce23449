"""VersioningService — version allocation, listing, and cleanup."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import select

from docvault.models.documents import Document, DocumentVersion

from .exceptions import InvalidInputError, NotFoundError, VersionRaceError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class VersioningService:
    """Immutable version lineage with an atomically advanced pointer.

    A new version number is allocated by incrementing
    ``Document.current_version`` in place.  The ``UPDATE`` takes the
    document's row lock (the writer lock on SQLite) until the transaction
    ends, so allocations for one document are serialized by the store
    itself: the version row and the pointer commit or roll back together,
    and no two transactions can read back the same number.
    """

    async def create_version(
        self,
        session: AsyncSession,
        document_id: int,
        uploader_id: int | None,
        storage_ref: str,
        size: int,
    ) -> DocumentVersion:
        """Allocate the next version number and insert its record.

        Raises ``VersionRaceError`` when the store reports a lock timeout or
        a duplicate ``(document_id, version)``; the caller retries in a new
        transaction.
        """
        if not storage_ref:
            raise InvalidInputError("A storage reference is required for a new version")
        if size < 0:
            raise InvalidInputError(f"Invalid size: {size}")

        try:
            result = await session.execute(
                sa_update(Document)
                .where(Document.id == document_id)  # type: ignore[arg-type]
                .values(
                    current_version=Document.current_version + 1,  # type: ignore[operator]
                    path=storage_ref,
                    size=size,
                    updated_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:  # type: ignore[attr-defined]
                raise NotFoundError(f"Document not found: {document_id}")

            version_num = (
                await session.execute(
                    select(Document.current_version).where(Document.id == document_id)
                )
            ).scalar_one()

            version = DocumentVersion(
                document_id=document_id,
                version=version_num,
                path=storage_ref,
                size=size,
                created_by=uploader_id,
            )
            session.add(version)
            await session.flush()
        except (IntegrityError, OperationalError) as e:
            raise VersionRaceError(
                f"Version allocation for document {document_id} collided with a concurrent upload"
            ) from e

        # The UPDATE bypassed the identity map
        await session.get(Document, document_id, populate_existing=True)

        logger.debug("Document %s advanced to version %s", document_id, version_num)
        return version

    async def insert_initial(
        self,
        session: AsyncSession,
        document: Document,
        uploader_id: int | None,
    ) -> DocumentVersion:
        """Insert version 1 for a freshly created document."""
        assert document.id is not None
        version = DocumentVersion(
            document_id=document.id,
            version=1,
            path=document.path,
            size=document.size,
            created_by=uploader_id,
        )
        session.add(version)
        await session.flush()
        return version

    async def list_versions(
        self, session: AsyncSession, document_id: int
    ) -> list[DocumentVersion]:
        """All versions of a document, highest first."""
        result = await session.execute(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_version(
        self, session: AsyncSession, document_id: int, version: int
    ) -> DocumentVersion:
        """Get one version record or raise ``NotFoundError``."""
        result = await session.execute(
            select(DocumentVersion).where(
                DocumentVersion.document_id == document_id,
                DocumentVersion.version == version,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"Version {version} of document {document_id} not found")
        return record

    async def storage_refs(self, session: AsyncSession, document_id: int) -> list[str]:
        """Distinct storage references used by any version of a document."""
        result = await session.execute(
            select(DocumentVersion.path).where(DocumentVersion.document_id == document_id)
        )
        return sorted({row[0] for row in result.all() if row[0]})

    async def delete_versions(self, session: AsyncSession, document_id: int) -> None:
        """Delete all version records of a document. Only document purge calls this."""
        await session.execute(
            sa_delete(DocumentVersion).where(
                DocumentVersion.document_id == document_id,  # type: ignore[arg-type]
            )
        )
