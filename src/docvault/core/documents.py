"""DocumentService — document registry: create, lookup, search, edit, purge."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from docvault.models.documents import Document

from .exceptions import InvalidInputError, NotFoundError
from .utils import download_name, escape_like, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .activity import ActivityLog
    from .folders import FolderService
    from .types import DocumentMeta
    from .versioning import VersioningService

logger = logging.getLogger(__name__)


class DocumentService:
    """Documents and their current-version pointer.

    Depends on ``FolderService`` for folder existence, ``VersioningService``
    for the initial version and version cleanup, and ``ActivityLog`` for
    cleaning up a document's history on purge.
    """

    def __init__(
        self,
        folders: FolderService,
        versioning: VersioningService,
        activity: ActivityLog,
    ) -> None:
        self._folders = folders
        self._versioning = versioning
        self._activity = activity

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, document_id: int) -> Document | None:
        """Get a document by id."""
        return await session.get(Document, document_id)

    async def require(self, session: AsyncSession, document_id: int) -> Document:
        """Get a document by id or raise ``NotFoundError``."""
        document = await self.get(session, document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")
        return document

    async def list_by_folder(
        self, session: AsyncSession, folder_id: int | None
    ) -> list[Document]:
        """Documents directly inside *folder_id* (root documents when ``None``)."""
        query = select(Document)
        if folder_id is None:
            query = query.where(Document.folder_id.is_(None))  # type: ignore[union-attr]
        else:
            query = query.where(Document.folder_id == folder_id)
        result = await session.execute(query.order_by(Document.name, Document.id))  # type: ignore[arg-type]
        return list(result.scalars().all())

    async def list_ids_in_folder(self, session: AsyncSession, folder_id: int) -> list[int]:
        """Ids of the documents directly inside *folder_id*."""
        result = await session.execute(
            select(Document.id).where(Document.folder_id == folder_id).order_by(Document.id)  # type: ignore[arg-type]
        )
        return [row[0] for row in result.all()]

    async def search(self, session: AsyncSession, query: str) -> list[Document]:
        """Case-insensitive substring search over document names and paths."""
        pattern = f"%{escape_like(query.lower())}%"
        result = await session.execute(
            select(Document)
            .where(
                or_(
                    func.lower(Document.name).like(pattern, escape="\\"),
                    func.lower(Document.path).like(pattern, escape="\\"),
                )
            )
            .order_by(Document.name, Document.id)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        meta: DocumentMeta,
        storage_ref: str,
        created_by: int | None,
    ) -> Document:
        """Insert a document at version 1 together with its first version record.

        Flushes but does not commit.  A folder deleted concurrently
        surfaces as a foreign-key violation and is reported as
        ``NotFoundError``.
        """
        valid, error = validate_name(meta.name)
        if not valid:
            raise InvalidInputError(error)
        if not storage_ref:
            raise InvalidInputError("A storage reference is required for a new document")
        if meta.size < 0:
            raise InvalidInputError(f"Invalid size: {meta.size}")

        if meta.folder_id is not None:
            await self._folders.require(session, meta.folder_id)

        document = Document(
            name=meta.name,
            folder_id=meta.folder_id,
            path=storage_ref,
            type=meta.type,
            size=meta.size,
            original_extension=meta.original_extension,
            current_version=1,
            created_by=created_by,
        )
        session.add(document)
        try:
            await session.flush()
            await self._versioning.insert_initial(session, document, created_by)
        except IntegrityError as e:
            raise NotFoundError(f"Folder not found: {meta.folder_id}") from e

        logger.debug("Created document %s in folder %s", document.id, meta.folder_id)
        return document

    async def rename(self, session: AsyncSession, document: Document, name: str) -> Document:
        """Rename a document."""
        valid, error = validate_name(name)
        if not valid:
            raise InvalidInputError(error)
        document.name = name
        document.updated_at = datetime.now(UTC)
        await session.flush()
        return document

    async def move(
        self, session: AsyncSession, document: Document, folder_id: int | None
    ) -> Document:
        """Move a document to another folder (root when ``None``)."""
        if folder_id is not None:
            await self._folders.require(session, folder_id)
        document.folder_id = folder_id
        document.updated_at = datetime.now(UTC)
        try:
            await session.flush()
        except IntegrityError as e:
            raise NotFoundError(f"Folder not found: {folder_id}") from e
        return document

    async def update_metadata(
        self,
        session: AsyncSession,
        document: Document,
        *,
        type_: str | None = None,
        original_extension: str | None = None,
    ) -> Document:
        """Update descriptive fields. ``current_version`` is never touched here."""
        if type_ is not None:
            document.type = type_
        if original_extension is not None:
            document.original_extension = original_extension or None
        document.updated_at = datetime.now(UTC)
        await session.flush()
        return document

    async def purge(self, session: AsyncSession, document: Document) -> None:
        """Delete a document with all of its versions and activity records."""
        assert document.id is not None
        await self._versioning.delete_versions(session, document.id)
        await self._activity.delete_for_document(session, document.id)
        await session.delete(document)
        await session.flush()

    @staticmethod
    def download_name(document: Document) -> str:
        """File name a client should save the document under."""
        return download_name(document.name, document.type, document.original_extension)
