"""CascadeCoordinator — recursive folder deletion with a partial-failure report.

Each document is purged in its own transaction and each folder row is
removed in a final transaction of its own, so a failure deep in the tree
never rolls back work that already succeeded.  What could not be deleted
is returned in the :class:`DeleteFolderResult` rather than raised.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import DocVaultError, ForbiddenError, StorageError
from .permissions import Capability
from .types import DeleteFolderResult, DeletionFailure

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

    from docvault.blobs import BlobStore
    from docvault.models.documents import Document

    from .activity import ActivityLog
    from .documents import DocumentService
    from .folders import FolderService
    from .grants import PermissionStore
    from .resolver import PermissionResolver
    from .versioning import VersioningService

    SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

logger = logging.getLogger(__name__)


class CascadeCoordinator:
    """Deletes a folder together with everything below it.

    *session_scope* opens one unit of work: a session that commits when
    the block exits normally and rolls back when it raises.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        folders: FolderService,
        grants: PermissionStore,
        documents: DocumentService,
        versioning: VersioningService,
        activity: ActivityLog,
        resolver: PermissionResolver,
        blobs: BlobStore | None = None,
    ) -> None:
        self._session_scope = session_scope
        self._folders = folders
        self._grants = grants
        self._documents = documents
        self._versioning = versioning
        self._activity = activity
        self._resolver = resolver
        self._blobs = blobs

    async def delete_folder(
        self,
        folder_id: int,
        user_id: int,
        *,
        cancel: asyncio.Event | None = None,
    ) -> DeleteFolderResult:
        """Delete *folder_id* and its subtree on behalf of *user_id*.

        Raises ``NotFoundError`` for an unknown folder and
        ``ForbiddenError`` when *user_id* may not delete it; nothing is
        mutated in either case.  Everything else is reported in the result.
        """
        async with self._session_scope() as session:
            await self._folders.require(session, folder_id)
            allowed = await self._resolver.can_access(
                session, folder_id, user_id, Capability.DELETE
            )
        if not allowed:
            raise ForbiddenError(f"User {user_id} may not delete folder {folder_id}")

        result = DeleteFolderResult(success=False, message="", folder_id=folder_id)
        await self._delete_subtree(folder_id, user_id, result, cancel)

        result.success = folder_id in result.deleted_folders
        if result.success:
            result.message = (
                f"Deleted folder {folder_id} with {len(result.deleted_folders) - 1} "
                f"subfolder(s) and {len(result.deleted_documents)} document(s)"
            )
            logger.info("Deleted folder %s (%s)", folder_id, result.message)
        else:
            prefix = "Deletion cancelled" if result.cancelled else "Deletion incomplete"
            result.message = (
                f"{prefix}: {len(result.failures)} item(s) could not be deleted; "
                f"{len(result.deleted_folders)} folder(s) and "
                f"{len(result.deleted_documents)} document(s) were deleted"
            )
            logger.warning("Folder %s not deleted: %s", folder_id, result.message)
        return result

    async def _delete_subtree(
        self,
        folder_id: int,
        user_id: int,
        result: DeleteFolderResult,
        cancel: asyncio.Event | None,
    ) -> bool:
        """Depth-first deletion of one folder. Return True once the folder is gone."""
        if cancel is not None and cancel.is_set():
            result.cancelled = True
            result.failures.append(DeletionFailure("folder", folder_id, "Deletion cancelled"))
            return False

        try:
            async with self._session_scope() as session:
                if await self._folders.get(session, folder_id) is None:
                    return True
                if not await self._resolver.can_access(
                    session, folder_id, user_id, Capability.DELETE
                ):
                    result.failures.append(
                        DeletionFailure("folder", folder_id, "Permission denied")
                    )
                    return False
                document_ids = await self._documents.list_ids_in_folder(session, folder_id)
                child_ids = await self._folders.list_child_ids(session, folder_id)
        except DocVaultError as e:
            result.failures.append(DeletionFailure("folder", folder_id, str(e)))
            return False

        survivors = False
        for document_id in document_ids:
            if not await self._purge_in_own_unit(document_id, user_id, result):
                survivors = True
        for child_id in child_ids:
            if not await self._delete_subtree(child_id, user_id, result, cancel):
                survivors = True

        if survivors:
            result.failures.append(
                DeletionFailure("folder", folder_id, "Folder still has contents")
            )
            return False
        return await self._remove_folder(folder_id, user_id, result)

    async def _purge_in_own_unit(
        self, document_id: int, user_id: int, result: DeleteFolderResult
    ) -> bool:
        try:
            async with self._session_scope() as session:
                document = await self._documents.get(session, document_id)
                if document is None:
                    return True
                await self.purge_document(session, document, user_id)
        except DocVaultError as e:
            logger.warning("Could not delete document %s: %s", document_id, e)
            result.failures.append(DeletionFailure("document", document_id, str(e)))
            return False
        result.deleted_documents.append(document_id)
        return True

    async def _remove_folder(
        self, folder_id: int, user_id: int, result: DeleteFolderResult
    ) -> bool:
        """Final unit: sweep late documents, then drop the grants and the folder row."""
        swept: list[int] = []
        try:
            async with self._session_scope() as session:
                folder = await self._folders.get(session, folder_id)
                if folder is None:
                    return True
                if await self._folders.list_child_ids(session, folder_id):
                    result.failures.append(
                        DeletionFailure(
                            "folder", folder_id, "A subfolder was created during deletion"
                        )
                    )
                    return False

                # Documents uploaded while the subtree was being deleted
                for document_id in await self._documents.list_ids_in_folder(session, folder_id):
                    document = await self._documents.get(session, document_id)
                    if document is not None:
                        await self.purge_document(session, document, user_id)
                        swept.append(document_id)

                await self._grants.delete_for_folder(session, folder_id)
                await self._folders.delete(session, folder)
        except DocVaultError as e:
            logger.warning("Could not delete folder %s: %s", folder_id, e)
            result.failures.append(DeletionFailure("folder", folder_id, str(e)))
            return False

        if swept:
            logger.debug("Swept %d late document(s) from folder %s", len(swept), folder_id)
        result.deleted_documents.extend(swept)
        result.deleted_folders.append(folder_id)
        return True

    async def purge_document(
        self, session: AsyncSession, document: Document, user_id: int | None
    ) -> None:
        """Delete a document's bytes, rows, and history, leaving a tombstone.

        The bytes of every version are removed first; a ``StorageError``
        there propagates and leaves the rows untouched.
        """
        assert document.id is not None
        if self._blobs is not None:
            refs = set(await self._versioning.storage_refs(session, document.id))
            if document.path:
                refs.add(document.path)
            for ref in sorted(refs):
                try:
                    await self._blobs.delete(ref)
                except StorageError:
                    raise
                except DocVaultError as e:
                    raise StorageError(f"Failed to delete {ref}: {e}") from e

        document_id, name = document.id, document.name
        await self._documents.purge(session, document)
        await self._activity.append_tombstone(session, document_id, name, user_id)
