"""DocVault — async facade over folders, grants, documents, versions, and audit."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docvault.blobs import normalize_ref
from docvault.config import VaultConfig
from docvault.core.activity import ActivityLog
from docvault.core.cascade import CascadeCoordinator
from docvault.core.documents import DocumentService
from docvault.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    StorageError,
    VersionRaceError,
)
from docvault.core.folders import FolderService
from docvault.core.grants import PermissionStore
from docvault.core.permissions import Capability, PermissionFlags
from docvault.core.resolver import PermissionResolver
from docvault.core.types import DownloadResult
from docvault.core.utils import download_name, make_storage_ref
from docvault.core.versioning import VersioningService
from docvault.db import create_tables, enable_sqlite_foreign_keys
from docvault.events import EventBus, EventType, VaultEvent
from docvault.identity import StaticIdentityProvider
from docvault.models.activity import ActivityAction

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

    from docvault.blobs import BlobStore
    from docvault.core.types import DeleteFolderResult, DocumentMeta
    from docvault.identity import IdentityProvider
    from docvault.models.activity import DocumentActivity
    from docvault.models.documents import Document, DocumentVersion
    from docvault.models.folders import Folder, FolderPermission

logger = logging.getLogger(__name__)


def _is_version_race(error: Exception) -> bool:
    if isinstance(error, VersionRaceError):
        return True
    # Lock timeouts and duplicate keys can also surface at commit time
    return isinstance(error, StorageError) and isinstance(
        error.__cause__, (IntegrityError, OperationalError)
    )


class DocVault:
    """Async facade wiring the folder tree, grants, documents, versions, and audit log.

    Every public method runs in its own unit of work: one session,
    committed when the method succeeds and rolled back when it raises.
    Events are emitted only after the commit.

    Engine-based setup::

        engine = create_async_engine("sqlite+aiosqlite:///vault.db")
        vault = DocVault(engine=engine, blobs=LocalBlobStore("/srv/blobs"))
        await vault.create_tables()
        folder = await vault.create_folder("Root", user_id=1)

    A caller-supplied ``session_factory`` should be built with
    ``expire_on_commit=False`` so returned records stay readable.
    """

    def __init__(
        self,
        *,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        blobs: BlobStore | None = None,
        identity: IdentityProvider | None = None,
        config: VaultConfig | None = None,
    ) -> None:
        if session_factory is None:
            if engine is None:
                raise ValueError("DocVault requires an engine or a session_factory")
            enable_sqlite_foreign_keys(engine)
            session_factory = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )

        self._engine = engine
        self._session_factory = session_factory
        self._blobs = blobs
        self._identity: IdentityProvider = identity or StaticIdentityProvider()
        self._config = config or VaultConfig()
        self._event_bus = EventBus()

        self._folders = FolderService(max_depth=self._config.max_folder_depth)
        self._grants = PermissionStore()
        self._activity = ActivityLog()
        self._versioning = VersioningService()
        self._documents = DocumentService(self._folders, self._versioning, self._activity)
        self._resolver = PermissionResolver(self._folders, self._grants, self._identity)
        self._cascade = CascadeCoordinator(
            self._session_scope,
            self._folders,
            self._grants,
            self._documents,
            self._versioning,
            self._activity,
            self._resolver,
            self._blobs,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def resolver(self) -> PermissionResolver:
        return self._resolver

    async def create_tables(self) -> None:
        """Create the docvault tables on the configured engine."""
        if self._engine is None:
            raise ValueError("create_tables() needs the engine passed to DocVault")
        await create_tables(self._engine)

    # ------------------------------------------------------------------
    # Session plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session_scope(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session; commit on success, roll back on any exception."""
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StorageError(f"Database operation failed: {e}") from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    async def _require_folder(
        self,
        session: AsyncSession,
        folder_id: int,
        user_id: int,
        capability: Capability,
    ) -> Folder:
        folder = await self._folders.require(session, folder_id)
        if not await self._resolver.can_access(session, folder_id, user_id, capability):
            raise ForbiddenError(
                f"User {user_id} lacks {capability.value} permission on folder {folder_id}"
            )
        return folder

    async def _require_owner(self, session: AsyncSession, folder_id: int, user_id: int) -> Folder:
        folder = await self._folders.require(session, folder_id)
        if not await self._resolver.is_owner(session, folder_id, user_id):
            raise ForbiddenError(f"User {user_id} does not own folder {folder_id}")
        return folder

    async def _can_access_document(
        self,
        session: AsyncSession,
        document: Document,
        user_id: int,
        capability: Capability,
    ) -> bool:
        if document.folder_id is None:
            # Root documents: administrators and the creator only
            return document.created_by == user_id or await self._resolver.is_admin(user_id)
        return await self._resolver.can_access(session, document.folder_id, user_id, capability)

    async def _require_document(
        self,
        session: AsyncSession,
        document_id: int,
        user_id: int,
        capability: Capability,
    ) -> Document:
        document = await self._documents.require(session, document_id)
        if not await self._can_access_document(session, document, user_id, capability):
            raise ForbiddenError(
                f"User {user_id} lacks {capability.value} permission on document {document_id}"
            )
        return document

    async def resolve_access(
        self,
        folder_id: int,
        *,
        user_id: int,
        capability: Capability = Capability.VIEW,
    ) -> bool:
        """Return True if *user_id* holds *capability* on *folder_id*."""
        async with self._session_scope() as session:
            return await self._resolver.can_access(session, folder_id, user_id, capability)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(
        self, name: str, parent_id: int | None = None, *, user_id: int
    ) -> Folder:
        """Create a folder and give its creator an owner grant.

        Creating inside an existing folder requires ``edit`` there.
        """
        async with self._session_scope() as session:
            if parent_id is not None:
                await self._require_folder(session, parent_id, user_id, Capability.EDIT)
            folder = await self._folders.create(session, name, parent_id, user_id)
            assert folder.id is not None
            await self._grants.create(session, folder.id, user_id, PermissionFlags.owner())

        logger.info("User %s created folder %s (%s)", user_id, folder.id, folder.path)
        await self._event_bus.emit(
            VaultEvent(EventType.FOLDER_CREATED, folder_id=folder.id, user_id=user_id)
        )
        return folder

    async def get_folder(self, folder_id: int, *, user_id: int) -> Folder:
        async with self._session_scope() as session:
            return await self._require_folder(session, folder_id, user_id, Capability.VIEW)

    async def get_folder_path(self, folder_id: int, *, user_id: int) -> list[Folder]:
        """Breadcrumb of a folder: its ancestors and the folder itself, root first.

        Requires ``view`` on the folder.  Ancestors are included even where
        *user_id* holds no grant on them.
        """
        async with self._session_scope() as session:
            await self._require_folder(session, folder_id, user_id, Capability.VIEW)
            return await self._folders.lineage(session, folder_id)

    async def list_folders(self, parent_id: int | None = None, *, user_id: int) -> list[Folder]:
        """Child folders of *parent_id* (root folders when ``None``) that *user_id* can view."""
        async with self._session_scope() as session:
            if parent_id is not None:
                await self._folders.require(session, parent_id)
            children = await self._folders.list_children(session, parent_id)
            visible = []
            for child in children:
                assert child.id is not None
                if await self._resolver.can_access(session, child.id, user_id, Capability.VIEW):
                    visible.append(child)
            return visible

    async def rename_folder(self, folder_id: int, name: str, *, user_id: int) -> Folder:
        async with self._session_scope() as session:
            folder = await self._require_folder(session, folder_id, user_id, Capability.EDIT)
            return await self._folders.rename(session, folder, name)

    async def move_folder(
        self, folder_id: int, new_parent_id: int | None, *, user_id: int
    ) -> Folder:
        """Re-parent a folder.

        Requires ``edit`` on the folder and on the new parent.  Moving to
        the top level requires ownership of the folder.
        """
        async with self._session_scope() as session:
            folder = await self._require_folder(session, folder_id, user_id, Capability.EDIT)
            if new_parent_id is None:
                await self._require_owner(session, folder_id, user_id)
            else:
                await self._require_folder(session, new_parent_id, user_id, Capability.EDIT)
            return await self._folders.move(session, folder, new_parent_id)

    async def delete_folder(
        self,
        folder_id: int,
        *,
        user_id: int,
        cancel: asyncio.Event | None = None,
    ) -> DeleteFolderResult:
        """Delete a folder with all of its subfolders and documents.

        Raises ``ForbiddenError`` when *user_id* may not delete the folder.
        Anything that could not be removed is listed in the result.
        """
        result = await self._cascade.delete_folder(folder_id, user_id, cancel=cancel)
        await self._event_bus.emit(
            *(
                VaultEvent(EventType.DOCUMENT_DELETED, document_id=doc_id, user_id=user_id)
                for doc_id in result.deleted_documents
            ),
            *(
                VaultEvent(EventType.FOLDER_DELETED, folder_id=fid, user_id=user_id)
                for fid in result.deleted_folders
            ),
        )
        return result

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def grant_permission(
        self,
        folder_id: int,
        grantee_id: int,
        flags: PermissionFlags | None = None,
        *,
        user_id: int,
    ) -> FolderPermission:
        """Give *grantee_id* a direct grant on *folder_id*.

        Requires ``share``.  Only owners may hand out ownership.
        """
        flags = flags or PermissionFlags.viewer()
        async with self._session_scope() as session:
            await self._require_folder(session, folder_id, user_id, Capability.SHARE)
            if flags.is_owner and not await self._resolver.is_owner(session, folder_id, user_id):
                raise ForbiddenError(f"Only an owner may grant ownership of folder {folder_id}")
            permission = await self._grants.create(session, folder_id, grantee_id, flags)

        logger.info("User %s granted user %s access to folder %s", user_id, grantee_id, folder_id)
        await self._event_bus.emit(
            VaultEvent(
                EventType.PERMISSION_CHANGED,
                folder_id=folder_id,
                user_id=user_id,
                target_user_id=grantee_id,
            )
        )
        return permission

    async def _check_owner_removal(
        self,
        session: AsyncSession,
        permission: FolderPermission,
        user_id: int,
    ) -> None:
        """Refuse to strip ownership from oneself or from the last direct owner."""
        if permission.user_id == user_id and not await self._resolver.is_admin(user_id):
            raise BadRequestError("You cannot remove your own owner permission")
        if await self._grants.count_owners(session, permission.folder_id) <= 1:
            raise BadRequestError(
                f"Cannot remove the last owner of folder {permission.folder_id}"
            )

    async def update_permission(
        self,
        folder_id: int,
        grantee_id: int,
        flags: PermissionFlags,
        *,
        user_id: int,
    ) -> FolderPermission:
        """Overwrite the flags of an existing grant. Requires ownership or admin."""
        async with self._session_scope() as session:
            await self._require_owner(session, folder_id, user_id)
            permission = await self._grants.get(session, folder_id, grantee_id)
            if permission is None:
                raise NotFoundError(f"User {grantee_id} has no grant on folder {folder_id}")
            if permission.is_owner and not flags.is_owner:
                await self._check_owner_removal(session, permission, user_id)
            permission = await self._grants.update(session, permission, flags)

        logger.info("User %s updated grant of user %s on folder %s", user_id, grantee_id, folder_id)
        await self._event_bus.emit(
            VaultEvent(
                EventType.PERMISSION_CHANGED,
                folder_id=folder_id,
                user_id=user_id,
                target_user_id=grantee_id,
            )
        )
        return permission

    async def revoke_permission(self, folder_id: int, grantee_id: int, *, user_id: int) -> None:
        """Delete a direct grant. Requires ownership or admin."""
        async with self._session_scope() as session:
            await self._require_owner(session, folder_id, user_id)
            permission = await self._grants.get(session, folder_id, grantee_id)
            if permission is None:
                raise NotFoundError(f"User {grantee_id} has no grant on folder {folder_id}")
            if permission.is_owner:
                await self._check_owner_removal(session, permission, user_id)
            await self._grants.delete(session, permission)

        logger.info("User %s revoked grant of user %s on folder %s", user_id, grantee_id, folder_id)
        await self._event_bus.emit(
            VaultEvent(
                EventType.PERMISSION_CHANGED,
                folder_id=folder_id,
                user_id=user_id,
                target_user_id=grantee_id,
            )
        )

    async def list_folder_permissions(
        self, folder_id: int, *, user_id: int
    ) -> list[FolderPermission]:
        """All direct grants on a folder. Requires ownership or admin."""
        async with self._session_scope() as session:
            await self._require_owner(session, folder_id, user_id)
            return await self._grants.list_by_folder(session, folder_id)

    async def list_user_permissions(
        self, target_user_id: int, *, user_id: int
    ) -> list[FolderPermission]:
        """All direct grants held by *target_user_id*. Self or admin only."""
        if target_user_id != user_id and not await self._resolver.is_admin(user_id):
            raise ForbiddenError(f"User {user_id} may not list grants of user {target_user_id}")
        async with self._session_scope() as session:
            return await self._grants.list_by_user(session, target_user_id)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _require_blobs(self) -> BlobStore:
        if self._blobs is None:
            raise StorageError("No blob store is configured")
        return self._blobs

    async def _checked_ref(self, storage_ref: str) -> str:
        """Normalize *storage_ref* and, with a blob store, require its bytes to exist."""
        ref = normalize_ref(storage_ref)
        if self._blobs is not None and not await self._blobs.exists(ref):
            raise InvalidInputError(f"Nothing is stored under {ref}")
        return ref

    async def _discard_blob(self, ref: str) -> None:
        """Best-effort removal of bytes whose database record was never committed."""
        if self._blobs is None:
            return
        try:
            await self._blobs.delete(ref)
        except StorageError:
            logger.warning("Could not discard orphaned blob %s", ref, exc_info=True)

    async def create_document(
        self,
        meta: DocumentMeta,
        storage_ref: str,
        *,
        user_id: int,
        action: ActivityAction = ActivityAction.CREATED,
    ) -> Document:
        """Register a document whose bytes already live at *storage_ref*.

        Requires ``edit`` on the target folder.  Top-level documents may be
        created by anyone and stay visible to their creator and admins.
        Raises ``InvalidInputError`` for a malformed or unstored reference.
        """
        storage_ref = await self._checked_ref(storage_ref)
        async with self._session_scope() as session:
            if meta.folder_id is not None:
                await self._require_folder(session, meta.folder_id, user_id, Capability.EDIT)
            document = await self._documents.create(session, meta, storage_ref, user_id)
            assert document.id is not None
            await self._activity.append(
                session, document.id, user_id, action, f"Document {document.name} created"
            )

        logger.info(
            "User %s created document %s in folder %s", user_id, document.id, meta.folder_id
        )
        await self._event_bus.emit(
            VaultEvent(
                EventType.DOCUMENT_CREATED,
                folder_id=document.folder_id,
                document_id=document.id,
                version=1,
                user_id=user_id,
            )
        )
        return document

    async def upload_document(self, meta: DocumentMeta, data: bytes, *, user_id: int) -> Document:
        """Store *data* and register it as a new document."""
        blobs = self._require_blobs()
        if meta.folder_id is not None:
            async with self._session_scope() as session:
                await self._require_folder(session, meta.folder_id, user_id, Capability.EDIT)

        filename = download_name(meta.name, meta.type, meta.original_extension)
        ref = await blobs.put(make_storage_ref(filename), data)
        try:
            return await self.create_document(
                replace(meta, size=len(data)),
                ref,
                user_id=user_id,
                action=ActivityAction.UPLOADED,
            )
        except Exception:
            await self._discard_blob(ref)
            raise

    async def get_document(self, document_id: int, *, user_id: int) -> Document:
        async with self._session_scope() as session:
            return await self._require_document(session, document_id, user_id, Capability.VIEW)

    async def list_documents(
        self, folder_id: int | None = None, *, user_id: int
    ) -> list[Document]:
        """Documents directly in *folder_id*, or the top-level documents *user_id* may see."""
        async with self._session_scope() as session:
            if folder_id is not None:
                await self._require_folder(session, folder_id, user_id, Capability.VIEW)
                return await self._documents.list_by_folder(session, folder_id)

            documents = await self._documents.list_by_folder(session, None)
            if await self._resolver.is_admin(user_id):
                return documents
            return [d for d in documents if d.created_by == user_id]

    async def search_documents(self, query: str, *, user_id: int) -> list[Document]:
        """Documents whose name or path contains *query* and that *user_id* can view."""
        async with self._session_scope() as session:
            candidates = await self._documents.search(session, query)
            decisions: dict[int | None, bool] = {}
            visible = []
            for document in candidates:
                if document.folder_id is None:
                    allowed = await self._can_access_document(
                        session, document, user_id, Capability.VIEW
                    )
                else:
                    if document.folder_id not in decisions:
                        decisions[document.folder_id] = await self._can_access_document(
                            session, document, user_id, Capability.VIEW
                        )
                    allowed = decisions[document.folder_id]
                if allowed:
                    visible.append(document)
            return visible

    async def rename_document(self, document_id: int, name: str, *, user_id: int) -> Document:
        async with self._session_scope() as session:
            document = await self._require_document(session, document_id, user_id, Capability.EDIT)
            old_name = document.name
            document = await self._documents.rename(session, document, name)
            await self._activity.append(
                session,
                document_id,
                user_id,
                ActivityAction.RENAMED,
                f"Renamed from {old_name} to {name}",
            )

        await self._event_bus.emit(
            VaultEvent(
                EventType.DOCUMENT_UPDATED,
                folder_id=document.folder_id,
                document_id=document_id,
                user_id=user_id,
            )
        )
        return document

    async def move_document(
        self, document_id: int, folder_id: int | None, *, user_id: int
    ) -> Document:
        """Move a document to another folder.

        Requires ``edit`` on both folders.  Moving to the top level is
        limited to the creator and admins, the only users who can see it there.
        """
        async with self._session_scope() as session:
            document = await self._require_document(session, document_id, user_id, Capability.EDIT)
            if folder_id is None:
                if document.created_by != user_id and not await self._resolver.is_admin(user_id):
                    raise ForbiddenError(
                        f"Only the creator may move document {document_id} to the top level"
                    )
                target = "top level"
            else:
                folder = await self._require_folder(session, folder_id, user_id, Capability.EDIT)
                target = folder.path
            document = await self._documents.move(session, document, folder_id)
            await self._activity.append(
                session, document_id, user_id, ActivityAction.MOVED, f"Moved to {target}"
            )

        await self._event_bus.emit(
            VaultEvent(
                EventType.DOCUMENT_UPDATED,
                folder_id=folder_id,
                document_id=document_id,
                user_id=user_id,
            )
        )
        return document

    async def update_document(
        self,
        document_id: int,
        *,
        user_id: int,
        type_: str | None = None,
        original_extension: str | None = None,
    ) -> Document:
        """Update descriptive metadata. Versions are untouched."""
        async with self._session_scope() as session:
            document = await self._require_document(session, document_id, user_id, Capability.EDIT)
            document = await self._documents.update_metadata(
                session, document, type_=type_, original_extension=original_extension
            )
            await self._activity.append(
                session, document_id, user_id, ActivityAction.EDIT, "Metadata updated"
            )

        await self._event_bus.emit(
            VaultEvent(
                EventType.DOCUMENT_UPDATED,
                folder_id=document.folder_id,
                document_id=document_id,
                user_id=user_id,
            )
        )
        return document

    async def delete_document(self, document_id: int, *, user_id: int) -> None:
        """Delete a document, its versions, and its bytes, leaving a ``delete`` tombstone."""
        async with self._session_scope() as session:
            document = await self._require_document(
                session, document_id, user_id, Capability.DELETE
            )
            folder_id = document.folder_id
            await self._cascade.purge_document(session, document, user_id)

        logger.info("User %s deleted document %s", user_id, document_id)
        await self._event_bus.emit(
            VaultEvent(
                EventType.DOCUMENT_DELETED,
                folder_id=folder_id,
                document_id=document_id,
                user_id=user_id,
            )
        )

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def create_version(
        self,
        document_id: int,
        storage_ref: str,
        size: int,
        *,
        user_id: int,
    ) -> DocumentVersion:
        """Record a new version and advance the document's pointer to it.

        Each attempt runs in a fresh transaction.  A collision with a
        concurrent upload is retried with exponential backoff; when the
        attempts run out ``ConflictError`` is raised and nothing is written.
        A malformed or unstored *storage_ref* raises ``InvalidInputError``.
        """
        storage_ref = await self._checked_ref(storage_ref)
        attempts = self._config.version_retry_attempts
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                async with self._session_scope() as session:
                    document = await self._require_document(
                        session, document_id, user_id, Capability.EDIT
                    )
                    version = await self._versioning.create_version(
                        session, document_id, user_id, storage_ref, size
                    )
                    await self._activity.append(
                        session,
                        document_id,
                        user_id,
                        ActivityAction.NEW_VERSION,
                        f"Version {version.version} uploaded",
                    )
                    folder_id = document.folder_id
            except (VersionRaceError, StorageError) as e:
                if not _is_version_race(e):
                    raise
                last_error = e
                if attempt < attempts:
                    delay = self._config.version_retry_backoff * 2 ** (attempt - 1)
                    logger.debug(
                        "Version race on document %s (attempt %d/%d), retrying in %.3fs",
                        document_id,
                        attempt,
                        attempts,
                        delay,
                    )
                    await asyncio.sleep(delay)
                continue

            await self._event_bus.emit(
                VaultEvent(
                    EventType.VERSION_CREATED,
                    folder_id=folder_id,
                    document_id=document_id,
                    version=version.version,
                    user_id=user_id,
                )
            )
            return version

        logger.warning(
            "Version upload for document %s gave up after %d attempts", document_id, attempts
        )
        raise ConflictError(
            f"Could not allocate a version for document {document_id} "
            f"after {attempts} attempts; retry the upload"
        ) from last_error

    async def upload_version(
        self, document_id: int, data: bytes, *, user_id: int
    ) -> DocumentVersion:
        """Store *data* and record it as the next version of a document."""
        blobs = self._require_blobs()
        async with self._session_scope() as session:
            document = await self._require_document(session, document_id, user_id, Capability.EDIT)
            filename = self._documents.download_name(document)

        ref = await blobs.put(make_storage_ref(filename, document_id), data)
        try:
            return await self.create_version(document_id, ref, len(data), user_id=user_id)
        except Exception:
            await self._discard_blob(ref)
            raise

    async def list_versions(self, document_id: int, *, user_id: int) -> list[DocumentVersion]:
        """All versions of a document, highest first."""
        async with self._session_scope() as session:
            await self._require_document(session, document_id, user_id, Capability.VIEW)
            return await self._versioning.list_versions(session, document_id)

    async def get_version(
        self, document_id: int, version: int, *, user_id: int
    ) -> DocumentVersion:
        async with self._session_scope() as session:
            await self._require_document(session, document_id, user_id, Capability.VIEW)
            return await self._versioning.get_version(session, document_id, version)

    # ------------------------------------------------------------------
    # Download and activity
    # ------------------------------------------------------------------

    async def download_document(
        self,
        document_id: int,
        *,
        user_id: int,
        version: int | None = None,
    ) -> DownloadResult:
        """Open a document (or one of its versions) for streaming.

        The ``download`` activity is committed before the stream is returned.
        """
        blobs = self._require_blobs()
        async with self._session_scope() as session:
            document = await self._require_document(session, document_id, user_id, Capability.VIEW)
            if version is None:
                ref, number = document.path, document.current_version
            else:
                record = await self._versioning.get_version(session, document_id, version)
                ref, number = record.path, record.version
            if not await blobs.exists(ref):
                raise NotFoundError(f"Stored file for document {document_id} is missing")
            await self._activity.append(
                session,
                document_id,
                user_id,
                ActivityAction.DOWNLOAD,
                f"Downloaded version {number}",
            )
            filename = self._documents.download_name(document)

        return DownloadResult(document=document, filename=filename, chunks=blobs.get(ref))

    async def append_activity(
        self,
        document_id: int,
        action: ActivityAction,
        details: str = "",
        *,
        user_id: int | None,
    ) -> DocumentActivity:
        """Append an audit record. ``user_id=None`` records a system action."""
        async with self._session_scope() as session:
            if user_id is not None:
                await self._require_document(session, document_id, user_id, Capability.VIEW)
            return await self._activity.append(session, document_id, user_id, action, details)

    async def list_activity(self, document_id: int, *, user_id: int) -> list[DocumentActivity]:
        """Audit records of a document, newest first."""
        async with self._session_scope() as session:
            await self._require_document(session, document_id, user_id, Capability.VIEW)
            return await self._activity.list_by_document(session, document_id)

    async def list_recent_activity(
        self, *, user_id: int, limit: int | None = None
    ) -> list[DocumentActivity]:
        """Most recent audit records across all documents. Administrators only.

        *limit* defaults to ``config.recent_activity_limit``.
        """
        if limit is None:
            limit = self._config.recent_activity_limit
        elif limit < 0:
            raise InvalidInputError(f"Invalid limit: {limit}")
        if not await self._resolver.is_admin(user_id):
            raise ForbiddenError("Recent activity is restricted to administrators")
        async with self._session_scope() as session:
            return await self._activity.list_recent(session, limit)

    async def close(self) -> None:
        """Dispose of the engine, if one was given."""
        if self._engine is not None:
            await self._engine.dispose()
