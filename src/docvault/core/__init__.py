"""Core services — folder tree, grants, resolution, documents, versions, audit, cascade."""

from docvault.core.activity import ActivityLog
from docvault.core.cascade import CascadeCoordinator
from docvault.core.documents import DocumentService
from docvault.core.exceptions import (
    BadRequestError,
    ConflictError,
    ConsistencyError,
    DocVaultError,
    ForbiddenError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    StorageError,
    VersionRaceError,
)
from docvault.core.folders import FolderService
from docvault.core.grants import PermissionStore
from docvault.core.permissions import Capability, PermissionFlags
from docvault.core.resolver import PermissionResolver
from docvault.core.types import DeleteFolderResult, DeletionFailure, DocumentMeta, DownloadResult
from docvault.core.versioning import VersioningService

__all__ = [
    "ActivityLog",
    "BadRequestError",
    "Capability",
    "CascadeCoordinator",
    "ConflictError",
    "ConsistencyError",
    "DeleteFolderResult",
    "DeletionFailure",
    "DocVaultError",
    "DocumentMeta",
    "DocumentService",
    "DownloadResult",
    "FolderService",
    "ForbiddenError",
    "InternalError",
    "InvalidInputError",
    "NotFoundError",
    "PermissionFlags",
    "PermissionResolver",
    "PermissionStore",
    "StorageError",
    "VersionRaceError",
    "VersioningService",
]
