"""docvault: folders with inherited permissions, versioned documents, and an audit trail."""

__version__ = "0.1.0"

from docvault._vault import DocVault
from docvault.blobs import BlobStore, LocalBlobStore
from docvault.config import VaultConfig
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
from docvault.core.permissions import Capability, PermissionFlags
from docvault.core.types import DeleteFolderResult, DeletionFailure, DocumentMeta, DownloadResult
from docvault.events import EventBus, EventType, VaultEvent
from docvault.identity import IdentityProvider, Role, StaticIdentityProvider, UserInfo
from docvault.models import (
    ActivityAction,
    Document,
    DocumentActivity,
    DocumentVersion,
    Folder,
    FolderPermission,
)

__all__ = [
    "ActivityAction",
    "BadRequestError",
    "BlobStore",
    "Capability",
    "ConflictError",
    "ConsistencyError",
    "DeleteFolderResult",
    "DeletionFailure",
    "DocVault",
    "DocVaultError",
    "Document",
    "DocumentActivity",
    "DocumentMeta",
    "DocumentVersion",
    "DownloadResult",
    "EventBus",
    "EventType",
    "Folder",
    "FolderPermission",
    "ForbiddenError",
    "IdentityProvider",
    "InternalError",
    "InvalidInputError",
    "LocalBlobStore",
    "NotFoundError",
    "PermissionFlags",
    "Role",
    "StaticIdentityProvider",
    "StorageError",
    "UserInfo",
    "VaultConfig",
    "VaultEvent",
    "__version__",
]
