"""Custom exception hierarchy for the docvault core."""


class DocVaultError(Exception):
    """Base exception for all docvault errors."""


class NotFoundError(DocVaultError):
    """Raised when a folder, document, version, or grant does not exist."""


class ForbiddenError(DocVaultError):
    """Raised when a permission check denies the requested capability."""


class ConflictError(DocVaultError):
    """Raised on duplicate grants or when a version race exhausts its retries."""


class VersionRaceError(ConflictError):
    """Raised when a version number allocation collides with a concurrent one."""


class BadRequestError(DocVaultError):
    """Raised on invalid state transitions (e.g. removing the last owner)."""


class InvalidInputError(BadRequestError):
    """Raised when an argument is malformed (bad name, missing storage ref)."""


class InternalError(DocVaultError):
    """Base for failures that are not the caller's fault."""


class StorageError(InternalError):
    """Raised on storage failures (DB transaction, blob I/O)."""


class ConsistencyError(InternalError):
    """Raised when a stored invariant is violated (e.g. a parent_id cycle)."""
