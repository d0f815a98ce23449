"""Input and result types: DocumentMeta, DeleteFolderResult, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from docvault.models.documents import Document


@dataclass
class DocumentMeta:
    """Client-supplied metadata for a new document."""

    name: str
    type: str
    size: int = 0
    folder_id: int | None = None
    original_extension: str | None = None


@dataclass
class DeletionFailure:
    """An item that survived a cascading deletion, and why."""

    kind: str  # "folder" or "document"
    id: int
    reason: str


@dataclass
class DeleteFolderResult:
    """Result of a cascading folder deletion."""

    success: bool
    message: str
    folder_id: int
    deleted_folders: list[int] = field(default_factory=list)
    deleted_documents: list[int] = field(default_factory=list)
    failures: list[DeletionFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def surviving_ids(self) -> dict[str, list[int]]:
        """Ids of items that were not deleted, grouped by kind."""
        out: dict[str, list[int]] = {"folder": [], "document": []}
        for failure in self.failures:
            out.setdefault(failure.kind, []).append(failure.id)
        return out


@dataclass
class DownloadResult:
    """A document ready to be streamed to a client."""

    document: Document
    filename: str
    chunks: AsyncIterator[bytes]
