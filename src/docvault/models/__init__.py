"""SQLModel database models for docvault."""

from docvault.models.activity import ActivityAction, DocumentActivity
from docvault.models.documents import Document, DocumentVersion
from docvault.models.folders import Folder, FolderPermission

__all__ = [
    "ActivityAction",
    "Document",
    "DocumentActivity",
    "DocumentVersion",
    "Folder",
    "FolderPermission",
]
