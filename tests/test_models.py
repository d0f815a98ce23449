"""Tests for database models — table creation, defaults, and constraints."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from docvault.models import (
    ActivityAction,
    Document,
    DocumentActivity,
    DocumentVersion,
    Folder,
    FolderPermission,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

# ---------------------------------------------------------------------------
# Table creation
# ---------------------------------------------------------------------------


class TestTableCreation:
    async def test_all_tables_exist(self, async_engine: AsyncEngine):
        async with async_engine.connect() as conn:
            names = await conn.run_sync(lambda c: inspect(c).get_table_names())
        assert {
            "docvault_folders",
            "docvault_folder_permissions",
            "docvault_documents",
            "docvault_document_versions",
            "docvault_document_activity",
        } <= set(names)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    async def test_folder_defaults(self, async_session: AsyncSession):
        folder = Folder(name="Root", path="/Root")
        async_session.add(folder)
        await async_session.flush()

        assert folder.id is not None
        assert folder.parent_id is None
        assert folder.created_at is not None
        assert folder.updated_at is not None

    async def test_permission_defaults_to_view_only(self, async_session: AsyncSession):
        folder = Folder(name="Root", path="/Root")
        async_session.add(folder)
        await async_session.flush()
        assert folder.id is not None

        perm = FolderPermission(folder_id=folder.id, user_id=7)
        async_session.add(perm)
        await async_session.flush()

        assert perm.can_view is True
        assert perm.can_edit is False
        assert perm.can_delete is False
        assert perm.can_share is False
        assert perm.is_owner is False

    async def test_document_defaults(self, async_session: AsyncSession):
        doc = Document(name="plan", path="documents/plan.pdf", type="pdf")
        async_session.add(doc)
        await async_session.flush()

        assert doc.current_version == 1
        assert doc.folder_id is None
        assert doc.size == 0
        assert doc.original_extension is None

    def test_activity_action_values(self):
        assert ActivityAction.NEW_VERSION.value == "new_version"
        assert ActivityAction("delete") is ActivityAction.DELETE
        assert {a.value for a in ActivityAction} == {
            "created",
            "uploaded",
            "new_version",
            "edit",
            "renamed",
            "moved",
            "download",
            "delete",
        }


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


class TestConstraints:
    async def test_duplicate_grant_rejected(self, async_session: AsyncSession):
        folder = Folder(name="Root", path="/Root")
        async_session.add(folder)
        await async_session.flush()
        assert folder.id is not None

        async_session.add(FolderPermission(folder_id=folder.id, user_id=1))
        await async_session.flush()
        async_session.add(FolderPermission(folder_id=folder.id, user_id=1))
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_duplicate_version_rejected(self, async_session: AsyncSession):
        doc = Document(name="plan", path="a", type="pdf")
        async_session.add(doc)
        await async_session.flush()
        assert doc.id is not None

        async_session.add(DocumentVersion(document_id=doc.id, version=1, path="a"))
        await async_session.flush()
        async_session.add(DocumentVersion(document_id=doc.id, version=1, path="b"))
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_document_requires_existing_folder(self, async_session: AsyncSession):
        async_session.add(Document(name="orphan", folder_id=999, path="a", type="pdf"))
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_activity_allows_null_document(self, async_session: AsyncSession):
        tombstone = DocumentActivity(
            document_id=None, user_id=None, action="delete", details="Document x (id 1) deleted"
        )
        async_session.add(tombstone)
        await async_session.flush()
        assert tombstone.id is not None
