"""Tests for cascading folder deletion through DocVault.delete_folder."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from docvault import DocVault, LocalBlobStore
from docvault.core.exceptions import ForbiddenError, NotFoundError, StorageError
from docvault.core.permissions import Capability, PermissionFlags
from docvault.core.types import DocumentMeta
from docvault.models import (
    ActivityAction,
    Document,
    DocumentActivity,
    DocumentVersion,
    Folder,
    FolderPermission,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from docvault.identity import StaticIdentityProvider

ADMIN = 1
ALICE = 3
BOB = 4


# =========================================================================
# Helpers
# =========================================================================


class FailingBlobStore(LocalBlobStore):
    """Refuses to delete any reference containing ``fail``."""

    async def delete(self, ref: str) -> None:
        if "fail" in ref:
            raise StorageError(f"Disk refused to delete {ref}")
        await super().delete(ref)


class HookedBlobStore(LocalBlobStore):
    """Runs *hook* once, on the first delete."""

    def __init__(self, root_dir: Path, hook: Callable[[], Awaitable[None]]) -> None:
        super().__init__(root_dir)
        self._hook: Callable[[], Awaitable[None]] | None = hook

    async def delete(self, ref: str) -> None:
        hook, self._hook = self._hook, None
        if hook is not None:
            await hook()
        await super().delete(ref)


async def _count(engine: AsyncEngine, model: type) -> int:
    async with AsyncSession(engine) as session:
        result = await session.execute(select(func.count()).select_from(model))
        return int(result.scalar_one())


def _meta(name: str, folder_id: int | None) -> DocumentMeta:
    return DocumentMeta(name=name, type="pdf", folder_id=folder_id)


class Tree:
    """Root/{doc1, Tech/{doc2, Manuals/{doc3}}, Other/{doc4}}, all owned by Alice."""

    async def build(self, vault: DocVault) -> Tree:
        self.root = await vault.create_folder("Root", user_id=ALICE)
        self.tech = await vault.create_folder("Tech", self.root.id, user_id=ALICE)
        self.manuals = await vault.create_folder("Manuals", self.tech.id, user_id=ALICE)
        self.other = await vault.create_folder("Other", self.root.id, user_id=ALICE)
        self.doc1 = await vault.upload_document(_meta("doc1", self.root.id), b"1", user_id=ALICE)
        self.doc2 = await vault.upload_document(_meta("doc2", self.tech.id), b"2", user_id=ALICE)
        self.doc3 = await vault.upload_document(
            _meta("doc3", self.manuals.id), b"3", user_id=ALICE
        )
        await vault.upload_version(self.doc3.id, b"3b", user_id=ALICE)
        self.doc4 = await vault.upload_document(_meta("doc4", self.other.id), b"4", user_id=ALICE)
        return self


def _vault_with(
    engine: AsyncEngine, blobs: LocalBlobStore, identity: StaticIdentityProvider
) -> DocVault:
    return DocVault(engine=engine, blobs=blobs, identity=identity)


# =========================================================================
# Completeness
# =========================================================================


class TestCompleteDeletion:
    async def test_everything_removed(
        self, vault: DocVault, async_engine: AsyncEngine, tmp_path: Path
    ):
        tree = await Tree().build(vault)

        result = await vault.delete_folder(tree.root.id, user_id=ALICE)

        assert result.success is True
        assert result.cancelled is False
        assert result.failures == []
        assert set(result.deleted_folders) == {
            tree.root.id,
            tree.tech.id,
            tree.manuals.id,
            tree.other.id,
        }
        assert set(result.deleted_documents) == {
            tree.doc1.id,
            tree.doc2.id,
            tree.doc3.id,
            tree.doc4.id,
        }
        for model in (Folder, FolderPermission, Document, DocumentVersion):
            assert await _count(async_engine, model) == 0
        assert list((tmp_path / "blobs" / "documents").iterdir()) == []

    async def test_children_deleted_before_parent(self, vault: DocVault):
        tree = await Tree().build(vault)
        result = await vault.delete_folder(tree.root.id, user_id=ALICE)
        order = result.deleted_folders
        assert order.index(tree.manuals.id) < order.index(tree.tech.id)
        assert order[-1] == tree.root.id

    async def test_tombstones_survive(self, vault: DocVault, async_engine: AsyncEngine):
        tree = await Tree().build(vault)
        await vault.delete_folder(tree.root.id, user_id=ALICE)

        async with AsyncSession(async_engine) as session:
            rows = (await session.execute(select(DocumentActivity))).scalars().all()
        assert len(rows) == 4
        assert all(r.action == ActivityAction.DELETE.value for r in rows)
        assert all(r.document_id is None for r in rows)
        assert any(f"id {tree.doc3.id}" in r.details for r in rows)

    async def test_delete_subfolder_only(self, vault: DocVault):
        tree = await Tree().build(vault)
        result = await vault.delete_folder(tree.tech.id, user_id=ALICE)

        assert result.success is True
        assert set(result.deleted_folders) == {tree.tech.id, tree.manuals.id}
        assert (await vault.get_folder(tree.root.id, user_id=ALICE)).id == tree.root.id
        assert await vault.get_document(tree.doc4.id, user_id=ALICE)
        with pytest.raises(NotFoundError):
            await vault.get_folder(tree.tech.id, user_id=ALICE)


# =========================================================================
# Permissions
# =========================================================================


class TestPermissions:
    async def test_forbidden_without_mutation(self, vault: DocVault, async_engine: AsyncEngine):
        tree = await Tree().build(vault)
        await vault.grant_permission(tree.root.id, BOB, PermissionFlags(), user_id=ALICE)

        with pytest.raises(ForbiddenError):
            await vault.delete_folder(tree.root.id, user_id=BOB)

        assert await _count(async_engine, Folder) == 4
        assert await _count(async_engine, Document) == 4

    async def test_missing_folder(self, vault: DocVault):
        with pytest.raises(NotFoundError):
            await vault.delete_folder(999, user_id=ADMIN)

    async def test_denied_subtree_is_reported(
        self, vault: DocVault, monkeypatch: pytest.MonkeyPatch
    ):
        tree = await Tree().build(vault)
        original = vault.resolver.can_access

        async def deny_tech(session, folder_id, user_id, capability=Capability.VIEW):
            if folder_id == tree.tech.id and capability is Capability.DELETE:
                return False
            return await original(session, folder_id, user_id, capability)

        monkeypatch.setattr(vault.resolver, "can_access", deny_tech)
        result = await vault.delete_folder(tree.root.id, user_id=ALICE)

        assert result.success is False
        assert result.deleted_folders == [tree.other.id]
        assert sorted(result.deleted_documents) == sorted([tree.doc1.id, tree.doc4.id])
        survivors = result.surviving_ids["folder"]
        assert tree.tech.id in survivors
        assert tree.root.id in survivors
        assert "Permission denied" in {f.reason for f in result.failures}

        monkeypatch.undo()
        # No dangling parent: the whole path to the denied folder is intact
        assert await vault.get_folder(tree.root.id, user_id=ALICE)
        assert await vault.get_document(tree.doc3.id, user_id=ALICE)


# =========================================================================
# Partial failure and cancellation
# =========================================================================


class TestPartialFailure:
    async def test_storage_failure_keeps_document_and_parents(
        self, async_engine: AsyncEngine, identity: StaticIdentityProvider, tmp_path: Path
    ):
        root_dir = tmp_path / "store"
        root_dir.mkdir()
        store = FailingBlobStore(root_dir)
        await store.put("documents/fail_me.pdf", b"stuck")
        await store.put("documents/ok.pdf", b"fine")
        vault = _vault_with(async_engine, store, identity)
        root = await vault.create_folder("Root", user_id=ALICE)
        sub = await vault.create_folder("Sub", root.id, user_id=ALICE)
        stuck = await vault.create_document(
            _meta("stuck", sub.id), "documents/fail_me.pdf", user_id=ALICE
        )
        fine = await vault.create_document(_meta("fine", sub.id), "documents/ok.pdf", user_id=ALICE)

        result = await vault.delete_folder(root.id, user_id=ALICE)

        assert result.success is False
        assert result.deleted_documents == [fine.id]
        assert result.surviving_ids["document"] == [stuck.id]
        assert set(result.surviving_ids["folder"]) == {root.id, sub.id}
        assert "refused" in result.failures[0].reason
        assert "0 folder(s) and 1 document(s) were deleted" in result.message
        remaining = await vault.get_document(stuck.id, user_id=ALICE)
        assert remaining.folder_id == sub.id
        with pytest.raises(NotFoundError):
            await vault.get_document(fine.id, user_id=ALICE)

    async def test_cancel_between_subtrees(
        self, async_engine: AsyncEngine, identity: StaticIdentityProvider, tmp_path: Path
    ):
        cancel = asyncio.Event()

        async def _cancel() -> None:
            cancel.set()

        root_dir = tmp_path / "store"
        root_dir.mkdir()
        vault = _vault_with(async_engine, HookedBlobStore(root_dir, _cancel), identity)
        root = await vault.create_folder("Root", user_id=ALICE)
        child = await vault.create_folder("Child", root.id, user_id=ALICE)
        top_doc = await vault.upload_document(_meta("top", root.id), b"t", user_id=ALICE)
        deep_doc = await vault.upload_document(_meta("deep", child.id), b"d", user_id=ALICE)

        result = await vault.delete_folder(root.id, user_id=ALICE, cancel=cancel)

        assert result.cancelled is True
        assert result.success is False
        assert result.deleted_documents == [top_doc.id]
        assert result.deleted_folders == []
        assert "cancelled" in result.message.lower()
        # Already-deleted work stays deleted; the rest is intact
        with pytest.raises(NotFoundError):
            await vault.get_document(top_doc.id, user_id=ALICE)
        assert await vault.get_document(deep_doc.id, user_id=ALICE)
        assert await vault.get_folder(child.id, user_id=ALICE)

    async def test_cancel_before_start(self, vault: DocVault):
        tree = await Tree().build(vault)
        cancel = asyncio.Event()
        cancel.set()
        result = await vault.delete_folder(tree.root.id, user_id=ALICE, cancel=cancel)
        assert result.cancelled is True
        assert result.deleted_documents == []
        assert result.deleted_folders == []


# =========================================================================
# Concurrent additions (file-backed database, one connection per session)
# =========================================================================


class TestConcurrentAdditions:
    async def test_late_document_is_swept(
        self, file_engine: AsyncEngine, identity: StaticIdentityProvider, tmp_path: Path
    ):
        late_ids: list[int] = []
        holder: dict[str, DocVault] = {}
        folder_ids: dict[str, int] = {}

        async def _upload_late() -> None:
            late = await holder["vault"].upload_document(
                _meta("late", folder_ids["root"]), b"late", user_id=ALICE
            )
            assert late.id is not None
            late_ids.append(late.id)

        root_dir = tmp_path / "store"
        root_dir.mkdir()
        vault = _vault_with(file_engine, HookedBlobStore(root_dir, _upload_late), identity)
        holder["vault"] = vault
        root = await vault.create_folder("Root", user_id=ALICE)
        assert root.id is not None
        folder_ids["root"] = root.id
        early = await vault.upload_document(_meta("early", root.id), b"e", user_id=ALICE)

        result = await vault.delete_folder(root.id, user_id=ALICE)

        assert result.success is True
        assert len(late_ids) == 1
        assert set(result.deleted_documents) == {early.id, late_ids[0]}
        assert await _count(file_engine, Document) == 0

    async def test_late_subfolder_blocks_deletion(
        self, file_engine: AsyncEngine, identity: StaticIdentityProvider, tmp_path: Path
    ):
        holder: dict[str, DocVault] = {}
        folder_ids: dict[str, int] = {}

        async def _create_late_folder() -> None:
            late = await holder["vault"].create_folder(
                "late", folder_ids["root"], user_id=ALICE
            )
            assert late.id is not None
            folder_ids["late"] = late.id

        root_dir = tmp_path / "store"
        root_dir.mkdir()
        vault = _vault_with(file_engine, HookedBlobStore(root_dir, _create_late_folder), identity)
        holder["vault"] = vault
        root = await vault.create_folder("Root", user_id=ALICE)
        assert root.id is not None
        folder_ids["root"] = root.id
        await vault.upload_document(_meta("doc", root.id), b"d", user_id=ALICE)

        result = await vault.delete_folder(root.id, user_id=ALICE)

        assert result.success is False
        assert result.surviving_ids["folder"] == [root.id]
        late = await vault.get_folder(folder_ids["late"], user_id=ALICE)
        assert late.parent_id == root.id
