"""Tests for PermissionResolver — admin bypass, direct and inherited grants."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from docvault.core.exceptions import ConsistencyError, NotFoundError
from docvault.core.folders import FolderService
from docvault.core.grants import PermissionStore
from docvault.core.permissions import Capability, PermissionFlags
from docvault.core.resolver import PermissionResolver
from docvault.identity import IdentityProvider, Role, StaticIdentityProvider, UserInfo

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

ADMIN = 1
TECH = 2
ALICE = 3
BOB = 4


@pytest.fixture
def folders() -> FolderService:
    return FolderService()


@pytest.fixture
def grants() -> PermissionStore:
    return PermissionStore()


@pytest.fixture
def resolver(
    folders: FolderService, grants: PermissionStore, identity: StaticIdentityProvider
) -> PermissionResolver:
    return PermissionResolver(folders, grants, identity)


# ---------------------------------------------------------------------------
# Inheritance
# ---------------------------------------------------------------------------


class TestInheritance:
    async def test_root_tech_scenario(
        self,
        folders: FolderService,
        grants: PermissionStore,
        resolver: PermissionResolver,
        async_session: AsyncSession,
    ):
        root = await folders.create(async_session, "Root", None, created_by=ALICE)
        tech = await folders.create(async_session, "Tech", root.id, created_by=ALICE)
        await grants.create(async_session, root.id, ALICE, PermissionFlags.owner())

        assert await resolver.can_access(async_session, tech.id, ALICE, Capability.VIEW)
        assert not await resolver.can_access(async_session, root.id, BOB, Capability.VIEW)
        assert not await resolver.can_access(async_session, tech.id, BOB, Capability.VIEW)

    async def test_grant_on_ancestor_reaches_deep_descendant(
        self,
        folders: FolderService,
        grants: PermissionStore,
        resolver: PermissionResolver,
        async_session: AsyncSession,
    ):
        top = await folders.create(async_session, "top", None, created_by=ALICE)
        parent_id = top.id
        for i in range(5):
            parent_id = (await folders.create(async_session, f"l{i}", parent_id, 1)).id
        await grants.create(async_session, top.id, BOB, PermissionFlags(can_edit=True))

        assert await resolver.can_access(async_session, parent_id, BOB, Capability.EDIT)
        assert not await resolver.can_access(async_session, parent_id, BOB, Capability.DELETE)

    async def test_grant_does_not_flow_upwards(
        self,
        folders: FolderService,
        grants: PermissionStore,
        resolver: PermissionResolver,
        async_session: AsyncSession,
    ):
        root = await folders.create(async_session, "Root", None, created_by=ALICE)
        child = await folders.create(async_session, "child", root.id, created_by=ALICE)
        sibling = await folders.create(async_session, "sibling", root.id, created_by=ALICE)
        await grants.create(async_session, child.id, BOB, PermissionFlags())

        assert await resolver.can_access(async_session, child.id, BOB)
        assert not await resolver.can_access(async_session, root.id, BOB)
        assert not await resolver.can_access(async_session, sibling.id, BOB)

    async def test_lower_grant_never_removes_inherited(
        self,
        folders: FolderService,
        grants: PermissionStore,
        resolver: PermissionResolver,
        async_session: AsyncSession,
    ):
        root = await folders.create(async_session, "Root", None, created_by=ALICE)
        child = await folders.create(async_session, "child", root.id, created_by=ALICE)
        await grants.create(async_session, root.id, BOB, PermissionFlags(can_edit=True))
        await grants.create(async_session, child.id, BOB, PermissionFlags(can_view=False))

        assert await resolver.can_access(async_session, child.id, BOB, Capability.VIEW)
        assert await resolver.can_access(async_session, child.id, BOB, Capability.EDIT)


# ---------------------------------------------------------------------------
# Admin, owner, and failure modes
# ---------------------------------------------------------------------------


class TestSpecialCases:
    async def test_admin_bypass(
        self, folders: FolderService, resolver: PermissionResolver, async_session: AsyncSession
    ):
        root = await folders.create(async_session, "Root", None, created_by=ALICE)
        for cap in Capability:
            assert await resolver.can_access(async_session, root.id, ADMIN, cap)
        assert await resolver.is_admin(ADMIN)
        assert not await resolver.is_admin(TECH)
        assert not await resolver.is_admin(999)

    async def test_is_owner_inherited(
        self,
        folders: FolderService,
        grants: PermissionStore,
        resolver: PermissionResolver,
        async_session: AsyncSession,
    ):
        root = await folders.create(async_session, "Root", None, created_by=ALICE)
        child = await folders.create(async_session, "child", root.id, created_by=ALICE)
        await grants.create(async_session, root.id, ALICE, PermissionFlags.owner())
        await grants.create(async_session, child.id, BOB, PermissionFlags(can_share=True))

        assert await resolver.is_owner(async_session, child.id, ALICE)
        assert not await resolver.is_owner(async_session, child.id, BOB)
        assert await resolver.is_owner(async_session, child.id, ADMIN)

    async def test_unknown_folder(self, resolver: PermissionResolver, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await resolver.can_access(async_session, 404, ALICE)

    async def test_cycle_is_consistency_error(
        self, folders: FolderService, resolver: PermissionResolver, async_session: AsyncSession
    ):
        a = await folders.create(async_session, "a", None, created_by=ALICE)
        b = await folders.create(async_session, "b", a.id, created_by=ALICE)
        a.parent_id = b.id
        await async_session.flush()

        with pytest.raises(ConsistencyError):
            await resolver.can_access(async_session, b.id, ALICE)

    async def test_depth_bound(
        self, grants: PermissionStore, async_session: AsyncSession, identity
    ):
        shallow = FolderService(max_depth=64)
        parent_id = None
        for i in range(10):
            parent_id = (await shallow.create(async_session, f"l{i}", parent_id, 1)).id

        strict = PermissionResolver(FolderService(max_depth=5), grants, identity)
        with pytest.raises(ConsistencyError):
            await strict.can_access(async_session, parent_id, ALICE)


# ---------------------------------------------------------------------------
# Identity provider
# ---------------------------------------------------------------------------


class TestStaticIdentity:
    async def test_lookup_and_add(self):
        provider = StaticIdentityProvider([UserInfo(1, Role.ADMIN)])
        assert isinstance(provider, IdentityProvider)
        assert (await provider.get_user(1)).is_admin
        assert await provider.get_user(2) is None

        provider.add(UserInfo(2, Role.TECHNICIAN))
        user = await provider.get_user(2)
        assert user is not None
        assert not user.is_admin
