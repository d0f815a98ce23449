"""PermissionResolver — inherited folder access decisions.

Resolution order:

1. Administrators pass every check (one tagged role lookup, here only).
2. A direct grant on the folder that allows the capability passes.
3. A grant on any ancestor that allows the capability passes.
4. Otherwise the check fails.  There are no deny records: a grant lower
   in the tree never removes what an ancestor grants.

The ancestor chain is read once as a snapshot (see
:meth:`FolderService.ancestor_chain`) and the user's grants on the whole
chain are fetched in one query, so a concurrent move cannot make the
traversal observe a half-updated tree.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .permissions import Capability, allows

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from docvault.identity import IdentityProvider

    from .folders import FolderService
    from .grants import PermissionStore

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Decides whether a user holds a capability on a folder.

    Pure read: never writes, never caches between calls.
    """

    def __init__(
        self,
        folders: FolderService,
        grants: PermissionStore,
        identity: IdentityProvider,
    ) -> None:
        self._folders = folders
        self._grants = grants
        self._identity = identity

    async def is_admin(self, user_id: int) -> bool:
        """True if *user_id* has the administrator role."""
        user = await self._identity.get_user(user_id)
        return user is not None and user.is_admin

    async def can_access(
        self,
        session: AsyncSession,
        folder_id: int,
        user_id: int,
        capability: Capability = Capability.VIEW,
    ) -> bool:
        """Check if *user_id* holds *capability* on *folder_id*.

        Raises ``NotFoundError`` for an unknown folder and
        ``ConsistencyError`` for a corrupt ``parent_id`` chain.
        """
        if await self.is_admin(user_id):
            return True

        chain = await self._folders.ancestor_chain(session, folder_id)
        chain_ids = [fid for fid, _ in chain]
        grants = await self._grants.list_for_chain(session, chain_ids, user_id)

        for grant in grants:
            if allows(grant, capability):
                logger.debug(
                    "User %s granted %s on folder %s via folder %s",
                    user_id,
                    capability.value,
                    folder_id,
                    grant.folder_id,
                )
                return True

        logger.debug("User %s denied %s on folder %s", user_id, capability.value, folder_id)
        return False

    async def is_owner(self, session: AsyncSession, folder_id: int, user_id: int) -> bool:
        """True if *user_id* is an administrator or owns *folder_id* or an ancestor."""
        if await self.is_admin(user_id):
            return True

        chain = await self._folders.ancestor_chain(session, folder_id)
        grants = await self._grants.list_for_chain(session, [fid for fid, _ in chain], user_id)
        return any(g.is_owner for g in grants)
