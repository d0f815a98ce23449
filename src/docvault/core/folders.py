"""FolderService — the folder tree: lookup, create, rename, move, chain snapshots.

Stateless service that receives a session at call time, flushes but does
not commit.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import literal
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlalchemy.orm import aliased
from sqlmodel import select

from docvault.models.folders import Folder

from .exceptions import BadRequestError, ConsistencyError, InvalidInputError, NotFoundError
from .utils import join_folder_path, rebase_path, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 64


class FolderService:
    """Registry of folders keyed by id, linked by ``parent_id``.

    The ``parent_id`` chain is kept acyclic here: every create and move
    verifies the new parent is not inside the folder being placed, and
    that the resulting chain stays within ``max_depth``.  Readers load the
    chain with :meth:`ancestor_chain`, a single recursive query, so a
    resolution always sees one consistent snapshot.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._max_depth = max_depth

    @property
    def max_depth(self) -> int:
        return self._max_depth

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, folder_id: int) -> Folder | None:
        """Get a folder by id."""
        return await session.get(Folder, folder_id)

    async def require(self, session: AsyncSession, folder_id: int) -> Folder:
        """Get a folder by id or raise ``NotFoundError``."""
        folder = await self.get(session, folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    async def list_children(
        self, session: AsyncSession, parent_id: int | None
    ) -> list[Folder]:
        """List the direct children of *parent_id* (root folders when ``None``)."""
        query = select(Folder)
        if parent_id is None:
            query = query.where(Folder.parent_id.is_(None))  # type: ignore[union-attr]
        else:
            query = query.where(Folder.parent_id == parent_id)
        result = await session.execute(query.order_by(Folder.name, Folder.id))  # type: ignore[arg-type]
        return list(result.scalars().all())

    async def list_child_ids(self, session: AsyncSession, folder_id: int) -> list[int]:
        """Ids of the direct children of *folder_id*."""
        result = await session.execute(
            select(Folder.id).where(Folder.parent_id == folder_id).order_by(Folder.id)  # type: ignore[arg-type]
        )
        return [row[0] for row in result.all()]

    async def ancestor_chain(
        self, session: AsyncSession, folder_id: int
    ) -> list[tuple[int, int | None]]:
        """Return ``[(id, parent_id), ...]`` from *folder_id* up to its root.

        Loaded in one recursive query bounded by ``max_depth``.  A chain
        that is still climbing when the bound is hit means the hierarchy
        is corrupt (a cycle or a runaway depth) and raises
        ``ConsistencyError``.
        """
        base = (
            sa_select(Folder.id, Folder.parent_id, literal(0).label("depth"))  # type: ignore[call-overload]
            .where(Folder.id == folder_id)
            .cte(name="folder_chain", recursive=True)
        )
        parent = aliased(Folder, name="parent_folder")
        chain = base.union_all(
            sa_select(parent.id, parent.parent_id, (base.c.depth + 1).label("depth"))  # type: ignore[call-overload]
            .where(parent.id == base.c.parent_id, base.c.depth < self._max_depth)
        )
        result = await session.execute(
            sa_select(chain.c.id, chain.c.parent_id).order_by(chain.c.depth)
        )
        rows = [(row[0], row[1]) for row in result.all()]

        if not rows:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if rows[-1][1] is not None:
            raise ConsistencyError(
                f"Folder {folder_id}: ancestor chain exceeds {self._max_depth} levels "
                "(parent_id cycle or runaway depth)"
            )
        return rows

    async def subtree(self, session: AsyncSession, folder_id: int) -> list[tuple[int, int]]:
        """Return ``[(id, relative_depth), ...]`` for *folder_id* and every descendant."""
        base = (
            sa_select(Folder.id, literal(0).label("depth"))  # type: ignore[call-overload]
            .where(Folder.id == folder_id)
            .cte(name="folder_subtree", recursive=True)
        )
        child = aliased(Folder, name="child_folder")
        tree = base.union_all(
            sa_select(child.id, (base.c.depth + 1).label("depth"))  # type: ignore[call-overload]
            .where(child.parent_id == base.c.id, base.c.depth < self._max_depth)
        )
        result = await session.execute(
            sa_select(tree.c.id, tree.c.depth).order_by(tree.c.depth, tree.c.id)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def lineage(self, session: AsyncSession, folder_id: int) -> list[Folder]:
        """Return *folder_id* and its ancestors as records, root first."""
        ids = [fid for fid, _ in reversed(await self.ancestor_chain(session, folder_id))]
        result = await session.execute(
            select(Folder).where(Folder.id.in_(ids))  # type: ignore[union-attr]
        )
        by_id = {folder.id: folder for folder in result.scalars().all()}
        return [by_id[fid] for fid in ids]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        name: str,
        parent_id: int | None,
        created_by: int | None,
    ) -> Folder:
        """Create a folder. Flushes but does not commit."""
        valid, error = validate_name(name)
        if not valid:
            raise InvalidInputError(error)

        parent_path: str | None = None
        if parent_id is not None:
            parent = await self.require(session, parent_id)
            chain = await self.ancestor_chain(session, parent_id)
            if len(chain) + 1 > self._max_depth:
                raise BadRequestError(
                    f"Folder depth limit reached ({self._max_depth} levels)"
                )
            parent_path = parent.path

        folder = Folder(
            name=name,
            path=join_folder_path(parent_path, name),
            parent_id=parent_id,
            created_by=created_by,
        )
        session.add(folder)
        await session.flush()
        logger.debug("Created folder %s at %s", folder.id, folder.path)
        return folder

    async def rename(self, session: AsyncSession, folder: Folder, name: str) -> Folder:
        """Rename *folder* and refresh the cached paths of its subtree."""
        valid, error = validate_name(name)
        if not valid:
            raise InvalidInputError(error)

        parent_path: str | None = None
        if folder.parent_id is not None:
            parent = await self.require(session, folder.parent_id)
            parent_path = parent.path

        old_path = folder.path
        folder.name = name
        folder.path = join_folder_path(parent_path, name)
        folder.updated_at = datetime.now(UTC)
        await self._rebase_subtree(session, folder, old_path)
        await session.flush()
        return folder

    async def move(
        self, session: AsyncSession, folder: Folder, new_parent_id: int | None
    ) -> Folder:
        """Re-parent *folder* under *new_parent_id* (root when ``None``).

        Rejects a parent inside the folder's own subtree, which would
        close a cycle, and any move that pushes the subtree past
        ``max_depth``.  The checks run after :meth:`_lock_for_move`, against
        the state the move will commit on top of.
        """
        assert folder.id is not None
        await self._lock_for_move(session, folder.id, new_parent_id)
        if await session.get(Folder, folder.id, populate_existing=True) is None:
            raise NotFoundError(f"Folder not found: {folder.id}")

        subtree = await self.subtree(session, folder.id)
        subtree_ids = {fid for fid, _ in subtree}
        height = max(depth for _, depth in subtree) + 1

        parent_path: str | None = None
        parent_levels = 0
        if new_parent_id is not None:
            if new_parent_id in subtree_ids:
                raise BadRequestError(
                    "Cannot move a folder into itself or one of its descendants"
                )
            parent = await session.get(Folder, new_parent_id, populate_existing=True)
            if parent is None:
                raise NotFoundError(f"Folder not found: {new_parent_id}")
            parent_levels = len(await self.ancestor_chain(session, new_parent_id))
            parent_path = parent.path

        if parent_levels + height > self._max_depth:
            raise BadRequestError(f"Folder depth limit reached ({self._max_depth} levels)")

        old_path = folder.path
        folder.parent_id = new_parent_id
        folder.path = join_folder_path(parent_path, folder.name)
        folder.updated_at = datetime.now(UTC)
        await self._rebase_subtree(session, folder, old_path, subtree_ids)
        await session.flush()
        logger.debug("Moved folder %s to parent %s", folder.id, new_parent_id)
        return folder

    async def _lock_for_move(
        self, session: AsyncSession, folder_id: int, new_parent_id: int | None
    ) -> None:
        """Write-lock the moved folder and the new parent's ancestor chain.

        A no-op UPDATE: on SQLite it opens the write transaction and takes
        the database lock, elsewhere it locks the touched rows.  Two moves
        that could close a cycle between them share at least one of
        these rows, so they run one after the other.
        """
        ids = {folder_id}
        if new_parent_id is not None:
            ids.update(fid for fid, _ in await self.ancestor_chain(session, new_parent_id))
        await session.execute(
            sa_update(Folder)
            .where(Folder.id.in_(sorted(ids)))  # type: ignore[union-attr]
            .values(parent_id=Folder.parent_id)
            .execution_options(synchronize_session=False)
        )

    async def delete(self, session: AsyncSession, folder: Folder) -> None:
        """Delete the folder row. The caller guarantees the folder is empty."""
        await session.delete(folder)
        await session.flush()

    async def _rebase_subtree(
        self,
        session: AsyncSession,
        folder: Folder,
        old_path: str,
        subtree_ids: set[int] | None = None,
    ) -> int:
        """Rewrite cached paths of every descendant after a rename or move."""
        assert folder.id is not None
        if subtree_ids is None:
            subtree_ids = {fid for fid, _ in await self.subtree(session, folder.id)}
        subtree_ids = subtree_ids - {folder.id}
        if not subtree_ids:
            return 0

        result = await session.execute(
            select(Folder).where(Folder.id.in_(subtree_ids))  # type: ignore[union-attr]
        )
        count = 0
        for descendant in result.scalars().all():
            descendant.path = rebase_path(descendant.path, old_path, folder.path)
            count += 1
        return count
