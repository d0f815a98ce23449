"""Byte-storage collaborator — the BlobStore protocol and a local-disk store."""

from __future__ import annotations

import asyncio
import contextlib
import os
import posixpath
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from docvault.core.exceptions import InvalidInputError, NotFoundError, StorageError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

DEFAULT_CHUNK_SIZE = 64 * 1024  # 64KB


@runtime_checkable
class BlobStore(Protocol):
    """Stores document bytes under opaque storage references."""

    async def put(self, ref: str, data: bytes) -> str:
        """Store *data* under *ref* and return the normalized reference."""
        ...

    def get(self, ref: str) -> AsyncIterator[bytes]:
        """Stream the bytes stored under *ref*."""
        ...

    async def delete(self, ref: str) -> None:
        """Delete *ref*.  Deleting a missing reference is not an error."""
        ...

    async def exists(self, ref: str) -> bool: ...


def normalize_ref(ref: str) -> str:
    """Normalize a storage reference to a relative POSIX path.

    Examples:
        normalize_ref("/uploads/documents/a.pdf") -> "uploads/documents/a.pdf"
        normalize_ref("documents//a.pdf") -> "documents/a.pdf"
    """
    if "\x00" in ref:
        raise InvalidInputError("Storage reference contains null bytes")
    ref = ref.strip().replace("\\", "/")
    if ".." in ref.split("/"):
        raise InvalidInputError(f"Storage reference escapes the store: {ref}")
    ref = posixpath.normpath("/" + ref).lstrip("/")
    if not ref or ref == ".":
        raise InvalidInputError("Empty storage reference")
    return ref


class LocalBlobStore:
    """Blob store backed by a directory on the host filesystem.

    Security: _resolve_path() ensures all references stay within root_dir,
    preventing path traversal attacks.  Writes are atomic via tempfile +
    replace.
    """

    def __init__(self, root_dir: Path | str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.root_dir = Path(root_dir).resolve()
        self.chunk_size = chunk_size

        if not self.root_dir.exists():
            raise FileNotFoundError(f"Storage directory does not exist: {self.root_dir}")
        if not self.root_dir.is_dir():
            raise NotADirectoryError(f"Storage path is not a directory: {self.root_dir}")

    def _resolve_path(self, ref: str) -> Path:
        """Resolve a storage reference to a physical path under root_dir.

        Rejects symlinks on the way down and anything resolving outside
        the root.
        """
        rel = normalize_ref(ref)
        candidate = self.root_dir / rel

        current = self.root_dir
        for part in Path(rel).parts:
            current = current / part
            if current.is_symlink():
                raise InvalidInputError(
                    f"Symlinks not allowed: {ref} contains symlink at "
                    f"{current.relative_to(self.root_dir)}"
                )

        resolved = candidate.resolve()
        try:
            resolved.relative_to(self.root_dir)
        except ValueError:
            raise InvalidInputError(
                f"Path traversal detected: {ref} resolves outside the storage directory"
            ) from None
        return resolved

    async def put(self, ref: str, data: bytes) -> str:
        resolved = self._resolve_path(ref)

        def _write() -> None:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(resolved.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                Path(tmp_path).replace(resolved)
            except Exception:
                with contextlib.suppress(OSError):
                    Path(tmp_path).unlink()
                raise

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to store {ref}: {e}") from e
        return normalize_ref(ref)

    async def get(self, ref: str) -> AsyncIterator[bytes]:
        resolved = self._resolve_path(ref)
        if not await asyncio.to_thread(resolved.is_file):
            raise NotFoundError(f"File not found in storage: {ref}")

        try:
            handle = await asyncio.to_thread(resolved.open, "rb")
        except OSError as e:
            raise StorageError(f"Failed to open {ref}: {e}") from e
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    async def delete(self, ref: str) -> None:
        resolved = self._resolve_path(ref)

        def _delete() -> None:
            with contextlib.suppress(FileNotFoundError):
                resolved.unlink()

        try:
            await asyncio.to_thread(_delete)
        except OSError as e:
            raise StorageError(f"Failed to delete {ref}: {e}") from e

    async def exists(self, ref: str) -> bool:
        try:
            resolved = self._resolve_path(ref)
        except InvalidInputError:
            return False
        return await asyncio.to_thread(resolved.is_file)


async def read_all(chunks: AsyncIterator[bytes]) -> bytes:
    """Collect a chunk stream into one bytes object."""
    parts = [chunk async for chunk in chunks]
    return b"".join(parts)
