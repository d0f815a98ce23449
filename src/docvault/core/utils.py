"""Name validation, cached path helpers, and download naming."""

from __future__ import annotations

import posixpath
import time
import uuid

# Reserved filenames (Windows compatibility)
RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9",
}

MAX_NAME_LENGTH = 255


# =============================================================================
# Names and cached paths
# =============================================================================


def validate_name(name: str) -> tuple[bool, str]:
    """Validate a folder or document name.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if not name or not name.strip():
        return False, "Name must not be empty"

    if "\x00" in name:
        return False, "Name contains null bytes"

    for ch in name:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            return False, f"Name contains control character: 0x{code:02x}"

    if "/" in name or "\\" in name:
        return False, "Name must not contain path separators"

    if name.strip() in (".", ".."):
        return False, f"Invalid name: {name}"

    if len(name) > MAX_NAME_LENGTH:
        return False, f"Name too long (max {MAX_NAME_LENGTH} characters)"

    base_name = name.upper().split(".")[0]
    if base_name in RESERVED_NAMES:
        return False, f"Reserved name: {name}"

    return True, ""


def join_folder_path(parent_path: str | None, name: str) -> str:
    """Build the cached display path of a folder.

    Examples:
        join_folder_path(None, "Root") -> "/Root"
        join_folder_path("/Root", "Tech") -> "/Root/Tech"
    """
    if not parent_path or parent_path == "/":
        return "/" + name
    return posixpath.join(parent_path, name)


def rebase_path(path: str, old_prefix: str, new_prefix: str) -> str:
    """Replace *old_prefix* at the start of *path* with *new_prefix*.

    Only whole path segments match: ``/a/bc`` is not under ``/a/b``.
    """
    if path == old_prefix:
        return new_prefix
    if path.startswith(old_prefix + "/"):
        return new_prefix + path[len(old_prefix):]
    return path


def escape_like(term: str) -> str:
    """Escape SQL LIKE wildcards so *term* matches literally (escape char ``\\``)."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# =============================================================================
# Storage references and download names
# =============================================================================


def file_extension(filename: str) -> str:
    """Return the extension of *filename* without the dot, or ``""``."""
    _, ext = posixpath.splitext(filename)
    return ext[1:] if ext else ""


def make_storage_ref(filename: str, document_id: int | None = None) -> str:
    """Generate a unique storage reference for an upload.

    Refs for an existing document carry its id; the version number is
    recorded on the version row only.

    Examples:
        make_storage_ref("plan.pdf") -> "documents/document_new_1746143602010512_9f1c2a7b.pdf"
        make_storage_ref("plan.pdf", 7) -> "documents/document_7_1746143602010512_9f1c2a7b.pdf"
    """
    stamp = f"{time.time_ns() // 1_000}_{uuid.uuid4().hex[:8]}"
    ext = file_extension(filename)
    suffix = f".{ext}" if ext else ""
    if document_id is not None:
        return f"documents/document_{document_id}_{stamp}{suffix}"
    return f"documents/document_new_{stamp}{suffix}"


def download_name(name: str, type_: str | None, original_extension: str | None) -> str:
    """Name a downloaded file so that it carries its extension exactly once.

    The original extension wins when known; otherwise the document type is
    used as the extension.
    """
    if original_extension:
        if name.lower().endswith(original_extension.lower()):
            return name
        return f"{name}{original_extension}"
    if type_ and f".{type_.lower()}" not in name.lower():
        return f"{name}.{type_}"
    return name
