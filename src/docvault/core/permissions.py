"""Capability enum and grant evaluation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docvault.models.folders import FolderPermission


class Capability(str, Enum):
    """An action a user may perform on a folder and its contents."""

    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"
    SHARE = "share"


@dataclass(frozen=True)
class PermissionFlags:
    """Capability flags for creating or updating a grant."""

    can_view: bool = True
    can_edit: bool = False
    can_delete: bool = False
    can_share: bool = False
    is_owner: bool = False

    @classmethod
    def owner(cls) -> PermissionFlags:
        return cls(can_view=True, can_edit=True, can_delete=True, can_share=True, is_owner=True)

    @classmethod
    def viewer(cls) -> PermissionFlags:
        return cls()


def allows(permission: FolderPermission, capability: Capability) -> bool:
    """Return True if *permission* grants *capability*.

    Owners hold every capability whatever their stored flags say.
    """
    if permission.is_owner:
        return True
    if capability == Capability.VIEW:
        return permission.can_view
    if capability == Capability.EDIT:
        return permission.can_edit
    if capability == Capability.DELETE:
        return permission.can_delete
    if capability == Capability.SHARE:
        return permission.can_share
    return False
