"""EventBus and event types for post-commit notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of committed mutations that external collaborators may observe."""

    FOLDER_CREATED = "folder_created"
    FOLDER_DELETED = "folder_deleted"
    DOCUMENT_CREATED = "document_created"
    VERSION_CREATED = "version_created"
    DOCUMENT_UPDATED = "document_updated"
    DOCUMENT_DELETED = "document_deleted"
    PERMISSION_CHANGED = "permission_changed"


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """Immutable record of a committed mutation.

    Attributes:
        event_type: The kind of mutation that occurred.
        folder_id: Affected folder (the document's folder for document events).
        document_id: Affected document, for document and version events.
        version: New version number (version events only).
        user_id: Acting user, None for system actions.
        target_user_id: Grantee (permission events only).
    """

    event_type: EventType
    folder_id: int | None = None
    document_id: int | None = None
    version: int | None = None
    user_id: int | None = None
    target_user_id: int | None = None


@dataclass(frozen=True, slots=True)
class _Subscription:
    event_type: EventType | None
    handler: Callable[..., Any]
    folder_id: int | None = None

    def matches(self, event: VaultEvent) -> bool:
        if self.event_type is not None and event.event_type is not self.event_type:
            return False
        return self.folder_id is None or event.folder_id == self.folder_id


class EventBus:
    """Dispatches committed-mutation events to subscribed handlers.

    A handler subscribes to one event type, or to all of them with
    ``event_type=None``, optionally scoped to the events of one folder.
    Handlers run sequentially in subscription order, after the transaction
    has committed.  Exceptions are logged but never propagated: a failing
    notification must not undo a committed change.  The audit trail does
    not go through here.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def register(
        self,
        event_type: EventType | None,
        handler: Callable[..., Any],
        *,
        folder_id: int | None = None,
    ) -> None:
        """Subscribe *handler* to *event_type* (every type when ``None``)."""
        self._subscriptions.append(_Subscription(event_type, handler, folder_id))

    def unregister(
        self,
        event_type: EventType | None,
        handler: Callable[..., Any],
        *,
        folder_id: int | None = None,
    ) -> bool:
        """Remove the matching subscription. Return True if found."""
        try:
            self._subscriptions.remove(_Subscription(event_type, handler, folder_id))
            return True
        except ValueError:
            return False

    async def emit(self, *events: VaultEvent) -> None:
        """Dispatch *events*, in order, to every subscription they match."""
        for event in events:
            for subscription in list(self._subscriptions):
                if not subscription.matches(event):
                    continue
                try:
                    await subscription.handler(event)
                except Exception:
                    logger.warning(
                        "Handler %r failed for %s (folder=%s, document=%s)",
                        subscription.handler,
                        event.event_type.value,
                        event.folder_id,
                        event.document_id,
                        exc_info=True,
                    )

    @property
    def handler_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._subscriptions.clear()
