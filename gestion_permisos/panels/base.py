from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Awaitable
from uuid import uuid4

from ..bus import PermissionSyncBus, SyncEvent
from ..errors import PermissionsError
from ..notifications import NotificationCenter
from ..store import PermissionStore

logger = logging.getLogger(__name__)


class PermissionPanel:
    """Shared lifecycle for the canton and persona permission panels.

    A panel subscribes to the sync bus on ``mount`` and must be unmounted when
    its view goes away. Results that arrive after ``unmount`` are dropped.
    """

    panel_name = "permissions"

    def __init__(
        self,
        store: PermissionStore,
        bus: PermissionSyncBus,
        notifications: NotificationCenter | None = None,
        *,
        actor: str | None = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self.notifications = notifications or NotificationCenter()
        self.actor = actor
        self.panel_id = f"{self.panel_name}-{uuid4().hex[:8]}"
        self.loading = False
        self.saving = False
        self.mounted = False
        self._disposed = False
        self._unsubscribe: Callable[[], None] | None = None

    def mount(self) -> None:
        if self.mounted:
            return
        self.mounted = True
        self._disposed = False
        self._unsubscribe = self._bus.subscribe(self._dispatch_sync_event)

    def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.mounted = False
        self._disposed = True

    @property
    def active(self) -> bool:
        return not self._disposed

    def _dispatch_sync_event(self, event: SyncEvent) -> Awaitable[Any] | None:
        if not self.active or event.detail.get("source") == self.panel_id:
            return None
        return self.on_sync_event(event)

    def on_sync_event(self, event: SyncEvent) -> Awaitable[Any] | None:
        return None

    def publish(self, action: str, user_id: str | None, canton_ids: list[str] | tuple[str, ...] = ()) -> None:
        self._bus.publish(
            SyncEvent(
                action=action,
                user_id=user_id,
                canton_ids=tuple(canton_ids),
                detail=self._event_detail(),
            )
        )

    def _event_detail(self) -> dict[str, str]:
        detail = {"source": self.panel_id}
        if self.actor:
            detail["actor"] = self.actor
        return detail

    def report(self, exc: PermissionsError, context: str) -> None:
        logger.warning("%s: %s (%s)", self.panel_name, context, exc)
        if self.active:
            self.notifications.failure(exc, context)

    @contextmanager
    def _flag(self, name: str) -> Iterator[None]:
        setattr(self, name, True)
        try:
            yield
        finally:
            setattr(self, name, False)
