from __future__ import annotations

import logging
from collections.abc import Iterable

from ..aggregator import aggregate_canton_grants
from ..bus import PermissionSyncBus
from ..constants.sync import CANTON_PERMISSIONS_UPDATED, PERMISSIONS_DELETED
from ..errors import PermissionsError, PermissionValidationError
from ..models import CantonCapabilities, CantonPermissionCard
from ..notifications import NotificationCenter
from ..rbac import eligible_canton_ids
from ..store import PermissionStore
from ..synchronizer import PersonaGrantSynchronizer, SyncAction
from .base import PermissionPanel

logger = logging.getLogger(__name__)


def _validate(user_id: str | None, canton_ids: list[str]) -> None:
    if not user_id:
        raise PermissionValidationError("Select a collaborator")
    if not canton_ids:
        raise PermissionValidationError("Select at least one canton")


def _unique(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(str(canton_id) for canton_id in ids))


class CantonPermissionsPanel(PermissionPanel):
    panel_name = "canton-permissions"

    def __init__(
        self,
        store: PermissionStore,
        bus: PermissionSyncBus,
        notifications: NotificationCenter | None = None,
        synchronizer: PersonaGrantSynchronizer | None = None,
        *,
        actor: str | None = None,
    ) -> None:
        super().__init__(store, bus, notifications, actor=actor)
        self._synchronizer = synchronizer or PersonaGrantSynchronizer(store)
        self.cards: list[CantonPermissionCard] = []

    def card_for(self, user_id: str) -> CantonPermissionCard | None:
        return next((card for card in self.cards if card.user_id == user_id), None)

    async def load(self, force_reload: bool = False) -> list[CantonPermissionCard]:
        # the canton listing is never cached upstream, every load is a fresh read
        with self._flag("loading"):
            try:
                grants = await self._store.list_canton_grants()
            except PermissionsError as exc:
                self.report(exc, "Could not load canton permissions")
                return self.cards
        cards = aggregate_canton_grants(grants)
        if self.active:
            self.cards = cards
        return cards

    async def _current_canton_ids(self, user_id: str) -> list[str]:
        return eligible_canton_ids(await self._store.list_canton_grants(), user_id)

    async def _revoke_cantons(self, user_id: str, canton_ids: Iterable[str]) -> tuple[list[str], list[str]]:
        revoked: list[str] = []
        failed: list[str] = []
        for canton_id in canton_ids:
            try:
                await self._store.revoke_canton_grant(user_id, canton_id)
            except PermissionsError as exc:
                logger.error("Revoking canton %s for user %s failed: %s", canton_id, user_id, exc)
                failed.append(canton_id)
                continue
            revoked.append(canton_id)
        return revoked, failed

    def _finish(self, failures: int, success_message: str, partial_message: str) -> bool:
        if not self.active:
            return failures == 0
        if failures:
            self.notifications.error(f"{partial_message} ({failures} failed)", 502)
            return False
        self.notifications.success(success_message)
        return True

    async def assign(
        self,
        user_id: str | None,
        canton_ids: Iterable[str],
        capabilities: CantonCapabilities,
    ) -> bool:
        canton_ids = _unique(canton_ids)
        # a canton grant always carries visibility
        capabilities = capabilities.model_copy(update={"view": True})
        with self._flag("saving"):
            try:
                _validate(user_id, canton_ids)
                await self._store.assign_canton_grants(user_id, canton_ids, capabilities)
                await self._synchronizer.sync_after_canton_change(user_id, canton_ids, SyncAction.ADD)
            except PermissionsError as exc:
                self.report(exc, "Could not assign canton permissions")
                return False
        self.publish(CANTON_PERMISSIONS_UPDATED, user_id, canton_ids)
        done = self._finish(0, "Permissions assigned", "")
        await self.load(force_reload=True)
        return done

    async def _sync(
        self,
        user_id: str,
        canton_ids: list[str],
        action: SyncAction,
        capabilities: CantonCapabilities | None = None,
    ) -> int:
        """Run one persona sync and return how many grants it left behind."""

        try:
            result = await self._synchronizer.sync_after_canton_change(user_id, canton_ids, action, capabilities)
        except PermissionsError as exc:
            logger.error(
                "Persona %s sync for cantons %s of user %s failed: %s", action.value, canton_ids, user_id, exc
            )
            return 1
        return len(result.failures)

    async def edit(
        self,
        user_id: str | None,
        canton_ids: Iterable[str],
        capabilities: CantonCapabilities,
    ) -> bool:
        """Replace a user's canton set and flags, keeping persona grants in step."""

        canton_ids = _unique(canton_ids)
        capabilities = capabilities.model_copy(update={"view": True})
        with self._flag("saving"):
            try:
                _validate(user_id, canton_ids)
                current = await self._current_canton_ids(user_id)
                await self._store.assign_canton_grants(user_id, canton_ids, capabilities)
            except PermissionsError as exc:
                self.report(exc, "Could not update canton permissions")
                await self.load(force_reload=True)
                return False

            removed = [c for c in current if c not in canton_ids]
            kept = [c for c in canton_ids if c in current]
            added = [c for c in canton_ids if c not in current]
            revoked, failed = await self._revoke_cantons(user_id, removed)
            failures = len(failed)
            if revoked:
                failures += await self._sync(user_id, revoked, SyncAction.DELETE)
            if kept:
                failures += await self._sync(user_id, kept, SyncAction.UPDATE, capabilities)
            if added:
                failures += await self._sync(user_id, added, SyncAction.ADD)

        self.publish(CANTON_PERMISSIONS_UPDATED, user_id, canton_ids)
        if revoked:
            self.publish(PERMISSIONS_DELETED, user_id, revoked)
        done = self._finish(failures, "Permissions updated", "Permissions updated with errors")
        await self.load(force_reload=True)
        return done

    async def revoke_user(self, user_id: str) -> bool:
        with self._flag("saving"):
            try:
                current = await self._current_canton_ids(user_id)
            except PermissionsError as exc:
                self.report(exc, "Could not revoke permissions")
                return False
        return await self._revoke(user_id, current)

    async def revoke_canton(self, user_id: str, canton_id: str) -> bool:
        return await self._revoke(user_id, [str(canton_id)])

    async def _revoke(self, user_id: str, canton_ids: list[str]) -> bool:
        if not canton_ids:
            self.report(PermissionValidationError("This collaborator has no canton permissions"), "Nothing to revoke")
            return False
        with self._flag("saving"):
            revoked, failed = await self._revoke_cantons(user_id, canton_ids)
            sync_failures = await self._sync(user_id, revoked, SyncAction.DELETE) if revoked else 0
        if revoked:
            self.publish(PERMISSIONS_DELETED, user_id, revoked)
        done = self._finish(
            len(failed) + sync_failures, "Permissions revoked", "Permissions revoked with errors"
        )
        await self.load(force_reload=True)
        return done
