from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Awaitable

from ..aggregator import aggregate_persona_grants
from ..bus import SyncEvent
from ..constants.sync import PERSONA_PERMISSIONS_UPDATED
from ..errors import PermissionsError, PermissionValidationError
from ..models import PersonaCapabilities, PersonaPermissionCard
from ..rbac import eligible_canton_ids
from ..reconciler import require_eligible_cantons
from .base import PermissionPanel
from .editor import PersonaAssignmentSession

logger = logging.getLogger(__name__)


class PersonaPermissionsPanel(PermissionPanel):
    panel_name = "persona-permissions"

    cards: list[PersonaPermissionCard]

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.cards = []

    def card_for(self, user_id: str) -> PersonaPermissionCard | None:
        return next((card for card in self.cards if card.user_id == user_id), None)

    def on_sync_event(self, event: SyncEvent) -> Awaitable[Any] | None:
        if not event.action:
            return None
        logger.debug("Reloading persona permissions after %s for user %s", event.action, event.user_id)
        return self.load(force_reload=True)

    async def load(self, force_reload: bool = False) -> list[PersonaPermissionCard]:
        with self._flag("loading"):
            try:
                grants = await self._store.list_persona_grants(force_reload=force_reload)
            except PermissionsError as exc:
                self.report(exc, "Could not load persona permissions")
                return self.cards
        cards = aggregate_persona_grants(grants)
        if self.active:
            self.cards = cards
        return cards

    async def _resolve_persona_ids(self, persona_ids: list[str], canton_id: str, manage_all: bool) -> list[str]:
        if persona_ids or not manage_all:
            return persona_ids
        # managing every persona of the canton without picking any
        personas = await self._store.list_personas()
        resolved = [persona.id for persona in personas if persona.home_canton_id == canton_id]
        if not resolved:
            raise PermissionValidationError("The selected canton has no personas")
        return resolved

    async def assign(
        self,
        user_id: str | None,
        persona_ids: Iterable[str],
        canton_id: str | None = None,
        *,
        view_specific: bool,
        manage_all: bool,
    ) -> bool:
        persona_ids = list(dict.fromkeys(str(persona_id) for persona_id in persona_ids))
        with self._flag("saving"):
            try:
                if not user_id:
                    raise PermissionValidationError("Select a collaborator")
                if not view_specific and not manage_all:
                    raise PermissionValidationError("Select at least one permission type")
                if view_specific and not persona_ids:
                    raise PermissionValidationError("Select at least one persona to grant specific access")

                eligible = require_eligible_cantons(
                    eligible_canton_ids(await self._store.list_canton_grants(), user_id)
                )
                canton_id = str(canton_id) if canton_id is not None else eligible[0]
                if canton_id not in eligible:
                    raise PermissionValidationError("The collaborator has no permission on the selected canton")

                persona_ids = await self._resolve_persona_ids(persona_ids, canton_id, manage_all)
                await self._store.assign_persona_grants(
                    user_id,
                    persona_ids,
                    canton_id,
                    PersonaCapabilities.from_flags(view_specific=view_specific, manage_all=manage_all),
                )
            except PermissionsError as exc:
                self.report(exc, "Could not assign persona permissions")
                return False
        self.publish(PERSONA_PERMISSIONS_UPDATED, user_id, [canton_id])
        if self.active:
            self.notifications.success("Permissions assigned")
        await self.load(force_reload=True)
        return True

    async def revoke(self, grant_id: str) -> bool:
        with self._flag("saving"):
            try:
                await self._store.revoke_persona_grant(grant_id)
            except PermissionsError as exc:
                self.report(exc, "Could not revoke the permission")
                return False
        card = next((card for card in self.cards if grant_id in card.grant_ids), None)
        self.publish(PERSONA_PERMISSIONS_UPDATED, card.user_id if card else None)
        if self.active:
            self.notifications.success("Permission revoked")
        await self.load(force_reload=True)
        return True

    async def revoke_user(self, user_id: str) -> bool:
        with self._flag("saving"):
            try:
                grants = await self._store.list_persona_grants(force_reload=True)
            except PermissionsError as exc:
                self.report(exc, "Could not revoke permissions")
                return False
            failed = 0
            for grant in (grant for grant in grants if grant.user_id == user_id):
                try:
                    await self._store.revoke_persona_grant(grant.id)
                except PermissionsError as exc:
                    logger.error("Revoking persona grant %s for user %s failed: %s", grant.id, user_id, exc)
                    failed += 1
        self.publish(PERSONA_PERMISSIONS_UPDATED, user_id)
        if self.active:
            if failed:
                self.notifications.error(f"Permissions revoked with errors ({failed} failed)", 502)
            else:
                self.notifications.success("Permissions revoked")
        await self.load(force_reload=True)
        return failed == 0

    async def open_editor(self, user_id: str) -> PersonaAssignmentSession | None:
        session = PersonaAssignmentSession(
            self._store,
            self._bus,
            user_id,
            notifications=self.notifications,
            source=self.panel_id,
            actor=self.actor,
        )
        if await session.open():
            return session
        return None
