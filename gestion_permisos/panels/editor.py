from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..bus import PermissionSyncBus, SyncEvent
from ..constants.sync import PERSONA_PERMISSIONS_UPDATED
from ..errors import PermissionsError, PermissionValidationError
from ..models import PersonaCapabilities, PersonaGrant, PersonaRef
from ..notifications import NotificationCenter
from ..rbac import eligible_canton_ids
from ..reconciler import CandidateState, SelectionReconciler, filter_candidates, require_eligible_cantons
from ..store import PermissionStore

logger = logging.getLogger(__name__)

_TOGGLE_MESSAGES = {
    CandidateState.PENDING_ADD: "Persona marked for assignment",
    CandidateState.PENDING_REMOVE: "Persona marked for removal",
    CandidateState.ASSIGNED: "Removal cancelled",
}


@dataclass(slots=True)
class SaveResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    updated_grants: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class PersonaAssignmentSession:
    """One admin editing which personas a collaborator holds."""

    def __init__(
        self,
        store: PermissionStore,
        bus: PermissionSyncBus,
        user_id: str,
        *,
        notifications: NotificationCenter | None = None,
        source: str | None = None,
        actor: str | None = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._source = source
        self._actor = actor
        self.user_id = user_id
        self.notifications = notifications or NotificationCenter()
        self.reconciler = SelectionReconciler()
        self.eligible_canton_ids: list[str] = []
        self.canton_id: str | None = None
        self.candidates: list[PersonaRef] = []
        self.grants: list[PersonaGrant] = []
        self.search_term = ""
        self.view_specific = False
        self.manage_all = False
        self.is_open = False
        self.saving = False

    async def open(self) -> bool:
        self.reconciler.reset()
        self.search_term = ""
        try:
            self.eligible_canton_ids = require_eligible_cantons(
                eligible_canton_ids(await self._store.list_canton_grants(), self.user_id)
            )
            await self._reload_assigned()
            self.canton_id = self.eligible_canton_ids[0]
            await self._load_candidates()
        except PermissionsError as exc:
            logger.warning("Persona editor for user %s did not open: %s", self.user_id, exc)
            self.notifications.failure(exc)
            return False
        self.is_open = True
        return True

    def close(self) -> None:
        self.reconciler.reset()
        self.search_term = ""
        self.is_open = False

    async def _reload_assigned(self) -> None:
        grants = await self._store.list_persona_grants(force_reload=True)
        self.grants = [grant for grant in grants if grant.user_id == self.user_id]
        self.reconciler.reset(grant.persona_id for grant in self.grants if grant.persona_id is not None)
        self.view_specific = any(grant.can_view for grant in self.grants)
        self.manage_all = any(grant.can_manage for grant in self.grants)

    async def _load_candidates(self) -> None:
        personas = await self._store.list_personas()
        self.candidates = [persona for persona in personas if persona.home_canton_id == self.canton_id]

    async def select_canton(self, canton_id: str) -> bool:
        canton_id = str(canton_id)
        if canton_id not in self.eligible_canton_ids:
            self.notifications.failure(
                PermissionValidationError("The collaborator has no permission on the selected canton")
            )
            return False
        if canton_id != self.canton_id:
            # pending marks belong to the personas of the previous canton
            self.reconciler.reset()
        self.canton_id = canton_id
        try:
            await self._load_candidates()
        except PermissionsError as exc:
            self.notifications.failure(exc, "Could not load the available personas")
            self.candidates = []
            return False
        return True

    def search(self, term: str | None) -> list[PersonaRef]:
        self.search_term = term or ""
        return self.visible_candidates

    @property
    def visible_candidates(self) -> list[PersonaRef]:
        return filter_candidates(self.candidates, self.search_term)

    def state_of(self, persona_id: str) -> CandidateState:
        return self.reconciler.state_of(str(persona_id))

    def toggle(self, persona_id: str) -> CandidateState:
        state = self.reconciler.toggle(str(persona_id))
        message = _TOGGLE_MESSAGES.get(state)
        if message:
            self.notifications.info(message)
        return state

    @property
    def pending_add_count(self) -> int:
        return len(self.reconciler.diff().to_add)

    @property
    def pending_remove_count(self) -> int:
        return len(self.reconciler.diff().to_remove)

    def _event_detail(self) -> dict[str, str]:
        detail: dict[str, str] = {}
        if self._source:
            detail["source"] = self._source
        if self._actor:
            detail["actor"] = self._actor
        return detail

    def _publish_update(self) -> None:
        self._bus.publish(
            SyncEvent(
                action=PERSONA_PERMISSIONS_UPDATED,
                user_id=self.user_id,
                canton_ids=(self.canton_id,) if self.canton_id else (),
                detail=self._event_detail(),
            )
        )

    async def _resync_after_partial_save(self) -> None:
        try:
            await self._reload_assigned()
        except PermissionsError as exc:
            logger.error("Reloading persona grants for user %s failed: %s", self.user_id, exc)
            self.reconciler.reset()

    async def save(
        self,
        *,
        view_specific: bool | None = None,
        manage_all: bool | None = None,
    ) -> SaveResult | None:
        if not self.is_open:
            self.notifications.failure(PermissionValidationError("Open the editor before saving"))
            return None
        view_specific = self.view_specific if view_specific is None else view_specific
        manage_all = self.manage_all if manage_all is None else manage_all
        capabilities = PersonaCapabilities.from_flags(view_specific=view_specific, manage_all=manage_all)
        diff = self.reconciler.diff()
        result = SaveResult()

        self.saving = True
        try:
            if (view_specific, manage_all) != (self.view_specific, self.manage_all):
                for grant in self.grants:
                    if grant.persona_id in diff.to_remove:
                        continue
                    try:
                        await self._store.update_persona_grant(grant.id, capabilities)
                    except PermissionsError as exc:
                        logger.error("Updating persona grant %s failed: %s", grant.id, exc)
                        result.failures.append(grant.id)
                        continue
                    result.updated_grants += 1

            # the revoke endpoint takes one persona at a time
            for persona_id in sorted(diff.to_remove):
                try:
                    await self._store.revoke_persona_grant_for_user(self.user_id, persona_id)
                except PermissionsError as exc:
                    logger.error("Revoking persona %s for user %s failed: %s", persona_id, self.user_id, exc)
                    result.failures.append(persona_id)
                    continue
                result.removed.append(persona_id)

            if diff.to_add:
                to_add = sorted(diff.to_add)
                await self._store.assign_persona_grants(self.user_id, to_add, self.canton_id, capabilities)
                result.added = to_add

            await self._reload_assigned()
        except PermissionsError as exc:
            self.notifications.failure(exc, "Could not save persona permissions")
            if result.removed or result.added or result.updated_grants:
                await self._resync_after_partial_save()
                self._publish_update()
            return None
        finally:
            self.saving = False

        self._publish_update()
        if result.ok:
            self.notifications.success("Permissions updated")
        else:
            self.notifications.error(f"Permissions updated with errors ({len(result.failures)} failed)", 502)
        return result
