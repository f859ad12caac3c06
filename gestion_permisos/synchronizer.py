from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .errors import PermissionsError, PermissionValidationError
from .models import CantonCapabilities, PersonaCapabilities, PersonaGrant
from .store import PermissionStore

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True)
class SyncFailure:
    grant_id: str
    persona_id: str | None
    error: str


@dataclass(slots=True)
class SyncResult:
    action: SyncAction
    user_id: str
    canton_ids: tuple[str, ...]
    matched: int = 0
    processed: int = 0
    failures: list[SyncFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def revoked(self) -> int:
        return self.processed if self.action is SyncAction.DELETE else 0

    @property
    def updated(self) -> int:
        return self.processed if self.action is SyncAction.UPDATE else 0


def translate_capabilities(canton: CantonCapabilities) -> PersonaCapabilities:
    # editing a canton implies creating records for its personas
    return PersonaCapabilities(
        can_view=canton.view,
        can_edit=canton.edit,
        can_create=canton.create_expedientes or canton.edit,
    )


def grants_in_cantons(
    grants: Iterable[PersonaGrant], user_id: str, canton_ids: Iterable[str]
) -> list[PersonaGrant]:
    wanted = set(canton_ids)
    return [
        grant
        for grant in grants
        if grant.user_id == user_id and grant.canton_ids() & wanted
    ]


class PersonaGrantSynchronizer:
    """Keeps a user's persona grants in line with their canton grants."""

    def __init__(self, store: PermissionStore) -> None:
        self._store = store

    async def sync_after_canton_change(
        self,
        user_id: str,
        canton_ids: Iterable[str],
        action: SyncAction | str,
        new_capabilities: CantonCapabilities | None = None,
    ) -> SyncResult:
        action = SyncAction(action)
        canton_ids = tuple(str(canton_id) for canton_id in canton_ids)
        result = SyncResult(action=action, user_id=user_id, canton_ids=canton_ids)

        if action is SyncAction.ADD:
            # persona grants for a new canton are assigned by hand afterwards
            logger.info("Canton grant added for user %s in %s, no persona sync needed", user_id, canton_ids)
            return result
        if action is SyncAction.UPDATE and new_capabilities is None:
            raise PermissionValidationError("Updated canton permissions are required to sync personas")
        if not canton_ids:
            return result

        grants = grants_in_cantons(
            await self._store.list_persona_grants(force_reload=True), user_id, canton_ids
        )
        result.matched = len(grants)
        persona_capabilities = translate_capabilities(new_capabilities) if new_capabilities else None

        for grant in grants:
            try:
                if action is SyncAction.DELETE:
                    await self._store.revoke_persona_grant(grant.id)
                else:
                    await self._store.update_persona_grant(grant.id, persona_capabilities)
            except PermissionsError as exc:
                logger.error(
                    "Persona grant %s (%s) %s failed for user %s: %s",
                    grant.id,
                    grant.persona_id,
                    action.value,
                    user_id,
                    exc,
                )
                result.failures.append(SyncFailure(grant.id, grant.persona_id, str(exc)))
                continue
            result.processed += 1

        logger.info(
            "Persona sync %s for user %s in %s: %s/%s processed",
            action.value,
            user_id,
            canton_ids,
            result.processed,
            result.matched,
        )
        return result
