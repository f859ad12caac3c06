from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import suppress
from typing import Iterable

from .audit_logging import ActivityLogger
from .config import settings
from .errors import PermissionsError
from .models import CantonGrant, PersonaGrant
from .store import PermissionStore

logger = logging.getLogger(__name__)


def find_orphan_persona_grants(
    canton_grants: Iterable[CantonGrant], persona_grants: Iterable[PersonaGrant]
) -> list[PersonaGrant]:
    """Persona grants whose cantons the user no longer holds.

    Grants that carry no canton reference at all cannot be judged and are left out.
    """

    held: dict[str, set[str]] = defaultdict(set)
    for grant in canton_grants:
        held[grant.user_id] |= grant.canton_ids()

    orphans = []
    for grant in persona_grants:
        cantons = grant.canton_ids()
        if cantons and not cantons & held[grant.user_id]:
            orphans.append(grant)
    return orphans


class OrphanGrantMonitor:
    """Background task that sweeps for persona grants left behind by canton changes."""

    def __init__(
        self,
        store: PermissionStore,
        *,
        interval_seconds: int | None = None,
        revoke: bool | None = None,
        activity: ActivityLogger | None = None,
    ) -> None:
        self._store = store
        self._interval = interval_seconds or settings.orphan_sweep_interval_seconds
        self._revoke = settings.orphan_sweep_revoke if revoke is None else revoke
        self._activity = activity
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="orphan-grant-monitor")
            logger.info("Orphan grant monitor started (interval=%ss revoke=%s)", self._interval, self._revoke)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Orphan grant monitor stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep()
            except PermissionsError as exc:
                logger.warning("Orphan sweep could not read grants: %s", exc)
            except Exception:  # noqa: BLE001
                logger.exception("Orphan grant monitor encountered an unexpected error")
            await asyncio.sleep(self._interval)

    async def sweep(self) -> list[PersonaGrant]:
        orphans = find_orphan_persona_grants(
            await self._store.list_canton_grants(),
            await self._store.list_persona_grants(force_reload=True),
        )
        if not orphans:
            return orphans

        logger.warning("Found %s persona grants outside their user's cantons", len(orphans))
        for grant in orphans:
            result = "detected"
            if self._revoke:
                try:
                    await self._store.revoke_persona_grant(grant.id)
                    result = "revoked"
                except PermissionsError as exc:
                    logger.error("Revoking orphan persona grant %s failed: %s", grant.id, exc)
                    result = "failed"
            if self._activity is not None:
                await self._activity.emit(
                    actor="orphan-monitor",
                    action="orphanPersonaGrant",
                    resource_type="persona",
                    result=result,
                    user_id=grant.user_id,
                    resource_ids=[grant.persona_id] if grant.persona_id else [],
                    detail={"grant_id": grant.id, "cantons": sorted(grant.canton_ids())},
                )
        return orphans
