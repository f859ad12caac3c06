from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..bus import PermissionSyncBus
from ..models import CantonCapabilities, ResourceId
from ..panels import CantonPermissionsPanel, PersonaPermissionsPanel
from ..rbac import require_admin
from ..security import CallerClaims, get_caller, get_store
from ..store import PermissionStore
from .common import actor_of, get_bus, panel_response

router = APIRouter()


class RequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CantonAssignRequest(RequestBody):
    user_id: ResourceId | None = Field(None, alias="userId")
    canton_ids: list[ResourceId] = Field(default_factory=list, alias="cantonIds")
    permissions: CantonCapabilities = Field(default_factory=CantonCapabilities)


class CantonEditRequest(RequestBody):
    canton_ids: list[ResourceId] = Field(default_factory=list, alias="cantonIds")
    permissions: CantonCapabilities = Field(default_factory=CantonCapabilities)


class PersonaAssignRequest(RequestBody):
    user_id: ResourceId | None = Field(None, alias="userId")
    persona_ids: list[ResourceId] = Field(default_factory=list, alias="personaIds")
    canton_id: ResourceId | None = Field(None, alias="cantonId")
    view_specific: bool = Field(False, alias="viewSpecific")
    manage_all: bool = Field(False, alias="manageAll")


class ReconcileRequest(RequestBody):
    canton_id: ResourceId | None = Field(None, alias="cantonId")
    toggles: list[ResourceId] = Field(default_factory=list)
    view_specific: bool | None = Field(None, alias="viewSpecific")
    manage_all: bool | None = Field(None, alias="manageAll")


def _canton_panel(store: PermissionStore, bus: PermissionSyncBus, caller: CallerClaims) -> CantonPermissionsPanel:
    return CantonPermissionsPanel(store, bus, actor=actor_of(caller))


def _persona_panel(store: PermissionStore, bus: PermissionSyncBus, caller: CallerClaims) -> PersonaPermissionsPanel:
    return PersonaPermissionsPanel(store, bus, actor=actor_of(caller))


# canton grants


@router.get("/cantones")
async def list_canton_permissions(
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(get_caller),
) -> JSONResponse:
    panel = _canton_panel(store, bus, caller)
    cards = await panel.load()
    return panel_response(panel.notifications, {"cards": [card.model_dump(mode="json") for card in cards]})


@router.get("/cantones/assigned")
async def list_assigned_cantons(
    store: PermissionStore = Depends(get_store),
    caller: CallerClaims = Depends(get_caller),
) -> list[dict]:
    return [canton.model_dump(mode="json") for canton in await store.list_assigned_cantons()]


@router.post("/cantones")
async def assign_canton_permissions(
    payload: CantonAssignRequest,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    panel = _canton_panel(store, bus, caller)
    done = await panel.assign(payload.user_id, payload.canton_ids, payload.permissions)
    return panel_response(
        panel.notifications,
        {"ok": done, "cards": [card.model_dump(mode="json") for card in panel.cards]},
        status_code=status.HTTP_201_CREATED,
    )


@router.put("/cantones/{user_id}")
async def edit_canton_permissions(
    user_id: str,
    payload: CantonEditRequest,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    panel = _canton_panel(store, bus, caller)
    done = await panel.edit(user_id, payload.canton_ids, payload.permissions)
    return panel_response(panel.notifications, {"ok": done, "card": _dump(panel.card_for(user_id))})


@router.delete("/cantones/{user_id}")
async def revoke_canton_permissions(
    user_id: str,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    panel = _canton_panel(store, bus, caller)
    done = await panel.revoke_user(user_id)
    return panel_response(panel.notifications, {"ok": done})


@router.delete("/cantones/{user_id}/{canton_id}")
async def revoke_canton_permission(
    user_id: str,
    canton_id: str,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    panel = _canton_panel(store, bus, caller)
    done = await panel.revoke_canton(user_id, canton_id)
    return panel_response(panel.notifications, {"ok": done, "card": _dump(panel.card_for(user_id))})


# persona grants


@router.get("/personas")
async def list_persona_permissions(
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(get_caller),
) -> JSONResponse:
    panel = _persona_panel(store, bus, caller)
    cards = await panel.load()
    return panel_response(panel.notifications, {"cards": [card.model_dump(mode="json") for card in cards]})


@router.post("/personas")
async def assign_persona_permissions(
    payload: PersonaAssignRequest,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    panel = _persona_panel(store, bus, caller)
    done = await panel.assign(
        payload.user_id,
        payload.persona_ids,
        payload.canton_id,
        view_specific=payload.view_specific,
        manage_all=payload.manage_all,
    )
    return panel_response(
        panel.notifications,
        {"ok": done, "cards": [card.model_dump(mode="json") for card in panel.cards]},
        status_code=status.HTTP_201_CREATED,
    )


@router.delete("/personas/{grant_id}")
async def revoke_persona_permission(
    grant_id: str,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    panel = _persona_panel(store, bus, caller)
    done = await panel.revoke(grant_id)
    return panel_response(panel.notifications, {"ok": done})


@router.get("/personas/{user_id}/candidates")
async def list_persona_candidates(
    user_id: str,
    canton_id: str | None = Query(None, alias="cantonId"),
    q: str | None = None,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    panel = _persona_panel(store, bus, caller)
    session = await panel.open_editor(user_id)
    if session is None:
        return panel_response(panel.notifications)
    if canton_id is not None and not await session.select_canton(canton_id):
        return panel_response(panel.notifications)
    candidates = [
        {"persona": persona.model_dump(mode="json"), "state": session.state_of(persona.id).value}
        for persona in session.search(q)
    ]
    return panel_response(
        panel.notifications,
        {
            "user_id": user_id,
            "canton_id": session.canton_id,
            "eligible_canton_ids": session.eligible_canton_ids,
            "view_specific": session.view_specific,
            "manage_all": session.manage_all,
            "candidates": candidates,
        },
    )


@router.post("/personas/{user_id}/reconcile")
async def reconcile_persona_permissions(
    user_id: str,
    payload: ReconcileRequest,
    store: PermissionStore = Depends(get_store),
    bus: PermissionSyncBus = Depends(get_bus),
    caller: CallerClaims = Depends(require_admin),
) -> JSONResponse:
    """Apply one editor round: toggle the listed personas, then save."""

    panel = _persona_panel(store, bus, caller)
    session = await panel.open_editor(user_id)
    if session is None:
        return panel_response(panel.notifications)
    if payload.canton_id is not None and not await session.select_canton(payload.canton_id):
        return panel_response(panel.notifications)
    for persona_id in dict.fromkeys(payload.toggles):
        session.toggle(persona_id)
    diff = session.reconciler.diff()
    result = await session.save(view_specific=payload.view_specific, manage_all=payload.manage_all)
    session.close()
    content = {
        "to_add": sorted(diff.to_add),
        "to_remove": sorted(diff.to_remove),
        "result": None,
        "assigned": sorted(session.reconciler.assigned),
    }
    if result is not None:
        content["result"] = {
            "added": result.added,
            "removed": result.removed,
            "updated_grants": result.updated_grants,
            "failures": result.failures,
        }
    return panel_response(panel.notifications, content)


def _dump(card) -> dict | None:
    return card.model_dump(mode="json") if card is not None else None
