"""Shared fixtures: an in-memory permission store and sample directory data."""

from __future__ import annotations

import itertools
from typing import Any, Iterable

import pytest
from jose import jwt

from gestion_permisos.bus import PermissionSyncBus
from gestion_permisos.constants.roles import ADMIN_ROLE, COLLABORATOR_ROLE
from gestion_permisos.errors import NotFoundError, PermissionApiError, PermissionsError
from gestion_permisos.models import (
    CantonCapabilities,
    CantonGrant,
    CantonRef,
    PersonaCapabilities,
    PersonaGrant,
    PersonaRef,
    UserRef,
)
from gestion_permisos.notifications import NotificationCenter

CANTONS = [
    {"id": 1, "nombre": "San Jose", "provincia": "San Jose"},
    {"id": 2, "nombre": "Escazu", "provincia": "San Jose"},
    {"id": 3, "nombre": "Cartago", "provincia": "Cartago"},
]

PERSONAS = [
    {"id": 10, "nombres": "Maria", "apellidos": "Rojas", "cedula": "1-1111-1111", "canton": {"id": 1, "nombre": "San Jose"}},
    {"id": 11, "nombres": "Jorge", "apellidos": "Mora", "cedula": "1-2222-2222", "canton": {"id": 1, "nombre": "San Jose"}},
    {"id": 20, "nombre": "Carlos Vargas", "cedula": "2-3333-3333", "cantonId": 2},
    {"id": 30, "cedula": "3-4444-4444", "canton": 3},
]

COLLABORATORS = [
    {"id": 100, "nombre": "Ana Solis", "email": "ana@example.com", "rol": "colaborador"},
    {"id": 200, "nombre": "Luis Castro", "email": "luis@example.com", "rol": "colaborador"},
]


class InMemoryPermissionStore:
    """``PermissionStore`` fake that keeps upstream-shaped rows in memory.

    ``fail(method, key)`` makes the next calls of ``method`` whose first
    argument equals ``key`` raise, so partial failures can be staged.
    """

    def __init__(self) -> None:
        self.canton_rows: list[dict[str, Any]] = []
        self.persona_rows: list[dict[str, Any]] = []
        self.cantons = [dict(row) for row in CANTONS]
        self.personas = [dict(row) for row in PERSONAS]
        self.collaborators = [dict(row) for row in COLLABORATORS]
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[tuple[str, str | None], PermissionsError] = {}
        self._ids = itertools.count(1)

    # staging helpers

    def fail(self, method: str, key: str | None = None, error: PermissionsError | None = None) -> None:
        self._failures[(method, key)] = error or PermissionApiError(detail=f"{method} failed")

    def recover(self, method: str, key: str | None = None) -> None:
        self._failures.pop((method, key), None)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        key = str(args[0]) if args else None
        error = self._failures.get((method, key)) or self._failures.get((method, None))
        if error is not None:
            raise error

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def _user(self, user_id: str) -> dict[str, Any] | None:
        return next((u for u in self.collaborators if str(u["id"]) == str(user_id)), None)

    def _canton(self, canton_id: str) -> dict[str, Any] | None:
        return next((c for c in self.cantons if str(c["id"]) == str(canton_id)), None)

    def _persona(self, persona_id: str) -> dict[str, Any] | None:
        return next((p for p in self.personas if str(p["id"]) == str(persona_id)), None)

    def seed_canton_grant(self, user_id: str, canton_id: str, **flags: bool) -> dict[str, Any]:
        row = {
            "id": f"cg-{next(self._ids)}",
            "userId": user_id,
            "cantonId": canton_id,
            "canton": self._canton(canton_id),
            "user": self._user(user_id),
            "permissions": {"view": True, **flags},
        }
        self.canton_rows.append(row)
        return row

    def seed_persona_grant(self, user_id: str, persona_id: str, canton_id: str | None = None, **flags: bool) -> dict[str, Any]:
        persona = self._persona(persona_id)
        row = {
            "id": f"pg-{next(self._ids)}",
            "userId": user_id,
            "personaId": persona_id,
            "cantonId": canton_id,
            "persona": persona,
            "user": self._user(user_id),
            "canView": flags.get("can_view", True),
            "canCreate": flags.get("can_create", False),
            "canEdit": flags.get("can_edit", False),
        }
        self.persona_rows.append(row)
        return row

    # canton grants

    async def list_canton_grants(self) -> list[CantonGrant]:
        self._record("list_canton_grants")
        return [CantonGrant.model_validate(row) for row in self.canton_rows]

    async def list_assigned_cantons(self) -> list[CantonRef]:
        self._record("list_assigned_cantons")
        return [CantonRef.model_validate(row) for row in self.cantons]

    async def assign_canton_grants(
        self, user_id: str, canton_ids: Iterable[str], capabilities: CantonCapabilities
    ) -> None:
        canton_ids = list(canton_ids)
        self._record("assign_canton_grants", user_id, canton_ids, capabilities)
        for canton_id in canton_ids:
            row = next(
                (r for r in self.canton_rows if r["userId"] == user_id and str(r["cantonId"]) == canton_id),
                None,
            )
            if row is None:
                self.seed_canton_grant(user_id, canton_id, **capabilities.model_dump())
            else:
                row["permissions"] = capabilities.to_wire()

    async def revoke_canton_grant(self, user_id: str, canton_id: str) -> None:
        self._record("revoke_canton_grant", user_id, canton_id)
        before = len(self.canton_rows)
        self.canton_rows = [
            r for r in self.canton_rows if not (r["userId"] == user_id and str(r["cantonId"]) == canton_id)
        ]
        if len(self.canton_rows) == before:
            raise NotFoundError(detail=f"no grant for {user_id} in {canton_id}")

    # persona grants

    async def list_persona_grants(self, force_reload: bool = False) -> list[PersonaGrant]:
        self._record("list_persona_grants", force_reload)
        return [PersonaGrant.model_validate(row) for row in self.persona_rows]

    async def assign_persona_grants(
        self,
        user_id: str,
        persona_ids: Iterable[str],
        canton_id: str,
        capabilities: PersonaCapabilities,
    ) -> None:
        persona_ids = list(persona_ids)
        self._record("assign_persona_grants", user_id, persona_ids, canton_id, capabilities)
        for persona_id in persona_ids:
            row = next(
                (r for r in self.persona_rows if r["userId"] == user_id and str(r["personaId"]) == persona_id),
                None,
            )
            if row is None:
                row = self.seed_persona_grant(user_id, persona_id, canton_id)
            row.update(capabilities.to_wire())
            row["cantonId"] = canton_id

    def _persona_row(self, grant_id: str) -> dict[str, Any]:
        row = next((r for r in self.persona_rows if r["id"] == grant_id), None)
        if row is None:
            raise NotFoundError(detail=f"no persona grant {grant_id}")
        return row

    async def update_persona_grant(self, grant_id: str, capabilities: PersonaCapabilities) -> None:
        self._record("update_persona_grant", grant_id, capabilities)
        self._persona_row(grant_id).update(capabilities.to_wire())

    async def revoke_persona_grant(self, grant_id: str) -> None:
        self._record("revoke_persona_grant", grant_id)
        self.persona_rows.remove(self._persona_row(grant_id))

    async def revoke_persona_grant_for_user(self, user_id: str, persona_id: str) -> None:
        self._record("revoke_persona_grant_for_user", user_id, persona_id)
        before = len(self.persona_rows)
        self.persona_rows = [
            r for r in self.persona_rows if not (r["userId"] == user_id and str(r["personaId"]) == persona_id)
        ]
        if len(self.persona_rows) == before:
            raise NotFoundError(detail=f"no grant for {user_id} on persona {persona_id}")

    # directory

    async def list_collaborators(self) -> list[UserRef]:
        self._record("list_collaborators")
        return [UserRef.model_validate(row) for row in self.collaborators]

    async def list_cantons(self) -> list[CantonRef]:
        self._record("list_cantons")
        return [CantonRef.model_validate(row) for row in self.cantons]

    async def list_personas(self) -> list[PersonaRef]:
        self._record("list_personas")
        return [PersonaRef.model_validate(row) for row in self.personas]


@pytest.fixture
def store():
    """Empty in-memory permission store with the sample directory."""
    return InMemoryPermissionStore()


@pytest.fixture
def bus():
    """Fresh sync bus per test."""
    return PermissionSyncBus()


@pytest.fixture
def notifications():
    return NotificationCenter()


def make_token(role: str = ADMIN_ROLE, user_id: int = 1, email: str = "admin@example.com") -> str:
    return jwt.encode({"id": user_id, "email": email, "rol": role}, "test-secret", algorithm="HS256")


@pytest.fixture
def admin_headers():
    """Bearer header for an administrator."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def collaborator_headers():
    """Bearer header for a non-admin collaborator."""
    return {"Authorization": f"Bearer {make_token(role=COLLABORATOR_ROLE, user_id=100, email='ana@example.com')}"}
