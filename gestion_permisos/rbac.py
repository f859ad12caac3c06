from typing import Iterable

from fastapi import Depends, HTTPException, status

from .constants.roles import ADMIN_ROLE
from .models import CantonGrant, PersonaGrant
from .security import CallerClaims, get_caller


def is_admin(role: str | None) -> bool:
    return (role or "").strip().lower() == ADMIN_ROLE


def eligible_canton_ids(canton_grants: Iterable[CantonGrant], user_id: str) -> list[str]:
    """Cantons a user may receive persona grants in, in grant order."""

    ids: list[str] = []
    for grant in canton_grants:
        if grant.user_id != user_id:
            continue
        for canton_id in sorted(grant.canton_ids()):
            if canton_id not in ids:
                ids.append(canton_id)
    return ids


def persona_ids_for(persona_grants: Iterable[PersonaGrant], user_id: str) -> set[str]:
    return {
        grant.persona_id
        for grant in persona_grants
        if grant.user_id == user_id and grant.persona_id is not None
    }


async def require_admin(caller: CallerClaims = Depends(get_caller)) -> CallerClaims:
    if is_admin(caller.role):
        return caller
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator role required")
