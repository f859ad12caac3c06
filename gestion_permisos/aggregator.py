"""Group flat grant rows into one permission card per user.

Cards are recomputed from the current row snapshot on every load. Flags merge
with boolean OR across a user's rows, so the card shows the most permissive
combination; the per-canton rows still gate canton-specific checks.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar, overload

from .models import (
    CantonGrant,
    CantonPermissionCard,
    CantonRef,
    PersonaGrant,
    PersonaPermissionCard,
    PersonaRef,
)

RefT = TypeVar("RefT", CantonRef, PersonaRef)


def _append_unique(target: list[RefT], seen: set[str], refs: Iterable[RefT | None]) -> None:
    for ref in refs:
        # rows whose resource was deleted upstream carry no reference
        if ref is None or ref.id in seen:
            continue
        seen.add(ref.id)
        target.append(ref)


def aggregate_canton_grants(rows: Iterable[CantonGrant]) -> list[CantonPermissionCard]:
    cards: dict[str, CantonPermissionCard] = {}
    seen: dict[str, set[str]] = {}
    for row in rows:
        card = cards.get(row.user_id)
        if card is None:
            card = cards[row.user_id] = CantonPermissionCard(user_id=row.user_id, user=row.user)
            seen[row.user_id] = set()
        elif card.user is None:
            card.user = row.user
        card.grant_ids.append(row.id)
        card.capabilities = card.capabilities.merge(row.capabilities)
        _append_unique(card.cantons, seen[row.user_id], row.scope.cantons())
    return list(cards.values())


def aggregate_persona_grants(rows: Iterable[PersonaGrant]) -> list[PersonaPermissionCard]:
    cards: dict[str, PersonaPermissionCard] = {}
    seen_personas: dict[str, set[str]] = {}
    seen_cantons: dict[str, set[str]] = {}
    for row in rows:
        card = cards.get(row.user_id)
        if card is None:
            card = cards[row.user_id] = PersonaPermissionCard(user_id=row.user_id, user=row.user)
            seen_personas[row.user_id] = set()
            seen_cantons[row.user_id] = set()
        elif card.user is None:
            card.user = row.user
        card.grant_ids.append(row.id)
        card.can_view = card.can_view or row.can_view
        card.can_manage = card.can_manage or row.can_manage
        if row.updated_at is not None and (card.updated_at is None or row.updated_at > card.updated_at):
            card.updated_at = row.updated_at
        _append_unique(card.personas, seen_personas[row.user_id], [row.persona])
        _append_unique(card.cantons, seen_cantons[row.user_id], row.cantons())
    return list(cards.values())


@overload
def aggregate(rows: Sequence[CantonGrant]) -> list[CantonPermissionCard]: ...


@overload
def aggregate(rows: Sequence[PersonaGrant]) -> list[PersonaPermissionCard]: ...


def aggregate(rows):
    """Aggregate rows of a single resource kind."""

    rows = list(rows)
    if not rows:
        return []
    if all(isinstance(row, CantonGrant) for row in rows):
        return aggregate_canton_grants(rows)
    if all(isinstance(row, PersonaGrant) for row in rows):
        return aggregate_persona_grants(rows)
    raise TypeError("aggregate() expects rows of a single grant kind")
