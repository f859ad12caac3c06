from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from .errors import NoEligibleCantonsError
from .models import PersonaRef


class CandidateState(str, Enum):
    UNASSIGNED = "unassigned"
    PENDING_ADD = "pending_add"
    PENDING_REMOVE = "pending_remove"
    ASSIGNED = "assigned"


@dataclass(slots=True, frozen=True)
class SelectionDiff:
    to_add: frozenset[str]
    to_remove: frozenset[str]

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove


class SelectionReconciler:
    """Toggle marks over the personas a user already holds.

    ``selected`` only holds ids the admin clicked: an unassigned id in it is
    pending assignment, an assigned id in it is pending removal.
    """

    def __init__(self, assigned: Iterable[str] = ()) -> None:
        self._assigned: frozenset[str] = frozenset(assigned)
        self._selected: set[str] = set()

    @property
    def assigned(self) -> frozenset[str]:
        return self._assigned

    @property
    def selected(self) -> frozenset[str]:
        return frozenset(self._selected)

    def state_of(self, persona_id: str) -> CandidateState:
        in_assigned = persona_id in self._assigned
        in_selected = persona_id in self._selected
        if in_assigned:
            return CandidateState.PENDING_REMOVE if in_selected else CandidateState.ASSIGNED
        return CandidateState.PENDING_ADD if in_selected else CandidateState.UNASSIGNED

    def toggle(self, persona_id: str) -> CandidateState:
        if persona_id in self._selected:
            self._selected.discard(persona_id)
        else:
            self._selected.add(persona_id)
        return self.state_of(persona_id)

    def diff(self) -> SelectionDiff:
        return SelectionDiff(
            to_add=frozenset(self._selected - self._assigned),
            to_remove=frozenset(self._selected & self._assigned),
        )

    def reset(self, assigned: Iterable[str] | None = None) -> None:
        if assigned is not None:
            self._assigned = frozenset(assigned)
        self._selected.clear()


def filter_candidates(candidates: Sequence[PersonaRef], term: str | None) -> list[PersonaRef]:
    """Narrow candidates by name or cedula, case-insensitively."""

    needle = (term or "").strip().lower()
    if not needle:
        return list(candidates)
    return [
        persona
        for persona in candidates
        if needle in persona.full_name.lower() or needle in (persona.cedula or "").lower()
    ]


def require_eligible_cantons(canton_ids: Iterable[str]) -> list[str]:
    eligible = list(canton_ids)
    if not eligible:
        raise NoEligibleCantonsError()
    return eligible
