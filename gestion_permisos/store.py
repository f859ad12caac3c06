from typing import Iterable, Protocol

from .models import (
    CantonCapabilities,
    CantonGrant,
    CantonRef,
    PersonaCapabilities,
    PersonaGrant,
    PersonaRef,
    UserRef,
)


class PermissionStore(Protocol):
    """Operations the core needs from the permission API and its directory."""

    async def list_canton_grants(self) -> list[CantonGrant]: ...

    async def list_assigned_cantons(self) -> list[CantonRef]: ...

    async def assign_canton_grants(
        self, user_id: str, canton_ids: Iterable[str], capabilities: CantonCapabilities
    ) -> None: ...

    async def revoke_canton_grant(self, user_id: str, canton_id: str) -> None: ...

    async def list_persona_grants(self, force_reload: bool = False) -> list[PersonaGrant]: ...

    async def assign_persona_grants(
        self,
        user_id: str,
        persona_ids: Iterable[str],
        canton_id: str,
        capabilities: PersonaCapabilities,
    ) -> None: ...

    async def update_persona_grant(self, grant_id: str, capabilities: PersonaCapabilities) -> None: ...

    async def revoke_persona_grant(self, grant_id: str) -> None: ...

    async def revoke_persona_grant_for_user(self, user_id: str, persona_id: str) -> None: ...

    async def list_collaborators(self) -> list[UserRef]: ...

    async def list_cantons(self) -> list[CantonRef]: ...

    async def list_personas(self) -> list[PersonaRef]: ...
