from __future__ import annotations

import logging
import time
from typing import Any, Iterable, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .cache import TTLCache
from .config import settings
from .errors import PermissionApiError, error_for_status
from .models import (
    CantonCapabilities,
    CantonGrant,
    CantonRef,
    PersonaCapabilities,
    PersonaGrant,
    PersonaRef,
    UserRef,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

COLLABORATORS_CACHE_KEY = "directory:collaborators"
CANTONS_CACHE_KEY = "directory:cantones"
PERSONAS_CACHE_KEY = "directory:personas"


def build_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=settings.api_timeout_seconds,
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )


def unwrap_list(payload: Any, key: str) -> list[Any]:
    """Pull a list out of the upstream envelope, whichever shape it came in."""

    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if isinstance(payload.get(key), list):
            return payload[key]
        if "data" in payload:
            return unwrap_list(payload["data"], key)
    return []


def parse_rows(model: type[ModelT], rows: Iterable[Any]) -> list[ModelT]:
    parsed: list[ModelT] = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as exc:
            logger.warning("Skipping malformed %s row: %s", model.__name__, exc.errors()[:1])
    return parsed


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)[:500]
    return str(body)[:500]


class PermissionApiClient:
    """``PermissionStore`` backed by the upstream case-management REST API."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self._http = http
        self.access_token = access_token
        self._refresh_token = refresh_token
        self._cache = cache

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"} if self.access_token else {}

    def _capture_token(self, response: httpx.Response) -> None:
        header = response.headers.get("authorization")
        if header and header.lower().startswith("bearer "):
            logger.debug("Upstream rotated the access token")
            self.access_token = header.split(" ", 1)[1]

    async def _refresh(self) -> bool:
        try:
            response = await self._http.post(
                settings.refresh_token_path, json={"refreshToken": self._refresh_token}
            )
        except httpx.HTTPError as exc:
            logger.error("Token refresh failed: %s", exc)
            return False
        if response.status_code != 200:
            logger.warning("Token refresh rejected with status %s", response.status_code)
            return False
        try:
            body = response.json()
        except ValueError:
            body = None
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            return False
        self.access_token = token
        logger.info("Access token refreshed")
        return True

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        retry_on_401: bool = True,
    ) -> Any:
        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=self._auth_headers()
            )
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise PermissionApiError(detail=str(exc)) from exc

        self._capture_token(response)
        if response.status_code == 401 and retry_on_401 and self._refresh_token:
            if await self._refresh():
                return await self._request(method, path, json=json, params=params, retry_on_401=False)

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning("%s %s returned %s: %s", method, path, response.status_code, detail)
            raise error_for_status(response.status_code, detail)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise PermissionApiError(detail=f"invalid JSON from {path}") from exc

    # canton grants

    async def list_canton_grants(self) -> list[CantonGrant]:
        payload = await self._request("GET", "/permissions/canton")
        return parse_rows(CantonGrant, unwrap_list(payload, "permissions"))

    async def list_assigned_cantons(self) -> list[CantonRef]:
        payload = await self._request("GET", "/permissions/canton/assigned")
        return parse_rows(CantonRef, unwrap_list(payload, "cantones"))

    async def assign_canton_grants(
        self, user_id: str, canton_ids: Iterable[str], capabilities: CantonCapabilities
    ) -> None:
        await self._request(
            "POST",
            "/permissions/canton/assign",
            json={
                "userId": user_id,
                "cantonIds": list(canton_ids),
                "permissions": capabilities.to_wire(),
            },
        )

    async def revoke_canton_grant(self, user_id: str, canton_id: str) -> None:
        await self._request("DELETE", f"/permissions/cantones/{canton_id}/usuarios/{user_id}")

    # persona grants

    async def list_persona_grants(self, force_reload: bool = False) -> list[PersonaGrant]:
        params = {"t": int(time.time() * 1000)} if force_reload else None
        payload = await self._request("GET", "/permissions/persona", params=params)
        return parse_rows(PersonaGrant, unwrap_list(payload, "permissions"))

    async def assign_persona_grants(
        self,
        user_id: str,
        persona_ids: Iterable[str],
        canton_id: str,
        capabilities: PersonaCapabilities,
    ) -> None:
        await self._request(
            "POST",
            "/permissions/persona/assign",
            json={
                "userId": user_id,
                "personaIds": list(persona_ids),
                "cantonId": canton_id,
                "permissions": capabilities.to_wire(),
            },
        )

    async def update_persona_grant(self, grant_id: str, capabilities: PersonaCapabilities) -> None:
        await self._request("PUT", f"/permissions/persona/{grant_id}", json=capabilities.to_wire())

    async def revoke_persona_grant(self, grant_id: str) -> None:
        await self._request("DELETE", f"/permissions/persona/{grant_id}")

    async def revoke_persona_grant_for_user(self, user_id: str, persona_id: str) -> None:
        await self._request("DELETE", f"/permissions/persona/user/{user_id}/persona/{persona_id}")

    # directory

    async def _cached(self, key: str, fetch):
        if self._cache is None:
            return await fetch()
        return await self._cache.get_or_set(key, fetch)

    async def list_collaborators(self) -> list[UserRef]:
        async def fetch() -> list[UserRef]:
            payload = await self._request("GET", "/users/collaborators")
            return parse_rows(UserRef, unwrap_list(payload, "users"))

        return await self._cached(COLLABORATORS_CACHE_KEY, fetch)

    async def list_cantons(self) -> list[CantonRef]:
        async def fetch() -> list[CantonRef]:
            payload = await self._request("GET", "/cantones")
            return parse_rows(CantonRef, unwrap_list(payload, "cantones"))

        return await self._cached(CANTONS_CACHE_KEY, fetch)

    async def list_personas(self) -> list[PersonaRef]:
        async def fetch() -> list[PersonaRef]:
            payload = await self._request("GET", "/personas/all")
            return parse_rows(PersonaRef, unwrap_list(payload, "personas"))

        return await self._cached(PERSONAS_CACHE_KEY, fetch)
