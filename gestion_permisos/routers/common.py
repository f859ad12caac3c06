from __future__ import annotations

from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

from ..bus import PermissionSyncBus
from ..notifications import NotificationCenter, NotificationLevel
from ..security import CallerClaims


def get_bus(request: Request) -> PermissionSyncBus:
    return request.app.state.sync_bus


def actor_of(caller: CallerClaims) -> str:
    return caller.email or caller.id


def panel_response(
    notifications: NotificationCenter,
    content: dict[str, Any] | None = None,
    *,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """Wrap a panel result with the notifications it raised.

    The last error notification, if any, decides the response status.
    """

    items = notifications.drain()
    errors = [item for item in items if item.level is NotificationLevel.ERROR]
    if errors:
        status_code = errors[-1].status_code or status.HTTP_400_BAD_REQUEST
    body = dict(content or {})
    body["notifications"] = [item.to_payload() for item in items]
    return JSONResponse(status_code=status_code, content=body)
