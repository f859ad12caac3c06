from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping


@dataclass(slots=True)
class PermissionActivity:
    """One permission change or request, as written to the activity sinks."""

    timestamp: datetime
    actor: str | None
    action: str
    resource_type: str
    result: str
    user_id: str | None = None
    resource_ids: tuple[str, ...] = ()
    status_code: int | None = None
    latency_ms: int | None = None
    request_id: str | None = None
    detail: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.astimezone(timezone.utc).isoformat()
        payload["resource_ids"] = list(self.resource_ids)
        payload["detail"] = dict(self.detail)
        return payload

    @classmethod
    def now(
        cls,
        *,
        actor: str | None,
        action: str,
        resource_type: str,
        result: str,
        user_id: str | None = None,
        resource_ids: tuple[str, ...] | list[str] = (),
        status_code: int | None = None,
        latency_ms: int | None = None,
        request_id: str | None = None,
        detail: Mapping[str, Any] | None = None,
    ) -> "PermissionActivity":
        return cls(
            timestamp=datetime.now(tz=timezone.utc),
            actor=actor,
            action=action,
            resource_type=resource_type,
            result=result,
            user_id=user_id,
            resource_ids=tuple(str(resource_id) for resource_id in resource_ids),
            status_code=status_code,
            latency_ms=latency_ms,
            request_id=request_id,
            detail=detail or {},
        )
