from typing import Awaitable, Mapping

from ..bus import SyncEvent
from ..constants.sync import PERSONA_PERMISSIONS_UPDATED
from .events import PermissionActivity
from .sinks import ActivitySink, get_default_sink


class ActivityLogger:
    def __init__(self, sink: ActivitySink | None = None) -> None:
        self._sink = sink or get_default_sink()

    async def emit(
        self,
        *,
        action: str,
        resource_type: str,
        result: str,
        actor: str | None = None,
        user_id: str | None = None,
        resource_ids: tuple[str, ...] | list[str] = (),
        status_code: int | None = None,
        latency_ms: int | None = None,
        request_id: str | None = None,
        detail: Mapping | None = None,
    ) -> None:
        activity = PermissionActivity.now(
            actor=actor,
            action=action,
            resource_type=resource_type,
            result=result,
            user_id=user_id,
            resource_ids=resource_ids,
            status_code=status_code,
            latency_ms=latency_ms,
            request_id=request_id,
            detail=detail,
        )
        await self._sink.write(activity.to_payload())

    def on_sync_event(self, event: SyncEvent) -> Awaitable[None]:
        """Bus handler that records every broadcast change."""

        resource_type = "persona" if event.action == PERSONA_PERMISSIONS_UPDATED else "canton"
        return self.emit(
            actor=event.detail.get("actor"),
            action=event.action,
            resource_type=resource_type,
            result="broadcast",
            user_id=event.user_id,
            resource_ids=event.canton_ids,
            detail={"source": event.detail.get("source")},
        )
