from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Awaitable, Union

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SyncEvent:
    """Notice that some permission panel has to reload."""

    action: str
    user_id: str | None = None
    canton_ids: tuple[str, ...] = ()
    detail: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_detail(cls, detail: Mapping[str, Any]) -> SyncEvent:
        """Read a free-form payload without trusting its shape."""

        user_id = detail.get("userId", detail.get("user_id"))
        raw_cantons = detail.get("cantonIds", detail.get("canton_ids")) or ()
        if isinstance(raw_cantons, (str, int)):
            raw_cantons = (raw_cantons,)
        canton_ids = tuple(str(c) for c in raw_cantons) if isinstance(raw_cantons, Iterable) else ()
        return cls(
            action=str(detail.get("action") or ""),
            user_id=None if user_id is None else str(user_id),
            canton_ids=canton_ids,
            detail=dict(detail),
        )

    def to_payload(self) -> dict[str, Any]:
        payload = dict(self.detail)
        payload["action"] = self.action
        if self.user_id is not None:
            payload["userId"] = self.user_id
        if self.canton_ids:
            payload["cantonIds"] = list(self.canton_ids)
        return payload


SyncHandler = Callable[[SyncEvent], Union[None, Awaitable[None]]]


class PermissionSyncBus:
    """Same-process broadcast channel between permission panels.

    Delivery is synchronous and reaches only the handlers registered when
    ``publish`` runs. Handlers that return an awaitable have it scheduled on
    the running loop; ``drain`` waits for that work.
    """

    def __init__(self) -> None:
        self._handlers: list[SyncHandler] = []
        self._pending: set[asyncio.Future[Any]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: SyncHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: SyncEvent | Mapping[str, Any]) -> int:
        if not isinstance(event, SyncEvent):
            event = SyncEvent.from_detail(event)
        logger.debug("Publishing permission sync event %s", event.to_payload())

        delivered = 0
        for handler in tuple(self._handlers):
            try:
                result = handler(event)
            except Exception:  # noqa: BLE001
                logger.exception("Sync handler %r failed for action %s", handler, event.action)
                continue
            delivered += 1
            if inspect.isawaitable(result):
                self._schedule(result)
        return delivered

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Dropping async sync handler result, no running event loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        future = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(future)
        future.add_done_callback(self._finished)

    def _finished(self, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Async sync handler failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        while self._pending:
            pending = tuple(self._pending)
            await asyncio.gather(*pending, return_exceptions=True)
            self._pending.difference_update(pending)
