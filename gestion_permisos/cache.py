from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TTLCache:
    """In-memory cache for directory listings that rarely change."""

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._entries: dict[str, tuple[datetime, Any]] = {}

    @staticmethod
    def make_key(base_key: str, params: dict[str, Any] | None = None) -> str:
        return f"{base_key}:{json.dumps(params or {}, sort_keys=True, default=str)}"

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if datetime.now(tz=timezone.utc) >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else timedelta(seconds=ttl_seconds)
        self._entries[key] = (datetime.now(tz=timezone.utc) + ttl, value)

    async def get_or_set(
        self,
        base_key: str,
        fetch: Callable[[], Awaitable[T]],
        *,
        params: dict[str, Any] | None = None,
        ttl_seconds: int | None = None,
    ) -> T:
        key = self.make_key(base_key, params)
        cached = self.get(key)
        if cached is not None:
            logger.debug("Directory cache hit for %s", key)
            return cached
        value = await fetch()
        self.set(key, value, ttl_seconds)
        return value

    def invalidate(self, base_key: str, params: dict[str, Any] | None = None) -> None:
        self._entries.pop(self.make_key(base_key, params), None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [key for key in self._entries if key.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()
