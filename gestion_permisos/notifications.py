from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import PermissionsError


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(slots=True)
class Notification:
    level: NotificationLevel
    message: str
    status_code: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["level"] = self.level.value
        payload["created_at"] = self.created_at.isoformat()
        return payload


class NotificationCenter:
    """Transient toasts raised by panels; the UI drains and shows them."""

    def __init__(self, max_items: int = 50) -> None:
        self._items: deque[Notification] = deque(maxlen=max_items)

    def push(self, notification: Notification) -> Notification:
        self._items.append(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.push(Notification(NotificationLevel.SUCCESS, message))

    def info(self, message: str) -> Notification:
        return self.push(Notification(NotificationLevel.INFO, message))

    def error(self, message: str, status_code: int | None = None) -> Notification:
        return self.push(Notification(NotificationLevel.ERROR, message, status_code))

    def failure(self, exc: PermissionsError, context: str | None = None) -> Notification:
        return self.push(notify_failure(exc, context))

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def last_error(self) -> Notification | None:
        for item in reversed(self._items):
            if item.level is NotificationLevel.ERROR:
                return item
        return None

    def drain(self) -> list[Notification]:
        items = list(self._items)
        self._items.clear()
        return items


def notify_failure(exc: PermissionsError, context: str | None = None) -> Notification:
    message = exc.user_message if context is None else f"{context}: {exc.user_message}"
    return Notification(NotificationLevel.ERROR, message, exc.status_code)
