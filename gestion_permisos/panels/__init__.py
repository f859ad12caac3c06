"""Stateful controllers behind the permission admin screens."""

from .base import PermissionPanel
from .canton import CantonPermissionsPanel
from .editor import PersonaAssignmentSession, SaveResult
from .persona import PersonaPermissionsPanel

__all__ = [
    "CantonPermissionsPanel",
    "PermissionPanel",
    "PersonaAssignmentSession",
    "PersonaPermissionsPanel",
    "SaveResult",
]
