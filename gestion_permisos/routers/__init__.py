"""HTTP routers for the permission admin backend."""

from . import directory, permissions

__all__ = ["directory", "permissions"]
