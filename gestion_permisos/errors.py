from __future__ import annotations

from fastapi import status


class PermissionsError(Exception):
    """Base error for every failure the permission core surfaces to the UI."""

    status_code: int = status.HTTP_502_BAD_GATEWAY
    default_message = "The operation could not be completed"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.user_message = message or self.default_message
        self.detail = detail
        super().__init__(self.user_message if detail is None else f"{self.user_message}: {detail}")


class NotAuthenticatedError(PermissionsError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Your session has expired, sign in again"


class NotAuthorizedError(PermissionsError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to perform this operation"


class NotFoundError(PermissionsError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "The requested permission no longer exists"


class PermissionValidationError(PermissionsError):
    status_code = 422
    default_message = "The submitted data is not valid"


class NoEligibleCantonsError(PermissionValidationError):
    default_message = (
        "This collaborator has no cantones assigned. Assign cantones before granting personas."
    )


class PermissionApiError(PermissionsError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "The permission service is not available, try again"

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: str | None = None,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.upstream_status = upstream_status


def error_for_status(status_code: int, detail: str | None = None) -> PermissionsError:
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return NotAuthenticatedError(detail=detail)
    if status_code == status.HTTP_403_FORBIDDEN:
        return NotAuthorizedError(detail=detail)
    if status_code == status.HTTP_404_NOT_FOUND:
        return NotFoundError(detail=detail)
    return PermissionApiError(detail=detail, upstream_status=status_code)
