"""Error taxonomy shared by the stores, auth and the HTTP layer."""

from __future__ import annotations


class ArcadeError(Exception):
    status = 400


class ValidationError(ArcadeError):
    pass


class UsernameExistsError(ValidationError):
    pass


class NotFoundError(ArcadeError):
    status = 404


class NotAuthenticatedError(NotFoundError):
    status = 401


class AuthError(ArcadeError):
    status = 401


class PermissionDenied(ArcadeError):
    status = 403


class StorageQuotaError(ArcadeError):
    status = 507


class SyncError(ArcadeError):
    """Remote sync rejected or unreachable. Shown to the user as-is."""

    status = 502

    def __init__(self, message: str, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status
