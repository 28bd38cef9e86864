"""Exception hierarchy for ServiceGrid."""

from __future__ import annotations


class ServiceGridError(Exception):
    """Base exception for all ServiceGrid errors."""


class ConfigError(ServiceGridError):
    """Raised when configuration is invalid."""


class AuthError(ServiceGridError):
    """Raised when the session cannot be established or refreshed."""


class NoTokenError(AuthError):
    """Raised when the identity provider yields no token (AUTH_NO_JWT)."""

    def __init__(self, message: str = "AUTH_NO_JWT") -> None:
        super().__init__(message)


class BootstrapError(AuthError):
    """Raised when the tenant bootstrap call fails."""


class TenantError(ServiceGridError):
    """Raised when an operation needs an active business and there is none."""


class ApiError(ServiceGridError):
    """Raised when an edge function call fails."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def retryable(self) -> bool:
        """401s and CORS rejections are never retried."""
        if self.status == 401:
            return False
        return not (self.status == 0 and "cors" in self.message.lower())


class StorageError(ServiceGridError):
    """Raised when storage operations fail."""
