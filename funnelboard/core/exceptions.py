"""Custom exceptions for the funnelboard application."""


class FunnelboardException(Exception):
    """Base exception for funnelboard application."""

    pass


class ValidationError(FunnelboardException):
    """Raised when validation fails."""

    pass


class NotFoundError(FunnelboardException):
    """Raised when a resource is not found."""

    pass


class DatabaseError(FunnelboardException):
    """Raised when a database operation fails."""

    pass


class ServiceError(FunnelboardException):
    """Raised when a service operation fails."""

    pass


class ConfigurationError(FunnelboardException):
    """Raised when configuration (global or per-client) is invalid."""

    pass


class AuthenticationError(FunnelboardException):
    """Raised when authentication fails."""

    pass


class AuthorizationError(FunnelboardException):
    """Raised when an authenticated caller lacks permission."""

    pass


class ExternalPlatformError(FunnelboardException):
    """Raised when a third-party platform answers with an error."""

    platform = "external"

    def __init__(self, message: str, status_code: int, code: int | str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def is_credentials_error(self) -> bool:
        return self.status_code == 401


class CrmApiError(ExternalPlatformError):
    """Raised for CRM platform failures."""

    platform = "crm"


class AdsApiError(ExternalPlatformError):
    """Raised for ads platform failures."""

    platform = "ads"

    @property
    def is_credentials_error(self) -> bool:
        return self.status_code == 401 or self.code == 190
