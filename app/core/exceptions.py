"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and optional details."""
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, details=details)


class PersistenceException(AppException):
    """Store write failed; nothing was persisted."""

    def __init__(self, message: str = "Failed to save appointment", detail: str | None = None):
        """Initialize with 500 status code and the store's error detail."""
        super().__init__(
            message,
            status_code=500,
            details={"detail": detail} if detail else None,
        )


# Booking errors


class ClientNotFoundException(NotFoundException):
    """Client id does not resolve to a user with the client role."""

    def __init__(self, message: str = "Client not found"):
        """Initialize with 404 status code."""
        super().__init__(message)


class ProviderNotFoundException(NotFoundException):
    """Provider id does not resolve to a dietitian or health counselor."""

    def __init__(self, message: str = "Provider not found"):
        """Initialize with 404 status code."""
        super().__init__(message)


class ClientNotAssignedException(ForbiddenException):
    """Client is not assigned to the calling provider."""

    def __init__(self, message: str = "Client is not assigned to you"):
        """Initialize with 403 status code."""
        super().__init__(message)


class ProviderImpersonationException(ForbiddenException):
    """Caller tried to book on behalf of another provider."""

    def __init__(self, message: str = "You cannot book appointments for another provider"):
        """Initialize with 403 status code."""
        super().__init__(message)


class SchedulingConflictException(ConflictException):
    """Requested time overlaps an existing reservation."""

    def __init__(
        self,
        message: str = "Time slot conflicts with existing appointment",
        conflicting_ids: list[str] | None = None,
    ):
        """Initialize with 409 status code and the overlapping appointment ids."""
        super().__init__(message, details={"conflictingAppointmentIds": conflicting_ids or []})


class InvalidTransitionException(BadRequestException):
    """Lifecycle transition not allowed from the current status."""

    def __init__(self, current_status: str, action: str):
        """Initialize with 400 status code."""
        super().__init__(f"Cannot {action} a {current_status} appointment")
        self.current_status = current_status
        self.action = action
