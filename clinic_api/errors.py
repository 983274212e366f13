"""Domain error taxonomy.

Every failure an operation can report is a ClinicError subclass carrying a
stable ``code`` the caller can branch on and the HTTP status it maps to.
"""
from typing import Optional


class ClinicError(Exception):
    """Base class for failures surfaced to API callers."""
    code = "INTERNAL"
    status_code = 500
    default_message = "An unexpected error occurred. Please try again later."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class AuthenticationError(ClinicError):
    """Raised when the caller's bearer token cannot be accepted."""
    code = "AUTH_INVALID"
    status_code = 401
    default_message = "Unauthorized"


class AuthMissingError(AuthenticationError):
    """Raised when no bearer token was supplied."""
    code = "AUTH_MISSING"
    default_message = "Unauthorized: No token provided"


class AuthInvalidError(AuthenticationError):
    """Raised when the token signature or structure is invalid."""
    code = "AUTH_INVALID"
    default_message = "Unauthorized: Invalid token"


class AuthExpiredError(AuthenticationError):
    """Raised when the token is past its expiry."""
    code = "AUTH_EXPIRED"
    default_message = "Unauthorized: Token expired"


class InvalidCredentialsError(ClinicError):
    """Raised when a username/password pair does not match."""
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid username or password"


class ForbiddenError(ClinicError):
    """Raised when the caller's role is not allowed for an operation."""
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden: You do not have permission"


class NotFoundError(ClinicError):
    """Raised when an entity is absent, soft-deleted or not visible to the caller."""
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class ConflictError(ClinicError):
    """Raised when an appointment overlaps another one for the same clinician."""
    code = "CONFLICT"
    status_code = 409
    default_message = "Appointment time conflicts with an existing appointment."


class DomainValidationError(ClinicError):
    """Raised when input is well-formed but violates a domain rule."""
    code = "VALIDATION"
    status_code = 400
    default_message = "Validation failed"
