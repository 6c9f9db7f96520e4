from __future__ import annotations

from typing import Any, Dict, Optional


class BaseAPIException(Exception):
    """Base exception for all API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            },
        }


class APIError(BaseAPIException):
    """Generic API error."""
    def __init__(self, message: str = "An error occurred", **kwargs):
        super().__init__(message, status_code=500, **kwargs)


class NotFoundError(BaseAPIException):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", **kwargs):
        super().__init__(message, status_code=404, **kwargs)


class ValidationError(BaseAPIException):
    """Validation error."""
    def __init__(self, message: str = "Validation error", status_code: int = 400, **kwargs):
        super().__init__(message, status_code=status_code, **kwargs)


class RateLimitError(BaseAPIException):
    """Rate limit exceeded."""
    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class ExternalServiceError(BaseAPIException):
    """External service error."""
    def __init__(self, message: str = "External service error", **kwargs):
        super().__init__(message, status_code=502, **kwargs)


class ServiceUnavailableError(BaseAPIException):
    """Service unavailable."""
    def __init__(self, message: str = "Service unavailable", **kwargs):
        super().__init__(message, status_code=503, **kwargs)


# Lead capture errors

class LeadNotFoundError(NotFoundError):
    """No lead was submitted for the email."""
    def __init__(self, message: str = "No pending verification for this email", **kwargs):
        kwargs.setdefault("code", "lead_not_found")
        super().__init__(message, **kwargs)


class CooldownError(RateLimitError):
    """A new code was requested before the resend cooldown elapsed."""
    def __init__(self, retry_after: int, **kwargs):
        kwargs.setdefault("code", "cooldown_active")
        kwargs.setdefault("details", {"retry_after": retry_after})
        super().__init__(
            message="Please wait before requesting a new code",
            retry_after=retry_after,
            **kwargs,
        )


class EmailDeliveryError(ExternalServiceError):
    """The verification email could not be sent."""
    def __init__(self, message: str = "Failed to send verification email. Please try again.", **kwargs):
        kwargs.setdefault("code", "email_delivery_failed")
        super().__init__(message, **kwargs)


OTP_ERROR_MESSAGE = "Invalid or expired verification code"


class OTPError(BaseAPIException):
    """Verification failed. Every subclass shares one user-facing message."""

    error_code = "otp_error"

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            OTP_ERROR_MESSAGE,
            status_code=400,
            code=self.error_code,
            details=details,
        )


class OTPNotFoundError(OTPError):
    error_code = "not_found"


class OTPExpiredError(OTPError):
    error_code = "expired"


class OTPAttemptsExhaustedError(OTPError):
    error_code = "attempts_exhausted"


class OTPMismatchError(OTPError):
    error_code = "mismatch"

    def __init__(self, attempts_remaining: int):
        super().__init__(details={"attempts_remaining": attempts_remaining})
        self.attempts_remaining = attempts_remaining
