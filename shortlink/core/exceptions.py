"""
Custom Exceptions

This module defines the error taxonomy of the short-link service.

Every user-visible error carries a stable ``kind`` string and an HTTP status
so that a client can tell "does not exist" from "existed but is gone" from
"try again later". ``PipelineDegradedError`` is internal only and is never
raised to a caller.
"""

from typing import Optional


class ShortLinkError(Exception):
    """Base exception for the short-link service."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ShortLinkError):
    """Raised when input is malformed. Never reaches storage."""

    kind = "validation_error"
    status_code = 400


class InvalidCodeError(ValidationError):
    """Raised when a requested short code does not match the format rule."""

    kind = "invalid_code"

    def __init__(self, code: str, reason: str = "Invalid short code format"):
        self.code = code
        self.reason = reason
        super().__init__(f"{reason}: {code!r}")


class InvalidTargetError(ValidationError):
    """Raised when URL validation fails."""

    kind = "invalid_target"

    def __init__(self, url: str, reason: str = "Invalid URL format"):
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url}")


class CodeCollisionError(ShortLinkError):
    """Raised when a custom short code is already in use (in any status)."""

    kind = "code_collision"
    status_code = 409

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Short code '{code}' is already in use")


class AllocationExhaustedError(ShortLinkError):
    """Raised when auto-generation keeps colliding. Signals a saturated code space."""

    kind = "allocation_exhausted"
    status_code = 503

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique short code after {attempts} attempts")


class NotFoundError(ShortLinkError):
    """Raised when a short code is not found."""

    kind = "not_found"
    status_code = 404

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Short code '{code}' not found")


class GoneError(ShortLinkError):
    """Raised when a short code exists but is inactive or expired."""

    kind = "gone"
    status_code = 410

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"Short code '{code}' is no longer available ({reason})")


class ExpiredError(ShortLinkError):
    """Raised when reactivating a record whose expiration has passed."""

    kind = "expired"
    status_code = 409

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Short code '{code}' has expired and cannot be reactivated")


class PermissionDeniedError(ShortLinkError):
    """Raised when a caller asks for data owned by another subject."""

    kind = "permission_denied"
    status_code = 403


class RateLimitedError(ShortLinkError):
    """Raised when a rate-limited operation has no headroom left."""

    kind = "rate_limited"
    status_code = 429

    def __init__(self, retry_after: float, dimensions: Optional[list] = None):
        self.retry_after = retry_after
        self.dimensions = dimensions or []
        super().__init__(f"Too many requests. Retry after {int(retry_after)} seconds")


class TransientError(ShortLinkError):
    """Raised when storage times out or is unavailable. Safe to retry."""

    kind = "transient"
    status_code = 503

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Temporary failure: {message}")


class PipelineDegradedError(ShortLinkError):
    """Internal: the event pipeline dropped events. Logged, never raised to callers."""

    kind = "pipeline_degraded"

    def __init__(self, dropped: int, reason: str):
        self.dropped = dropped
        self.reason = reason
        super().__init__(f"Event pipeline dropped {dropped} event(s): {reason}")
