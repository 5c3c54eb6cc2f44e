"""
Error taxonomy for the bucket access engine.

The HTTP gateway maps each family to one status code; see backend/main.py.
"""

from typing import Optional


class PinDropError(Exception):
    """Base class for engine errors."""


class ValidationError(PinDropError):
    """Caller input was rejected; the message is safe to show verbatim."""


class InvalidPinFormatError(ValidationError):
    """PIN does not match either supported format."""


class FileTooLargeError(ValidationError):
    """A single object exceeds the per-object ceiling."""


class QuotaExceededError(ValidationError):
    """An upload would push the owner's aggregate usage over the cap."""


class RateLimitedError(PinDropError):
    """PIN verification refused by the attempt governor."""

    def __init__(self, message: str, challenge_required: bool = False, minutes_left: int = 0):
        super().__init__(message)
        self.challenge_required = challenge_required
        self.minutes_left = minutes_left


class NotFoundError(PinDropError):
    """Resource absent, expired or just purged. Never says which."""


class BucketNotFoundError(NotFoundError):
    def __init__(self, message: str = "Bucket not found"):
        super().__init__(message)


class FileObjectNotFoundError(NotFoundError):
    def __init__(self, message: str = "File not found"):
        super().__init__(message)


class PermissionDeniedError(PinDropError):
    """Authenticated caller is not allowed to perform an owner-only action."""


class BackendUnavailableError(PinDropError):
    """Document store or blob store failure; retryable."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InternalError(PinDropError):
    """Malformed stored data, e.g. an undecryptable PIN blob."""
