"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class ZoneError(Exception):
    """Base exception for all ledger and override errors."""

    pass


class UserNotFoundError(ZoneError):
    """Raised when the user UUID has never been initialised."""

    def __init__(self, user_uuid: UUID) -> None:
        self.user_uuid = user_uuid
        super().__init__(f"User not found: {user_uuid}")


class PreconditionFailedError(ZoneError):
    """Raised when an operation needs state the user has not configured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Precondition failed: {message}")


class OverrideForbiddenError(ZoneError):
    """Raised when an override code cannot be accepted."""

    NO_PENDING_CODE = "no_pending_code"
    EXPIRED = "expired"
    INVALID_CODE = "invalid_code"

    _MESSAGES = {
        NO_PENDING_CODE: "No pending OTP found",
        EXPIRED: "OTP has expired. Please request a new one.",
        INVALID_CODE: "Invalid OTP",
    }

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(self._MESSAGES.get(reason, reason))


class RateLimitExceededError(ZoneError):
    """Raised when a caller exceeds an endpoint's request budget."""

    def __init__(self, scope: str, retry_after: int, message: str) -> None:
        self.scope = scope
        self.retry_after = retry_after
        self.message = message
        super().__init__(message)


class CodeDeliveryError(ZoneError):
    """Raised by a code sender when the delivery channel rejects a message."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Code delivery failed: {message}")


class DataIntegrityError(ZoneError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")
