"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Expected business denials (quota exhausted, daily ad cap reached, duplicate
referral) are NOT exceptions; services return typed result values for those.
"""

from uuid import UUID

from guitar_dice.models.api import ChatErrorCode


class GuitarDiceError(Exception):
    """Base exception for all service errors."""

    pass


# ============================================================================
# Lookup / infrastructure
# ============================================================================


class UserNotFoundError(GuitarDiceError):
    """Raised when a user record doesn't exist."""

    def __init__(self, user_id: UUID | str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class ReferralCodeError(GuitarDiceError):
    """Raised when a unique referral code cannot be assigned."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Referral code error: {message}")


class DatabaseError(GuitarDiceError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


class StorageError(GuitarDiceError):
    """Raised when an uploaded file cannot be written."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Storage error: {message}")


# ============================================================================
# Input validation
# ============================================================================


class InvalidMessageContentError(GuitarDiceError):
    """Raised when chat content is empty or too long."""

    code = ChatErrorCode.INVALID_CONTENT

    def __init__(self, message: str = "Invalid message content") -> None:
        self.message = message
        super().__init__(message)


class AudioValidationError(GuitarDiceError):
    """Raised when an audio upload fails validation."""

    def __init__(self, code: ChatErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code.value}: {message}")


class DurationExceededError(AudioValidationError):
    """Raised when an audio clip is longer than allowed."""

    def __init__(self, duration: float, max_duration: int) -> None:
        self.duration = duration
        self.max_duration = max_duration
        super().__init__(
            ChatErrorCode.DURATION_EXCEEDED,
            f"Audio file must be {max_duration} seconds or less",
        )


# ============================================================================
# Security
# ============================================================================


class AuthenticationError(GuitarDiceError):
    """Raised when authentication fails (no session, bad credentials)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class CSRFValidationError(GuitarDiceError):
    """Raised when a state-changing request comes from a foreign origin."""

    code = "INVALID_ORIGIN"

    def __init__(self, origin: str | None) -> None:
        self.origin = origin
        super().__init__("CSRF protection: Invalid origin")


class RateLimitExceededError(GuitarDiceError):
    """Raised when a caller exceeds a short-window rate limit."""

    def __init__(self, action: str, retry_after: int) -> None:
        self.action = action
        self.retry_after = retry_after
        super().__init__(f"Too many {action} attempts. Please try again later.")


class PathTraversalError(GuitarDiceError):
    """Raised when a storage path escapes the upload directory."""

    code = ChatErrorCode.PATH_TRAVERSAL

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__("Invalid file path")


class WebhookVerificationError(GuitarDiceError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class EmailAlreadyRegisteredError(GuitarDiceError):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("An account with this email already exists")
