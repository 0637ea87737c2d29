"""
Tests for exception classes.

Covers the exception hierarchy, typed attributes and string representations.
"""

from uuid import uuid4

import pytest

from guitar_dice.exceptions import (
    AudioValidationError,
    AuthenticationError,
    CSRFValidationError,
    DatabaseError,
    DurationExceededError,
    EmailAlreadyRegisteredError,
    GuitarDiceError,
    InvalidMessageContentError,
    PathTraversalError,
    RateLimitExceededError,
    ReferralCodeError,
    StorageError,
    UserNotFoundError,
    WebhookVerificationError,
)
from guitar_dice.models.api import ChatErrorCode


class TestGuitarDiceError:
    """Tests for the base exception."""

    def test_is_exception(self):
        assert issubclass(GuitarDiceError, Exception)

    @pytest.mark.parametrize(
        "exc_class",
        [
            UserNotFoundError,
            ReferralCodeError,
            DatabaseError,
            StorageError,
            InvalidMessageContentError,
            AudioValidationError,
            DurationExceededError,
            AuthenticationError,
            CSRFValidationError,
            RateLimitExceededError,
            PathTraversalError,
            WebhookVerificationError,
            EmailAlreadyRegisteredError,
        ],
    )
    def test_every_service_error_shares_the_base(self, exc_class):
        assert issubclass(exc_class, GuitarDiceError)


class TestUserNotFoundError:
    def test_carries_user_id(self):
        user_id = uuid4()
        error = UserNotFoundError(user_id)

        assert error.user_id == user_id
        assert str(error) == f"User not found: {user_id}"


class TestAudioErrors:
    """Tests for audio validation errors."""

    def test_code_and_message(self):
        error = AudioValidationError(ChatErrorCode.INVALID_MAGIC_BYTES, "not audio")

        assert error.code == ChatErrorCode.INVALID_MAGIC_BYTES
        assert error.message == "not audio"
        assert str(error) == "INVALID_MAGIC_BYTES: not audio"

    def test_duration_exceeded(self):
        error = DurationExceededError(42.5, 30)

        assert isinstance(error, AudioValidationError)
        assert error.code == ChatErrorCode.DURATION_EXCEEDED
        assert error.duration == 42.5
        assert error.max_duration == 30
        assert error.message == "Audio file must be 30 seconds or less"


class TestSecurityErrors:
    """Tests for authentication, CSRF and rate limit errors."""

    def test_authentication_error(self):
        error = AuthenticationError("Unauthorized")

        assert error.message == "Unauthorized"
        assert str(error) == "Authentication failed: Unauthorized"

    def test_csrf_error(self):
        error = CSRFValidationError("https://evil.example.com")

        assert error.origin == "https://evil.example.com"
        assert error.code == "INVALID_ORIGIN"

    def test_rate_limit_error(self):
        error = RateLimitExceededError("dice roll", 17)

        assert error.retry_after == 17
        assert str(error) == "Too many dice roll attempts. Please try again later."

    def test_path_traversal_error_hides_path(self):
        error = PathTraversalError("../../etc/passwd")

        assert error.path == "../../etc/passwd"
        assert "passwd" not in str(error)
        assert error.code == ChatErrorCode.PATH_TRAVERSAL


class TestInvalidMessageContentError:
    def test_default_message(self):
        error = InvalidMessageContentError()

        assert error.message == "Invalid message content"
        assert error.code == ChatErrorCode.INVALID_CONTENT
