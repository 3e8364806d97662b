"""
Authentication and session errors.

Every error carries a ``user_message`` that is safe to show to the person at
the keyboard. The exception text itself may contain detail meant for logs.
"""

from datetime import timedelta
from typing import List, Optional


class AuthError(Exception):
    """
    Base class for all engine errors.

    Attributes:
        user_message: Message safe to display to the user
    """

    user_message = "Authentication failed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class InvalidCredentials(AuthError):
    """Identifier or secret was wrong. Deliberately says nothing about which."""

    user_message = "Invalid email or password."


class AccountLocked(AuthError):
    """
    Raised when the account is temporarily locked after failed attempts.

    Attributes:
        remaining: Time left until the lockout lifts
    """

    def __init__(self, remaining: timedelta):
        self.remaining = remaining
        super().__init__(f"Account locked for another {remaining}")

    @property
    def remaining_minutes(self) -> int:
        """Lockout rounded up to whole minutes, as shown to the user."""
        seconds = max(0.0, self.remaining.total_seconds())
        return int(-(-seconds // 60))

    @property
    def user_message(self) -> str:
        return (
            "Too many failed attempts. "
            f"Try again in {self.remaining_minutes} minutes."
        )


class ConflictError(AuthError):
    """
    Raised when login is rejected because the user already has live sessions.

    Attributes:
        existing_sessions: IDs of the sessions that are still live
    """

    user_message = "You are already signed in elsewhere."

    def __init__(self, existing_sessions: List[str]):
        self.existing_sessions = list(existing_sessions)
        super().__init__(
            f"Login rejected: {len(self.existing_sessions)} live session(s) exist"
        )


class StoreUnavailable(AuthError):
    """The session store could not be reached or timed out. Retryable."""

    user_message = "The service is temporarily unavailable. Please try again."


class SessionNotFound(AuthError):
    """
    Raised when an operation needs a session that does not exist.

    Attributes:
        session_id: The session that was looked up
    """

    user_message = "Your session is no longer valid. Please sign in again."

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id[:8]}")


class ConfigurationError(AuthError):
    """Invalid catalog or settings. Raised at startup only, never recovered."""

    user_message = "The service is misconfigured."
