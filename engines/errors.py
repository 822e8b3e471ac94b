"""Error taxonomy for Echo Score computation and challenge selection."""

from __future__ import annotations

from datetime import date
from typing import Optional


class EchoScoreError(Exception):
    """Base class for every error raised by the scoring core."""


class InsufficientDataError(EchoScoreError):
    """Raised when a user has no activity in the scoring window.

    Callers treat this as a valid low-confidence state and substitute the
    neutral defaults instead of failing.
    """

    def __init__(self, user_id: str, window_days: int) -> None:
        super().__init__(f"no activity for user {user_id} in the last {window_days} days")
        self.user_id = user_id
        self.window_days = window_days


class InvalidInputError(EchoScoreError):
    """Raised when an upstream scorer produced a sub-score outside [0, 100]."""

    def __init__(self, field: str, value: float) -> None:
        super().__init__(f"{field} must be within [0, 100], got {value!r}")
        self.field = field
        self.value = value


class NoEligibleChallengeError(EchoScoreError):
    """Raised when every active challenge was attempted recently."""

    def __init__(self, user_id: str, repeat_window_days: int) -> None:
        super().__init__(
            f"no active challenge left for user {user_id} outside the "
            f"{repeat_window_days}-day repeat window"
        )
        self.user_id = user_id
        self.repeat_window_days = repeat_window_days


class ConcurrentSelectionRaceError(EchoScoreError):
    """Raised by a store when a daily selection already exists for the day."""

    def __init__(self, user_id: str, selection_date: date, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"daily selection for {user_id} on {selection_date.isoformat()} already exists")
        self.user_id = user_id
        self.selection_date = selection_date
        self.cause = cause
