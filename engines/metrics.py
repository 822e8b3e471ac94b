"""Extraction of a user's raw activity for one scoring window."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Protocol, Sequence

from engines.config import EchoScoreConfig
from engines.errors import InsufficientDataError
from schemas import ChallengeSubmission, ReadingEvent, SessionRecord

logger = logging.getLogger(__name__)


class ActivityRepository(Protocol):
    """Read side of the record store used by :class:`MetricExtractor`.

    The ``db`` module implements it with plain functions, so the module itself
    can be passed wherever a repository is expected.
    """

    def list_reading_events(self, user_id: str, since: datetime) -> Sequence[ReadingEvent]: ...

    def list_submissions(self, user_id: str, since: datetime) -> Sequence[ChallengeSubmission]: ...

    def list_sessions(self, user_id: str, since: datetime) -> Sequence[SessionRecord]: ...


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class ActivityWindow:
    """Chronologically ordered activity for ``user_id`` in ``[start, end]``."""

    user_id: str
    start: datetime
    end: datetime
    window_days: int
    reading_events: List[ReadingEvent] = field(default_factory=list)
    submissions: List[ChallengeSubmission] = field(default_factory=list)
    sessions: List[SessionRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.reading_events and not self.submissions

    def summary(self) -> dict[str, Any]:
        return {
            "window_days": self.window_days,
            "window_start": self.start.isoformat(),
            "window_end": self.end.isoformat(),
            "reading_events": len(self.reading_events),
            "submissions": len(self.submissions),
            "sessions": len(self.sessions),
        }


class MetricExtractor:
    """Load reading events, submissions and sessions for a trailing window."""

    def __init__(self, config: EchoScoreConfig, repository: Optional[ActivityRepository] = None) -> None:
        if repository is None:
            import db as repository  # type: ignore[no-redef]
        self.config = config
        self.repository = repository

    def extract(
        self,
        user_id: str,
        window_days: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> ActivityWindow:
        """Return the user's activity in the ``window_days`` preceding ``as_of``.

        Raises :class:`InsufficientDataError` when the window holds neither a
        reading event nor a submission.
        """

        days = int(window_days or self.config.window_days)
        if days <= 0:
            raise ValueError("window_days must be positive")
        end = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)
        start = end - timedelta(days=days)

        reading = self._clip(self.repository.list_reading_events(user_id, start), "timestamp", start, end)
        submissions = self._clip(self.repository.list_submissions(user_id, start), "created_at", start, end)
        sessions = self._clip(self.repository.list_sessions(user_id, start), "session_start", start, end)

        window = ActivityWindow(
            user_id=user_id,
            start=start,
            end=end,
            window_days=days,
            reading_events=reading,
            submissions=submissions,
            sessions=sessions,
        )
        if window.is_empty:
            raise InsufficientDataError(user_id, days)
        logger.debug(
            "Extracted %d reading events, %d submissions, %d sessions for %s",
            len(reading),
            len(submissions),
            len(sessions),
            user_id,
        )
        return window

    @staticmethod
    def _clip(records: Sequence[Any], attr: str, start: datetime, end: datetime) -> List[Any]:
        kept = [record for record in records if start <= as_utc(getattr(record, attr)) <= end]
        kept.sort(key=lambda record: as_utc(getattr(record, attr)))
        return kept
