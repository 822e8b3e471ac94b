import json
import os
import sqlite3
import statistics
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from db_pool import SQLiteConnectionPool
from engines.errors import ConcurrentSelectionRaceError
from schemas import (
    Challenge,
    ChallengeSubmission,
    DailyChallengeSelection,
    EchoScoreHistory,
    PerformanceBucket,
    ReadingEvent,
    SessionRecord,
    UserChallengeStats,
)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _insert(sql: str, params: Iterable = ()) -> int:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return int(cur.lastrowid)


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS reading_events (
              id                   INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id              TEXT NOT NULL,
              content_id           TEXT NOT NULL,
              source_bias_category TEXT NOT NULL,
              source               TEXT,
              topics               TEXT NOT NULL DEFAULT '[]',
              time_spent           REAL NOT NULL DEFAULT 0,
              completion_pct       REAL NOT NULL DEFAULT 0,
              timestamp            TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_reading_events_user_ts ON reading_events(user_id, timestamp);

            CREATE TABLE IF NOT EXISTS challenge_submissions (
              id                 INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id            TEXT NOT NULL,
              challenge_id       TEXT NOT NULL,
              challenge_type     TEXT NOT NULL,
              difficulty         TEXT NOT NULL,
              is_correct         INTEGER NOT NULL,
              time_spent_seconds REAL NOT NULL,
              xp_earned          INTEGER NOT NULL DEFAULT 0,
              answer             TEXT,
              created_at         TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_submissions_user_ts ON challenge_submissions(user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_submissions_type ON challenge_submissions(challenge_type, created_at);

            CREATE TABLE IF NOT EXISTS user_sessions (
              id            INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id       TEXT NOT NULL,
              session_start TEXT NOT NULL,
              session_end   TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_user_start ON user_sessions(user_id, session_start);

            CREATE TABLE IF NOT EXISTS challenges (
              id                     TEXT PRIMARY KEY,
              challenge_type         TEXT NOT NULL,
              difficulty             TEXT NOT NULL,
              title                  TEXT NOT NULL DEFAULT '',
              is_active              INTEGER NOT NULL DEFAULT 1,
              estimated_time_minutes INTEGER NOT NULL DEFAULT 5,
              xp_reward              INTEGER NOT NULL DEFAULT 10,
              updated_at             TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS user_challenge_stats (
              user_id                TEXT PRIMARY KEY,
              total_completed        INTEGER NOT NULL DEFAULT 0,
              total_correct          INTEGER NOT NULL DEFAULT 0,
              current_streak         INTEGER NOT NULL DEFAULT 0,
              longest_streak         INTEGER NOT NULL DEFAULT 0,
              last_challenge_date    TEXT,
              difficulty_performance TEXT NOT NULL DEFAULT '{}',
              type_performance       TEXT NOT NULL DEFAULT '{}',
              updated_at             TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS echo_score_history (
              id                  INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id             TEXT NOT NULL,
              score_date          TEXT NOT NULL,
              total_score         REAL NOT NULL CHECK (total_score BETWEEN 0 AND 100),
              diversity_score     REAL NOT NULL,
              accuracy_score      REAL NOT NULL,
              switch_speed_score  REAL NOT NULL,
              consistency_score   REAL NOT NULL,
              improvement_score   REAL NOT NULL,
              calculation_details TEXT NOT NULL DEFAULT '{}',
              created_at          TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_echo_history_user_date ON echo_score_history(user_id, score_date);

            CREATE TABLE IF NOT EXISTS daily_challenge_selections (
              id                    INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id               TEXT NOT NULL,
              selected_challenge_id TEXT NOT NULL,
              selection_date        TEXT NOT NULL,
              selection_reason      TEXT NOT NULL,
              difficulty_adjustment INTEGER NOT NULL DEFAULT 0 CHECK (difficulty_adjustment BETWEEN -1 AND 1),
              challenge_type        TEXT,
              difficulty            TEXT,
              created_at            TEXT NOT NULL,
              UNIQUE (user_id, selection_date)
            );
            """
        )
        con.commit()


# -------------- encoding helpers --------------
def _ts(value: datetime) -> str:
    """UTC, fixed-width ISO 8601 so stored timestamps compare as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_timestamp(value: Optional[str]) -> datetime:
    text = str(value or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode_json_field(value: Optional[str], default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return default
    return json.loads(value)


# -------------- activity records --------------
def add_reading_event(event: ReadingEvent) -> int:
    return _insert(
        """
        INSERT INTO reading_events
          (user_id, content_id, source_bias_category, source, topics, time_spent, completion_pct, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event.user_id,
            event.content_id,
            event.source_bias_category.value,
            event.source,
            json.dumps(list(event.topics)),
            float(event.time_spent),
            float(event.completion_pct),
            _ts(event.timestamp),
        ),
    )


def add_submission(submission: ChallengeSubmission) -> int:
    answer = submission.answer.model_dump(mode="json") if submission.answer is not None else None
    return _insert(
        """
        INSERT INTO challenge_submissions
          (user_id, challenge_id, challenge_type, difficulty, is_correct,
           time_spent_seconds, xp_earned, answer, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            submission.user_id,
            submission.challenge_id,
            submission.challenge_type.value,
            submission.difficulty,
            1 if submission.is_correct else 0,
            float(submission.time_spent_seconds),
            int(submission.xp_earned),
            json.dumps(answer) if answer is not None else None,
            _ts(submission.created_at),
        ),
    )


def add_session(session: SessionRecord) -> int:
    return _insert(
        "INSERT INTO user_sessions (user_id, session_start, session_end) VALUES (?, ?, ?)",
        (
            session.user_id,
            _ts(session.session_start),
            _ts(session.session_end) if session.session_end is not None else None,
        ),
    )


def list_reading_events(user_id: str, since: datetime) -> list[ReadingEvent]:
    rows = _query(
        """
        SELECT * FROM reading_events
        WHERE user_id = ? AND timestamp >= ?
        ORDER BY timestamp ASC, id ASC
        """,
        (user_id, _ts(since)),
    )
    return [
        ReadingEvent(
            user_id=row["user_id"],
            content_id=row["content_id"],
            source_bias_category=row["source_bias_category"],
            source=row["source"],
            topics=_decode_json_field(row["topics"], []),
            time_spent=row["time_spent"],
            completion_pct=row["completion_pct"],
            timestamp=_parse_timestamp(row["timestamp"]),
        )
        for row in rows
    ]


def _row_to_submission(row: sqlite3.Row) -> ChallengeSubmission:
    return ChallengeSubmission(
        user_id=row["user_id"],
        challenge_id=row["challenge_id"],
        challenge_type=row["challenge_type"],
        difficulty=row["difficulty"],
        is_correct=bool(row["is_correct"]),
        time_spent_seconds=row["time_spent_seconds"],
        xp_earned=row["xp_earned"],
        answer=_decode_json_field(row["answer"], None),
        created_at=_parse_timestamp(row["created_at"]),
    )


def list_submissions(user_id: str, since: Optional[datetime] = None) -> list[ChallengeSubmission]:
    if since is None:
        rows = _query(
            "SELECT * FROM challenge_submissions WHERE user_id = ? ORDER BY created_at ASC, id ASC",
            (user_id,),
        )
    else:
        rows = _query(
            """
            SELECT * FROM challenge_submissions
            WHERE user_id = ? AND created_at >= ?
            ORDER BY created_at ASC, id ASC
            """,
            (user_id, _ts(since)),
        )
    return [_row_to_submission(row) for row in rows]


def list_sessions(user_id: str, since: datetime) -> list[SessionRecord]:
    rows = _query(
        """
        SELECT * FROM user_sessions
        WHERE user_id = ? AND session_start >= ?
        ORDER BY session_start ASC, id ASC
        """,
        (user_id, _ts(since)),
    )
    return [
        SessionRecord(
            user_id=row["user_id"],
            session_start=_parse_timestamp(row["session_start"]),
            session_end=_parse_timestamp(row["session_end"]) if row["session_end"] else None,
        )
        for row in rows
    ]


def list_active_user_ids(since: datetime) -> list[str]:
    """Users with a reading event or a submission at or after ``since``."""
    rows = _query(
        """
        SELECT user_id FROM reading_events WHERE timestamp >= ?
        UNION
        SELECT user_id FROM challenge_submissions WHERE created_at >= ?
        ORDER BY user_id
        """,
        (_ts(since), _ts(since)),
    )
    return [row["user_id"] for row in rows]


def reference_median_times(since: datetime) -> Dict[str, float]:
    """Cross-user median response time per challenge type since ``since``."""
    rows = _query(
        """
        SELECT challenge_type, time_spent_seconds FROM challenge_submissions
        WHERE created_at >= ?
        """,
        (_ts(since),),
    )
    times: Dict[str, List[float]] = defaultdict(list)
    for row in rows:
        times[row["challenge_type"]].append(float(row["time_spent_seconds"]))
    return {challenge_type: statistics.median(values) for challenge_type, values in times.items()}


# -------------- challenge catalogue --------------
def upsert_challenge(challenge: Challenge) -> None:
    _exec(
        """
        INSERT INTO challenges
          (id, challenge_type, difficulty, title, is_active, estimated_time_minutes, xp_reward, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(id) DO UPDATE SET
            challenge_type = excluded.challenge_type,
            difficulty = excluded.difficulty,
            title = excluded.title,
            is_active = excluded.is_active,
            estimated_time_minutes = excluded.estimated_time_minutes,
            xp_reward = excluded.xp_reward,
            updated_at = CURRENT_TIMESTAMP
        """,
        (
            challenge.id,
            challenge.challenge_type.value,
            challenge.difficulty,
            challenge.title,
            1 if challenge.is_active else 0,
            challenge.estimated_time_minutes,
            challenge.xp_reward,
        ),
    )


def list_active_challenges() -> list[Challenge]:
    rows = _query("SELECT * FROM challenges WHERE is_active = 1 ORDER BY id")
    return [
        Challenge(
            id=row["id"],
            challenge_type=row["challenge_type"],
            difficulty=row["difficulty"],
            title=row["title"],
            is_active=bool(row["is_active"]),
            estimated_time_minutes=row["estimated_time_minutes"],
            xp_reward=row["xp_reward"],
        )
        for row in rows
    ]


# -------------- per-user stats --------------
def get_user_stats(user_id: str) -> Optional[UserChallengeStats]:
    rows = _query("SELECT * FROM user_challenge_stats WHERE user_id = ?", (user_id,))
    if not rows:
        return None
    row = rows[0]
    return UserChallengeStats(
        user_id=row["user_id"],
        total_completed=row["total_completed"],
        total_correct=row["total_correct"],
        current_streak=row["current_streak"],
        longest_streak=row["longest_streak"],
        last_challenge_date=date.fromisoformat(row["last_challenge_date"]) if row["last_challenge_date"] else None,
        difficulty_performance={
            key: PerformanceBucket(**value)
            for key, value in _decode_json_field(row["difficulty_performance"], {}).items()
        },
        type_performance={
            key: PerformanceBucket(**value) for key, value in _decode_json_field(row["type_performance"], {}).items()
        },
    )


def save_user_stats(stats: UserChallengeStats) -> None:
    """Upsert the full stats snapshot for ``stats.user_id``."""
    _exec(
        """
        INSERT INTO user_challenge_stats
          (user_id, total_completed, total_correct, current_streak, longest_streak,
           last_challenge_date, difficulty_performance, type_performance, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(user_id) DO UPDATE SET
            total_completed = excluded.total_completed,
            total_correct = excluded.total_correct,
            current_streak = excluded.current_streak,
            longest_streak = excluded.longest_streak,
            last_challenge_date = excluded.last_challenge_date,
            difficulty_performance = excluded.difficulty_performance,
            type_performance = excluded.type_performance,
            updated_at = CURRENT_TIMESTAMP
        """,
        (
            stats.user_id,
            stats.total_completed,
            stats.total_correct,
            stats.current_streak,
            stats.longest_streak,
            stats.last_challenge_date.isoformat() if stats.last_challenge_date else None,
            json.dumps({k: v.model_dump() for k, v in stats.difficulty_performance.items()}),
            json.dumps({k: v.model_dump() for k, v in stats.type_performance.items()}),
        ),
    )


# -------------- echo score history --------------
def _row_to_history(row: sqlite3.Row) -> EchoScoreHistory:
    return EchoScoreHistory(
        id=row["id"],
        user_id=row["user_id"],
        score_date=date.fromisoformat(row["score_date"]),
        total_score=row["total_score"],
        diversity_score=row["diversity_score"],
        accuracy_score=row["accuracy_score"],
        switch_speed_score=row["switch_speed_score"],
        consistency_score=row["consistency_score"],
        improvement_score=row["improvement_score"],
        calculation_details=_decode_json_field(row["calculation_details"], {}),
        created_at=_parse_timestamp(row["created_at"]),
    )


def append_score_history(row: EchoScoreHistory) -> EchoScoreHistory:
    """Insert ``row`` as a new history entry; existing rows are never updated."""
    row_id = _insert(
        """
        INSERT INTO echo_score_history
          (user_id, score_date, total_score, diversity_score, accuracy_score,
           switch_speed_score, consistency_score, improvement_score, calculation_details, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            row.user_id,
            row.score_date.isoformat(),
            row.total_score,
            row.diversity_score,
            row.accuracy_score,
            row.switch_speed_score,
            row.consistency_score,
            row.improvement_score,
            json.dumps(row.calculation_details, default=str),
            _ts(row.created_at),
        ),
    )
    return row.model_copy(update={"id": row_id})


def list_score_history(
    user_id: str,
    since: Optional[date] = None,
    limit: Optional[int] = None,
    until: Optional[date] = None,
) -> list[EchoScoreHistory]:
    """History rows for ``user_id`` dated between ``since`` and ``until``, newest first."""
    sql = "SELECT * FROM echo_score_history WHERE user_id = ?"
    params: list[Any] = [user_id]
    if since is not None:
        sql += " AND score_date >= ?"
        params.append(since.isoformat())
    if until is not None:
        sql += " AND score_date <= ?"
        params.append(until.isoformat())
    sql += " ORDER BY score_date DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    return [_row_to_history(row) for row in _query(sql, params)]


def get_latest_score(user_id: str) -> Optional[EchoScoreHistory]:
    rows = list_score_history(user_id, limit=1)
    return rows[0] if rows else None


# -------------- daily challenge selections --------------
def _row_to_selection(row: sqlite3.Row) -> DailyChallengeSelection:
    return DailyChallengeSelection(
        id=row["id"],
        user_id=row["user_id"],
        selected_challenge_id=row["selected_challenge_id"],
        selection_date=date.fromisoformat(row["selection_date"]),
        selection_reason=row["selection_reason"],
        difficulty_adjustment=row["difficulty_adjustment"],
        challenge_type=row["challenge_type"],
        difficulty=row["difficulty"],
        created_at=_parse_timestamp(row["created_at"]),
    )


def get_daily_selection(user_id: str, selection_date: date) -> Optional[DailyChallengeSelection]:
    rows = _query(
        "SELECT * FROM daily_challenge_selections WHERE user_id = ? AND selection_date = ?",
        (user_id, selection_date.isoformat()),
    )
    return _row_to_selection(rows[0]) if rows else None


def insert_daily_selection(selection: DailyChallengeSelection) -> DailyChallengeSelection:
    """Insert if absent; raises ConcurrentSelectionRaceError when the day is taken."""
    try:
        row_id = _insert(
            """
            INSERT INTO daily_challenge_selections
              (user_id, selected_challenge_id, selection_date, selection_reason,
               difficulty_adjustment, challenge_type, difficulty, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                selection.user_id,
                selection.selected_challenge_id,
                selection.selection_date.isoformat(),
                selection.selection_reason,
                selection.difficulty_adjustment,
                selection.challenge_type.value if selection.challenge_type else None,
                selection.difficulty,
                _ts(selection.created_at),
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise ConcurrentSelectionRaceError(selection.user_id, selection.selection_date, exc) from exc
    return selection.model_copy(update={"id": row_id})


def list_recent_selections(user_id: str, before: date, limit: int = 3) -> list[DailyChallengeSelection]:
    """Selections strictly before ``before``, newest first."""
    rows = _query(
        """
        SELECT * FROM daily_challenge_selections
        WHERE user_id = ? AND selection_date < ?
        ORDER BY selection_date DESC, id DESC
        LIMIT ?
        """,
        (user_id, before.isoformat(), int(limit)),
    )
    return [_row_to_selection(row) for row in rows]
