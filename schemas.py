"""Pydantic schemas for activity records, computed rows and API responses."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "BiasCategory",
    "ChallengeType",
    "SelectionReason",
    "ReadingEvent",
    "BiasSwapAnswer",
    "LogicPuzzleAnswer",
    "DataLiteracyAnswer",
    "CounterArgumentAnswer",
    "SynthesisAnswer",
    "EthicalDilemmaAnswer",
    "SubmissionAnswer",
    "ChallengeSubmission",
    "SessionRecord",
    "Challenge",
    "PerformanceBucket",
    "UserChallengeStats",
    "EchoScoreHistory",
    "DailyChallengeSelection",
    "EchoScoreResponse",
    "DailyChallengeResponse",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BiasCategory(str, Enum):
    """Seven-bucket ordinal media bias scale, left to right."""

    FAR_LEFT = "far_left"
    LEFT = "left"
    LEFT_CENTER = "left_center"
    CENTER = "center"
    RIGHT_CENTER = "right_center"
    RIGHT = "right"
    FAR_RIGHT = "far_right"

    @property
    def position(self) -> int:
        """Ordinal position on the -3..+3 scale."""
        return list(BiasCategory).index(self) - 3


class ChallengeType(str, Enum):
    BIAS_SWAP = "bias_swap"
    LOGIC_PUZZLE = "logic_puzzle"
    DATA_LITERACY = "data_literacy"
    COUNTER_ARGUMENT = "counter_argument"
    SYNTHESIS = "synthesis"
    ETHICAL_DILEMMA = "ethical_dilemma"


SelectionReason = Literal["streak_recovery", "weak_skill_area", "adaptive_difficulty", "random"]


class ReadingEvent(BaseModel):
    """One article view; immutable and append-only."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    content_id: str
    source_bias_category: BiasCategory
    topics: List[str] = Field(default_factory=list)
    time_spent: float = Field(default=0.0, ge=0.0, description="Seconds spent on the article.")
    completion_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    timestamp: datetime
    source: Optional[str] = Field(
        default=None,
        description="Identifier of the publishing outlet, used to count distinct sources read.",
    )


# ---------------------------------------------------------------------------
# Submission answers: one fixed schema per challenge type
# ---------------------------------------------------------------------------


class _AnswerBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BiasSwapAnswer(_AnswerBase):
    type: Literal["bias_swap"] = "bias_swap"
    selected_article_ids: List[str] = Field(default_factory=list)
    identified_bias: Optional[BiasCategory] = None


class LogicPuzzleAnswer(_AnswerBase):
    type: Literal["logic_puzzle"] = "logic_puzzle"
    selected_option_id: str


class DataLiteracyAnswer(_AnswerBase):
    type: Literal["data_literacy"] = "data_literacy"
    selected_option_id: str
    flagged_elements: List[str] = Field(default_factory=list)


class CounterArgumentAnswer(_AnswerBase):
    type: Literal["counter_argument"] = "counter_argument"
    text: str = Field(min_length=1)


class SynthesisAnswer(_AnswerBase):
    type: Literal["synthesis"] = "synthesis"
    text: str = Field(min_length=1)
    cited_sources: List[str] = Field(default_factory=list)


class EthicalDilemmaAnswer(_AnswerBase):
    type: Literal["ethical_dilemma"] = "ethical_dilemma"
    choice: str
    justification: Optional[str] = None
    stakeholders_considered: List[str] = Field(default_factory=list)


SubmissionAnswer = Annotated[
    Union[
        BiasSwapAnswer,
        LogicPuzzleAnswer,
        DataLiteracyAnswer,
        CounterArgumentAnswer,
        SynthesisAnswer,
        EthicalDilemmaAnswer,
    ],
    Field(discriminator="type"),
]


class ChallengeSubmission(BaseModel):
    """One challenge attempt; created once and never edited."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    challenge_id: str
    challenge_type: ChallengeType
    difficulty: str
    is_correct: bool
    time_spent_seconds: float = Field(ge=0.0)
    xp_earned: int = Field(default=0, ge=0)
    created_at: datetime
    answer: Optional[SubmissionAnswer] = None

    @model_validator(mode="after")
    def _answer_matches_type(self) -> "ChallengeSubmission":
        if self.answer is not None and self.answer.type != self.challenge_type.value:
            raise ValueError(
                f"answer payload of type '{self.answer.type}' does not match "
                f"challenge_type '{self.challenge_type.value}'"
            )
        return self


class SessionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    session_start: datetime
    session_end: Optional[datetime] = None


class Challenge(BaseModel):
    """Catalogue entry the daily selector can choose from."""

    model_config = ConfigDict(frozen=True)

    id: str
    challenge_type: ChallengeType
    difficulty: str
    title: str = ""
    is_active: bool = True
    estimated_time_minutes: int = Field(default=5, ge=0)
    xp_reward: int = Field(default=10, ge=0)


class PerformanceBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    completed: int = Field(default=0, ge=0)
    correct: int = Field(default=0, ge=0)
    avg_time: float = Field(default=0.0, ge=0.0)

    @property
    def accuracy(self) -> float:
        return self.correct / self.completed if self.completed else 0.0


class UserChallengeStats(BaseModel):
    """Per-user rollup maintained by :func:`engines.challenge_stats.apply_submission`."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    total_completed: int = Field(default=0, ge=0)
    total_correct: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_challenge_date: Optional[date] = None
    difficulty_performance: Dict[str, PerformanceBucket] = Field(default_factory=dict)
    type_performance: Dict[str, PerformanceBucket] = Field(default_factory=dict)


_Score = Annotated[float, Field(ge=0.0, le=100.0)]


class EchoScoreHistory(BaseModel):
    """One scoring run; append-only, corrections create a new row."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    score_date: date
    total_score: _Score
    diversity_score: _Score
    accuracy_score: _Score
    switch_speed_score: _Score
    consistency_score: _Score
    improvement_score: _Score
    calculation_details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class DailyChallengeSelection(BaseModel):
    """The challenge of the day; unique per (user_id, selection_date)."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    selected_challenge_id: str
    selection_date: date
    selection_reason: SelectionReason
    difficulty_adjustment: int = Field(default=0, ge=-1, le=1)
    challenge_type: Optional[ChallengeType] = None
    difficulty: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EchoScoreResponse(_CamelModel):
    """Serialized Echo Score: camelCase keys, ISO 8601 dates, numeric scores."""

    id: Optional[int] = None
    user_id: str
    echo_score: float
    total_score: float
    diversity_score: float
    accuracy_score: float
    switch_speed_score: float
    consistency_score: float
    improvement_score: float
    calculation_details: Dict[str, Any] = Field(default_factory=dict)
    score_date: date
    created_at: datetime

    @classmethod
    def from_history(cls, row: EchoScoreHistory) -> "EchoScoreResponse":
        return cls(
            id=row.id,
            user_id=row.user_id,
            echo_score=float(row.total_score),
            total_score=float(row.total_score),
            diversity_score=float(row.diversity_score),
            accuracy_score=float(row.accuracy_score),
            switch_speed_score=float(row.switch_speed_score),
            consistency_score=float(row.consistency_score),
            improvement_score=float(row.improvement_score),
            calculation_details=dict(row.calculation_details),
            score_date=row.score_date,
            created_at=row.created_at,
        )


class DailyChallengeResponse(_CamelModel):
    user_id: str
    challenge_id: str
    challenge_type: Optional[ChallengeType] = None
    difficulty: Optional[str] = None
    selection_date: date
    selection_reason: SelectionReason
    difficulty_adjustment: int

    @classmethod
    def from_selection(cls, selection: DailyChallengeSelection) -> "DailyChallengeResponse":
        return cls(
            user_id=selection.user_id,
            challenge_id=selection.selected_challenge_id,
            challenge_type=selection.challenge_type,
            difficulty=selection.difficulty,
            selection_date=selection.selection_date,
            selection_reason=selection.selection_reason,
            difficulty_adjustment=selection.difficulty_adjustment,
        )
