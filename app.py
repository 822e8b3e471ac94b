# app.py — Echo Score service
# - Echo Score calculation, history and progress
# - Adaptive challenge of the day
# - Falls back to the last known score when a calculation fails

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query

import db
from engines.config import EchoScoreConfig
from engines.echo_score import EchoScoreService
from engines.errors import NoEligibleChallengeError
from env_validation import get_env_bool
from schemas import (
    Challenge,
    ChallengeSubmission,
    DailyChallengeResponse,
    EchoScoreResponse,
    ReadingEvent,
    SessionRecord,
    UserChallengeStats,
)

logger = logging.getLogger(__name__)

ECHO_SERVICE: Optional[EchoScoreService] = None


def _service() -> EchoScoreService:
    """Return the running service, building it from the environment on first use."""
    global ECHO_SERVICE
    if ECHO_SERVICE is None:
        ECHO_SERVICE = EchoScoreService(EchoScoreConfig.from_env(), repository=db)
    return ECHO_SERVICE


@asynccontextmanager
async def _lifespan(_: FastAPI):
    global ECHO_SERVICE
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        ECHO_SERVICE = EchoScoreService(EchoScoreConfig.from_env(), repository=db)
        config = ECHO_SERVICE.config
        logger.info(
            "Echo Score config: window=%sd streak_cap=%sd weights=%s levels=%s",
            config.window_days,
            config.streak_cap_days,
            config.weights.as_dict(),
            ", ".join(config.difficulty_levels),
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Echo Score", version="1.0.0", lifespan=_lifespan)


@app.get("/")
def root() -> Dict[str, Any]:
    return {"service": "echo-score", "status": "ok"}


# ---------------------------------------------------------------------------
# Activity ingestion
# ---------------------------------------------------------------------------


@app.post("/reading-events")
def post_reading_event(event: ReadingEvent) -> Dict[str, Any]:
    event_id = db.add_reading_event(event)
    return {"id": event_id}


@app.post("/sessions")
def post_session(session: SessionRecord) -> Dict[str, Any]:
    if session.session_end is not None and session.session_end < session.session_start:
        raise HTTPException(status_code=400, detail="session_end precedes session_start")
    session_id = db.add_session(session)
    return {"id": session_id}


@app.post("/submissions", response_model=UserChallengeStats)
def post_submission(submission: ChallengeSubmission) -> UserChallengeStats:
    stats = _service().record_submission(submission)
    if get_env_bool("ECHO_SCORE_ON_SUBMIT"):
        _calculate_or_fallback(submission.user_id)
    return stats


@app.post("/challenges", response_model=Challenge)
def post_challenge(challenge: Challenge) -> Challenge:
    levels = _service().config.difficulty_levels
    if challenge.difficulty not in levels:
        raise HTTPException(
            status_code=400,
            detail=f"difficulty must be one of: {', '.join(levels)}",
        )
    db.upsert_challenge(challenge)
    return challenge


# ---------------------------------------------------------------------------
# Echo Score
# ---------------------------------------------------------------------------


def _calculate_or_fallback(user_id: str) -> EchoScoreResponse:
    service = _service()
    try:
        row = service.calculate_and_save(user_id, reference_medians=service.reference_medians())
    except Exception as exc:
        logger.error("Echo Score calculation failed for %s: %s", user_id, exc, exc_info=True)
        row = service.latest_or_default(user_id)
    return EchoScoreResponse.from_history(row)


@app.post("/echo-score/{user_id}/calculate", response_model=EchoScoreResponse)
def calculate_echo_score(user_id: str) -> EchoScoreResponse:
    return _calculate_or_fallback(user_id)


@app.get("/echo-score/{user_id}", response_model=EchoScoreResponse)
def get_echo_score(user_id: str) -> EchoScoreResponse:
    return EchoScoreResponse.from_history(_service().latest_or_default(user_id))


@app.get("/echo-score/{user_id}/history", response_model=List[EchoScoreResponse])
def get_echo_score_history(
    user_id: str,
    days: int = Query(30, ge=1, le=365),
) -> List[EchoScoreResponse]:
    return [EchoScoreResponse.from_history(row) for row in _service().history(user_id, days)]


@app.get("/echo-score/{user_id}/progress")
def get_echo_score_progress(
    user_id: str,
    period: Literal["daily", "weekly"] = "daily",
) -> Dict[str, Any]:
    return _service().progress(user_id, period)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@app.get("/challenges/daily/{user_id}", response_model=DailyChallengeResponse)
def get_daily_challenge(user_id: str) -> DailyChallengeResponse:
    try:
        selection = _service().select_daily_challenge(user_id)
    except NoEligibleChallengeError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return DailyChallengeResponse.from_selection(selection)


@app.get("/challenges/stats/{user_id}")
def get_challenge_stats(user_id: str) -> Dict[str, Any]:
    return _service().challenge_overview(user_id)
