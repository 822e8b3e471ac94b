"""Environment variable validation and management."""

import os
import logging
from typing import Callable, Dict

from engines.config import ScoreWeights

logger = logging.getLogger(__name__)


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def _positive_int(value: str) -> None:
    if int(value) <= 0:
        raise ValueError("must be a positive integer")


def _positive_float(value: str) -> None:
    if float(value) <= 0:
        raise ValueError("must be a positive number")


def _weights(value: str) -> None:
    ScoreWeights.from_value(value)


def _levels(value: str) -> None:
    levels = [item.strip() for item in value.split(",") if item.strip()]
    if not levels:
        raise ValueError("must list at least one level")
    if len(set(levels)) != len(levels):
        raise ValueError("levels must be unique")


_VALIDATORS: Dict[str, Callable[[str], None]] = {
    "ECHO_WINDOW_DAYS": _positive_int,
    "ECHO_STREAK_CAP_DAYS": _positive_int,
    "ECHO_MAX_WORKERS": _positive_int,
    "ECHO_IMPROVEMENT_K": _positive_float,
    "ECHO_WEIGHTS": _weights,
    "ECHO_DIFFICULTY_LEVELS": _levels,
}


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Nothing is strictly required; every setting has a default.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "ECHO_WINDOW_DAYS": "Scoring window in days (default 30)",
        "ECHO_STREAK_CAP_DAYS": "Streak length that earns full streak credit (default 30)",
        "ECHO_WEIGHTS": "Five sub-score weights summing to 1.0",
        "ECHO_DIFFICULTY_LEVELS": "Comma-separated difficulty ladder, easiest first",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    for var, validator in _VALIDATORS.items():
        value = os.getenv(var)
        if not value:
            continue
        try:
            validator(value)
        except (TypeError, ValueError) as exc:
            raise EnvironmentError(f"Invalid value for {var}: {value!r} ({exc})") from exc

    levels_file = os.getenv("ECHO_DIFFICULTY_LEVELS_FILE")
    if levels_file and not os.path.isfile(levels_file):
        raise EnvironmentError(f"ECHO_DIFFICULTY_LEVELS_FILE does not exist: {levels_file}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.info("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}
