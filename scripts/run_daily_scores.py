"""Nightly Echo Score batch: score every recently active user and report the outcome."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from engines.config import EchoScoreConfig
from engines.echo_score import EchoScoreService

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Score date as YYYY-MM-DD; scores are computed as of the end of that day (default: now)",
    )
    parser.add_argument(
        "--window-days",
        type=int,
        default=None,
        help="Override the scoring window (default: ECHO_WINDOW_DAYS or 30)",
    )
    parser.add_argument(
        "--user",
        action="append",
        dest="users",
        default=None,
        help="Score only this user id; may be repeated",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Number of users scored in parallel (default: ECHO_MAX_WORKERS or 10)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON summary",
    )
    return parser


def _as_of(day: date | None) -> datetime:
    if day is None:
        return datetime.now(timezone.utc)
    return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)


def _write_output(report: dict, output_path: str | None) -> None:
    payload = json.dumps(report, indent=2, ensure_ascii=False)
    if output_path:
        Path(output_path).write_text(payload + "\n", encoding="utf-8")
    print(payload)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.window_days is not None and args.window_days <= 0:
        parser.error("--window-days must be positive")
    if args.max_workers is not None and args.max_workers <= 0:
        parser.error("--max-workers must be positive")

    config = EchoScoreConfig.from_env()
    if args.window_days is not None:
        config = EchoScoreConfig.from_options({"windowDays": args.window_days}, base=config)

    db.init()
    service = EchoScoreService(config, repository=db)
    as_of = _as_of(args.date)
    users = args.users or db.list_active_user_ids(as_of - timedelta(days=config.window_days))
    medians = service.reference_medians(as_of)

    result = service.calculate_daily_scores(
        users,
        as_of=as_of,
        reference_medians=medians,
        max_workers=args.max_workers,
    )
    report = result.as_dict()
    report["users"] = len(users)
    report["reference_medians"] = {key: round(value, 2) for key, value in sorted(medians.items())}
    _write_output(report, args.output)

    if result.failed:
        print(f"{result.failed} user(s) failed: {', '.join(result.failed_users)}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
