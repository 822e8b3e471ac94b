import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from factories import days_ago, reading, submission
from schemas import BiasCategory
from scripts import run_daily_scores


def _seed_activity():
    for i, category in enumerate(BiasCategory):
        db.add_reading_event(reading(user_id="reader", bias=category, content_id=f"r-{i}", when=days_ago(i)))
    db.add_submission(submission(user_id="solver", seconds=20, when=days_ago(2)))
    db.add_submission(submission(user_id="solver", seconds=40, when=days_ago(1)))
    db.add_reading_event(reading(user_id="lapsed", when=days_ago(120)))


def test_batch_scores_every_active_user(temp_db, capsys):
    _seed_activity()

    exit_code = run_daily_scores.main(["--date", "2026-03-15"])
    captured = capsys.readouterr()

    assert exit_code == 0
    report = json.loads(captured.out)
    assert report["score_date"] == "2026-03-15"
    assert report["processed"] == 2
    assert report["failed"] == 0
    assert report["users"] == 2
    assert report["reference_medians"] == {"logic_puzzle": 30.0}
    assert db.get_latest_score("reader").diversity_score == pytest.approx(100.0)
    assert db.get_latest_score("lapsed") is None


def test_batch_for_selected_users_writes_output(temp_db, capsys, tmp_path):
    _seed_activity()
    output = tmp_path / "report.json"

    exit_code = run_daily_scores.main(
        ["--date", "2026-03-15", "--user", "solver", "--max-workers", "1", "--output", str(output)]
    )
    captured = capsys.readouterr()

    assert exit_code == 0
    assert json.loads(output.read_text(encoding="utf-8")) == json.loads(captured.out)
    assert json.loads(captured.out)["processed"] == 1
    assert db.get_latest_score("reader") is None
    assert db.get_latest_score("solver").accuracy_score == pytest.approx(100.0)


def test_batch_window_override_excludes_older_activity(temp_db, capsys):
    _seed_activity()

    exit_code = run_daily_scores.main(["--date", "2026-03-15", "--window-days", "1"])
    report = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert report["users"] == 1
    assert report["reference_medians"] == {}
    assert db.get_latest_score("reader") is not None
    assert db.get_latest_score("solver") is None


def test_batch_reports_failed_users(temp_db, capsys, monkeypatch):
    _seed_activity()
    original = db.get_user_stats

    def flaky(user_id):
        if user_id == "solver":
            raise RuntimeError("stats table locked")
        return original(user_id)

    monkeypatch.setattr(db, "get_user_stats", flaky)

    exit_code = run_daily_scores.main(["--date", "2026-03-15"])
    captured = capsys.readouterr()

    assert exit_code == 1
    assert json.loads(captured.out)["failed_users"] == ["solver"]
    assert "solver" in captured.err
    assert db.get_latest_score("reader") is not None


@pytest.mark.parametrize("argv", [["--window-days", "0"], ["--max-workers", "-2"], ["--date", "yesterday"]])
def test_batch_rejects_invalid_arguments(temp_db, argv):
    with pytest.raises(SystemExit):
        run_daily_scores.main(argv)
