"""
Smoke tests for the lift-engine CLI.

Tests basic functionality:
- App runs and lists programs
- Maxes are recorded in the ledger file
- A training day resolves, with missing maxes reported per lift
- Trigger events apply progressions once
- Failed sets count towards a deload
- Manual apply and history work
"""

import json
import tempfile
from pathlib import Path

import pytest
from typer.testing import CliRunner

from lift_engine.cli import views
from lift_engine.cli.main import app
from lift_engine.core.models import BatchItemResult, GeneratedSet, ResolvedPrescription
from lift_engine.io.ledger_store import JsonlLedger

runner = CliRunner()

PAST = "2024-03-01T00:00:00+00:00"
EVENT = "2024-03-04T18:00:00+00:00"


@pytest.fixture
def temp_dir(monkeypatch):
    """Temporary HOME holding the ledger; keeps user overrides out of the tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("HOME", tmpdir)
        yield Path(tmpdir)


@pytest.fixture
def ledger_path(temp_dir):
    return temp_dir / "ledger.jsonl"


def _invoke(*args: str):
    return runner.invoke(app, list(args))


def _set_max(ledger_path: Path, lift: str, value: str, *extra: str):
    result = _invoke("set-max", lift, value, "--at", PAST, "--ledger", str(ledger_path), *extra)
    assert result.exit_code == 0, result.output
    return result


class TestCLISmoke:
    def test_app_help(self):
        result = _invoke("--help")
        assert result.exit_code == 0
        assert "resolve" in result.output
        assert "trigger" in result.output

    def test_programs_json(self, temp_dir):
        result = _invoke("programs", "--json")
        assert result.exit_code == 0
        ids = {p["id"] for p in json.loads(result.stdout)}
        assert {"starting_strength", "wendler_531", "greyskull_lp", "texas_method"} <= ids

    def test_programs_table(self, temp_dir):
        result = _invoke("programs")
        assert result.exit_code == 0
        assert "Programs" in result.output

    def test_set_max_and_show(self, ledger_path):
        _set_max(ledger_path, "squat", "200")
        assert ledger_path.exists()

        result = _invoke("show-maxes", "--ledger", str(ledger_path), "--json")
        assert result.exit_code == 0
        maxes = json.loads(result.stdout)
        assert [(m["lift_id"], m["max_kind"], m["value"]) for m in maxes] == [("squat", "TRAINING_MAX", 200.0)]

    def test_set_max_from_one_rm(self, ledger_path):
        _set_max(ledger_path, "bench", "300", "--from-one-rm")
        ledger = JsonlLedger(ledger_path)
        assert ledger.get_current("me", "bench", "ONE_REP_MAX").value == 300.0
        assert ledger.get_current("me", "bench", "TRAINING_MAX").value == 270.0

    def test_set_max_rejects_bad_kind(self, ledger_path):
        result = _invoke("set-max", "squat", "200", "--kind", "THREE_REP_MAX", "--ledger", str(ledger_path))
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_resolve_reports_missing_max(self, ledger_path):
        _set_max(ledger_path, "squat", "200")
        result = _invoke(
            "resolve", "--program", "starting_strength", "--day", "b", "--ledger", str(ledger_path), "--json"
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        by_id = {r["prescription_id"]: r for r in data["results"]}
        assert by_id["b_squat"]["status"] == "success"
        assert [s["weight"] for s in by_id["b_squat"]["result"]["sets"]] == [200.0, 200.0, 200.0]
        assert by_id["b_press"]["error_kind"] == "MaxNotFound"

    def test_resolve_wendler_week(self, ledger_path):
        _set_max(ledger_path, "press", "200")
        result = _invoke(
            "resolve", "-p", "wendler_531", "-d", "press", "-w", "3", "--ledger", str(ledger_path), "--json"
        )
        assert result.exit_code == 0, result.output
        sets = json.loads(result.stdout)["results"][0]["result"]["sets"]
        assert [(s["weight"], s["target_reps"]) for s in sets] == [(150.0, 5), (170.0, 3), (190.0, 1)]

    def test_resolve_table(self, ledger_path):
        _set_max(ledger_path, "squat", "200")
        result = _invoke("resolve", "-p", "starting_strength", "-d", "a", "--ledger", str(ledger_path))
        assert result.exit_code == 0, result.output
        assert "Workout A" in result.output

    def test_resolve_unknown_program(self, ledger_path):
        result = _invoke("resolve", "-p", "nope", "-d", "a", "--ledger", str(ledger_path))
        assert result.exit_code == 1
        assert "Unknown program" in result.output

    def test_trigger_session_once(self, ledger_path):
        _set_max(ledger_path, "squat", "200")
        _set_max(ledger_path, "deadlift", "300")
        args = (
            "trigger", "session", "-p", "starting_strength", "--day", "a",
            "--at", EVENT, "--ledger", str(ledger_path), "--json",
        )

        first = _invoke(*args)
        assert first.exit_code == 0, first.output
        statuses = {o["lift_id"]: o["status"] for o in json.loads(first.stdout)["outcomes"]}
        assert statuses == {"squat": "APPLIED", "bench": "SKIPPED_NOT_APPLICABLE", "deadlift": "APPLIED"}

        second = _invoke(*args)
        assert second.exit_code == 0, second.output
        assert {o["status"] for o in json.loads(second.stdout)["outcomes"]} <= {
            "SKIPPED_IDEMPOTENT",
            "SKIPPED_NOT_APPLICABLE",
        }

        ledger = JsonlLedger(ledger_path)
        assert ledger.get_current("me", "squat", "TRAINING_MAX").value == 205.0
        assert ledger.get_current("me", "deadlift", "TRAINING_MAX").value == 310.0

    def test_trigger_session_needs_lifts(self, ledger_path):
        result = _invoke("trigger", "session", "-p", "starting_strength", "--ledger", str(ledger_path))
        assert result.exit_code == 1

    def test_trigger_cycle(self, ledger_path):
        _set_max(ledger_path, "press", "100")
        result = _invoke(
            "trigger", "cycle", "-p", "wendler_531", "--completed-cycle", "1",
            "--at", EVENT, "--ledger", str(ledger_path),
        )
        assert result.exit_code == 0, result.output
        assert JsonlLedger(ledger_path).get_current("me", "press", "TRAINING_MAX").value == 105.0

    def test_trigger_week(self, ledger_path):
        _set_max(ledger_path, "press", "100")
        result = _invoke(
            "trigger", "week", "-p", "texas_method", "--previous-week", "1",
            "--at", EVENT, "--ledger", str(ledger_path), "--json",
        )
        assert result.exit_code == 0, result.output
        press = [o for o in json.loads(result.stdout)["outcomes"] if o["lift_id"] == "press"][0]
        assert press["new_value"] == 102.5

    def test_trigger_amrap_set(self, ledger_path):
        _set_max(ledger_path, "bench", "100")
        result = _invoke(
            "trigger", "set", "-p", "greyskull_lp", "--lift", "bench", "--reps", "12",
            "--at", EVENT, "--ledger", str(ledger_path), "--json",
        )
        assert result.exit_code == 0, result.output
        outcome = json.loads(result.stdout)["outcomes"][0]
        assert outcome["status"] == "APPLIED"
        assert outcome["new_value"] == 105.0

    def test_trigger_set_result_deloads_after_three_misses(self, ledger_path):
        _set_max(ledger_path, "squat", "300")

        def missed(day: int):
            result = _invoke(
                "trigger", "set-result", "-p", "starting_strength", "--lift", "squat",
                "--target-reps", "5", "--reps", "3", "--set-id", f"sq-{day}",
                "--at", f"2024-03-0{day}T18:00:00+00:00", "--ledger", str(ledger_path), "--json",
            )
            assert result.exit_code == 0, result.output
            return json.loads(result.stdout)["outcomes"][0]

        assert [missed(d)["status"] for d in (4, 6)] == ["SKIPPED_NOT_APPLICABLE"] * 2
        third = missed(8)
        assert third["status"] == "APPLIED"
        assert third["new_value"] == 270.0
        counter = JsonlLedger(ledger_path).get_failure_counter("me", "squat", "ss_failure_deload")
        assert counter.total_failures == 3

    def test_trigger_set_result_made_set(self, ledger_path):
        _set_max(ledger_path, "squat", "300")
        result = _invoke(
            "trigger", "set-result", "-p", "starting_strength", "--lift", "squat",
            "--target-reps", "5", "--reps", "5", "--at", EVENT, "--ledger", str(ledger_path), "--json",
        )
        assert result.exit_code == 0, result.output
        (outcome,) = json.loads(result.stdout)["outcomes"]
        assert outcome["progression_id"] == "ss_failure_deload"
        assert outcome["status"] == "SKIPPED_NOT_APPLICABLE"
        assert "succeeded" in outcome["reason"]

    def test_apply_and_history(self, ledger_path):
        _set_max(ledger_path, "squat", "200")
        args = ("apply", "-p", "starting_strength", "ss_session_linear", "squat", "--ledger", str(ledger_path))

        first = _invoke(*args, "--json")
        assert first.exit_code == 0, first.output
        assert json.loads(first.stdout)["status"] == "APPLIED"

        again = _invoke(*args)
        assert again.exit_code == 0
        assert "--force" in again.output

        forced = _invoke(*args, "--force", "--json")
        assert json.loads(forced.stdout)["new_value"] == 210.0

        history = _invoke("history", "--ledger", str(ledger_path), "--json")
        assert history.exit_code == 0
        entries = json.loads(history.stdout)
        assert len(entries) == 2
        assert entries[0]["trigger_context"]["forced"] is True

    def test_apply_unknown_progression(self, ledger_path):
        result = _invoke("apply", "-p", "starting_strength", "nope", "squat", "--ledger", str(ledger_path))
        assert result.exit_code == 1
        assert "Error" in result.output


class TestViews:
    def test_resolved_table_groups_sets(self, capsys):
        sets = [
            GeneratedSet(1, 100.0, 5, False),
            GeneratedSet(2, 200.0, 5, True),
            GeneratedSet(3, 200.0, 5, True),
        ]
        item = BatchItemResult("a_squat", "success", result=ResolvedPrescription("a_squat", "squat", sets))
        views.print_resolved("Day A", [item])
        assert "200x5 ×2" in capsys.readouterr().out

    def test_resolved_row_without_result_is_an_error_row(self, capsys):
        item = BatchItemResult("a_press", "error", error="no TRAINING_MAX for press", error_kind="MaxNotFound")
        views.print_resolved("Day A", [item, BatchItemResult("a_bench", "success")])
        out = capsys.readouterr().out
        assert "MaxNotFound" in out
        assert "a_bench" in out

    def test_amrap_set_is_marked(self, capsys):
        sets = [
            GeneratedSet(1, 200.0, 5, True),
            GeneratedSet(2, 200.0, 5, True),
            GeneratedSet(3, 200.0, 5, True, is_amrap=True),
        ]
        item = BatchItemResult("gslp_a_squat", "success", result=ResolvedPrescription("gslp_a_squat", "squat", sets))
        views.print_resolved("Day A", [item])
        assert "200x5 ×2, 200x5+" in capsys.readouterr().out
