"""
Tests for the io layer: serializers, the JSONL ledger, settings and
program loading (bundled files plus ~/.lift-engine overrides).
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from lift_engine.core.config import EngineSettings, load_engine_settings
from lift_engine.core.dispatcher import TriggerDispatcher
from lift_engine.core.engine.config_loader import deep_merge
from lift_engine.core.errors import TransactionFailed, ValidationFailed
from lift_engine.core.load_strategies import FixedWeight
from lift_engine.core.models import FailureCounter, ProgressionLogEntry, ReferenceMax
from lift_engine.core.progressions import DeloadOnFailureProgression
from lift_engine.core.resolution import PrescriptionResolver
from lift_engine.core.set_schemes import Amrap, Ramp
from lift_engine.core.triggers import FailureContext, SessionContext, TriggerEvent
from lift_engine.io.ledger_store import JsonlLedger
from lift_engine.io.memory_store import InMemoryLedger
from lift_engine.io.program_catalog import ProgramCatalog
from lift_engine.io.program_loader import load_catalog, load_program_file, program_from_dict
from lift_engine.io.serializers import (
    dict_to_failure_counter,
    dict_to_log_entry,
    dict_to_prescription,
    dict_to_reference_max,
    dict_to_program_progression,
    dict_to_trigger_event,
    failure_counter_to_dict,
    log_entry_to_dict,
    parse_timestamp,
    prescription_to_dict,
    program_progression_to_dict,
    reference_max_to_dict,
    trigger_event_to_dict,
)

T1 = datetime(2024, 3, 4, 18, 30, tzinfo=timezone.utc)


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point ~ at a temporary directory so user overrides are isolated."""
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


class TestSerializers:
    def test_naive_timestamp_is_utc(self):
        assert parse_timestamp("2024-03-04T18:30:00") == T1
        assert parse_timestamp("2024-03-04T20:30:00+02:00") == T1

    def test_bad_timestamp(self):
        with pytest.raises(ValidationFailed):
            parse_timestamp("last tuesday")

    def test_reference_max_dict(self):
        m = ReferenceMax("u1", "squat", "TRAINING_MAX", 200.0, T1)
        d = reference_max_to_dict(m)
        assert d["effective_at"] == "2024-03-04T18:30:00+00:00"
        assert dict_to_reference_max(d) == m

    def test_reference_max_missing_field(self):
        with pytest.raises(ValidationFailed, match="value"):
            dict_to_reference_max({"user_id": "u1", "lift_id": "squat", "max_kind": "TRAINING_MAX", "effective_at": "2024-01-01"})

    def test_log_entry_dict(self):
        entry = ProgressionLogEntry(
            user_id="u1",
            progression_id="lp",
            lift_id="squat",
            max_kind="TRAINING_MAX",
            previous_value=200.0,
            new_value=205.0,
            delta=5.0,
            trigger_type="AFTER_SESSION",
            applied_at=T1,
            trigger_context={"session_id": "s1", "lifts_performed": ["squat"]},
        )
        restored = dict_to_log_entry(log_entry_to_dict(entry))
        assert restored == entry
        assert restored.key == entry.key

    def test_log_entry_unknown_trigger(self):
        d = {
            "user_id": "u1", "progression_id": "lp", "lift_id": "squat", "max_kind": "TRAINING_MAX",
            "previous_value": 200, "new_value": 205, "trigger_type": "AFTER_LUNCH", "applied_at": "2024-01-01",
        }
        with pytest.raises(ValidationFailed):
            dict_to_log_entry(d)

    def test_trigger_event_from_dict(self):
        event = dict_to_trigger_event({
            "trigger_type": "after_session",
            "user_id": "u1",
            "timestamp": "2024-03-04T18:30:00Z",
            "context": {"session_id": "s1", "lifts_performed": ["squat", "bench"], "week_number": 2},
        })
        assert event.trigger_type == "AFTER_SESSION"
        assert event.context == SessionContext(session_id="s1", lifts_performed=("squat", "bench"), week_number=2)
        assert event.timestamp == T1

    def test_trigger_event_context_mismatch(self):
        with pytest.raises(ValidationFailed):
            dict_to_trigger_event({
                "trigger_type": "AFTER_WEEK",
                "user_id": "u1",
                "timestamp": "2024-03-04T18:30:00Z",
                "context": {"session_id": "s1"},
            })

    def test_on_failure_event_from_dict(self):
        event = dict_to_trigger_event({
            "trigger_type": "on_failure",
            "user_id": "u1",
            "timestamp": "2024-03-04T18:30:00Z",
            "context": {"lift_id": "squat", "target_reps": 5, "reps_performed": 3, "consecutive_failures": 2},
        })
        assert event.context == FailureContext(lift_id="squat", target_reps=5, reps_performed=3, consecutive_failures=2)
        assert trigger_event_to_dict(event)["context"]["consecutive_failures"] == 2

    def test_failure_counter_dict(self):
        counter = FailureCounter("u1", "squat", "dl").record_failure("set-1", T1)
        d = failure_counter_to_dict(counter)
        assert d["last_failure_at"] == "2024-03-04T18:30:00+00:00"
        assert dict_to_failure_counter(json.loads(json.dumps(d))) == counter
        assert dict_to_failure_counter({"user_id": "u1", "lift_id": "squat", "progression_id": "dl"}) == FailureCounter(
            "u1", "squat", "dl"
        )
        with pytest.raises(ValidationFailed):
            dict_to_failure_counter({"user_id": "u1", "lift_id": "squat"})

    def test_prescription_dict(self):
        d = {
            "id": "a_squat",
            "lift_id": "squat",
            "rest_seconds": 300,
            "load_strategy": {"type": "PERCENT_OF", "percentage": 100},
            "set_scheme": {"type": "RAMP", "steps": [{"percentage": 50, "reps": 5}, {"percentage": 100, "reps": 5}]},
        }
        p = dict_to_prescription(d, EngineSettings(rounding_increment=2.5, work_set_threshold=90))
        assert p.load_strategy.rounding_increment == 2.5
        assert isinstance(p.set_scheme, Ramp)
        assert p.set_scheme.work_set_threshold == 90
        assert dict_to_prescription(prescription_to_dict(p)) == p

    def test_fixed_weight_prescription(self):
        p = dict_to_prescription({
            "id": "fp",
            "lift_id": "face_pull",
            "load_strategy": {"type": "FIXED_WEIGHT", "weight": 40},
            "set_scheme": {"type": "FIXED", "sets": 3, "reps": 15},
        })
        assert p.load_strategy == FixedWeight(weight=40.0)

    def test_trigger_event_dict(self):
        event = TriggerEvent("AFTER_SESSION", "u1", T1, SessionContext(session_id="s1", lifts_performed=("squat",)))
        d = trigger_event_to_dict(event)
        assert d["context"]["lifts_performed"] == ["squat"]
        assert dict_to_trigger_event(d) == event

    def test_program_progression_dict(self):
        link = dict_to_program_progression(
            {"id": "dl", "progression_id": "lp", "lift_id": "deadlift", "override_increment": 10}, "prog"
        )
        assert link.priority == 0
        assert link.enabled
        assert program_progression_to_dict(link) == {
            "id": "dl",
            "progression_id": "lp",
            "lift_id": "deadlift",
            "priority": 0,
            "enabled": True,
            "override_increment": 10.0,
        }


# ---------------------------------------------------------------------------
# JSONL ledger
# ---------------------------------------------------------------------------


class TestJsonlLedger:
    def test_init_creates_file(self, tmp_path):
        ledger = JsonlLedger(tmp_path / "nested" / "ledger.jsonl")
        assert not ledger.file_exists()
        ledger.init()
        assert ledger.file_exists()

    def test_maxes_survive_reopen(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = JsonlLedger(path)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, T1)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 205.0, T1 + timedelta(days=2))

        reopened = JsonlLedger(path)
        assert reopened.get_current("u1", "squat", "TRAINING_MAX").value == 205.0
        assert [m.value for m in reopened.max_history("u1", "squat", "TRAINING_MAX")] == [200.0, 205.0]

    def test_one_line_per_commit(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = JsonlLedger(path)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, T1)
        with ledger.transaction("u1", "squat", "TRAINING_MAX") as uow:
            uow.record_new("u1", "squat", "TRAINING_MAX", 205.0, T1 + timedelta(days=1))
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["maxes"][0]["value"] == 205.0

    def test_counter_update_is_one_line(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = JsonlLedger(path)
        ledger.save_failure_counter(FailureCounter("u1", "squat", "dl").record_failure("set-1", T1))
        ledger.save_failure_counter(FailureCounter("u1", "squat", "dl", consecutive_failures=0, total_failures=1))

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [len(line["counters"]) for line in lines] == [1, 1]
        assert lines[0]["maxes"] == [] and lines[0]["entries"] == []
        # Replay keeps the last state
        counter = JsonlLedger(path).get_failure_counter("u1", "squat", "dl")
        assert (counter.consecutive_failures, counter.total_failures) == (0, 1)

    def test_rolled_back_transaction_writes_nothing(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = JsonlLedger(path)
        with pytest.raises(RuntimeError):
            with ledger.transaction("u1", "squat", "TRAINING_MAX") as uow:
                uow.record_new("u1", "squat", "TRAINING_MAX", 205.0, T1)
                raise RuntimeError("boom")
        assert not path.exists()
        assert ledger.get_current("u1", "squat", "TRAINING_MAX") is None

    def test_idempotency_survives_reopen(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        catalog = load_catalog()
        catalog.enroll("u1", "starting_strength")
        event = TriggerEvent("AFTER_SESSION", "u1", T1, SessionContext(session_id="s1", lifts_performed=("squat",)))

        ledger = JsonlLedger(path)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, T1 - timedelta(days=2))
        assert TriggerDispatcher(catalog, ledger).dispatch(event)[0].status == "APPLIED"

        reopened = JsonlLedger(path)
        assert TriggerDispatcher(catalog, reopened).dispatch(event)[0].status == "SKIPPED_IDEMPOTENT"
        assert reopened.get_current("u1", "squat", "TRAINING_MAX").value == 205.0

    def test_torn_line_is_skipped_with_warning(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = JsonlLedger(path)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, T1)
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"maxes": [{"user_id": "u1", "lift_id"\n')

        with pytest.warns(UserWarning, match="skipping invalid ledger line 2"):
            reopened = JsonlLedger(path)
        assert reopened.skipped_lines == 1
        assert reopened.get_current("u1", "squat", "TRAINING_MAX").value == 200.0

    def test_commit_after_unterminated_torn_line_survives(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        ledger = JsonlLedger(path)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, T1)
        # Crash mid-write: no trailing newline
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"maxes": [{"user_id": "u1", "lift_id"')

        with pytest.warns(UserWarning, match="skipping invalid ledger line 2"):
            reopened = JsonlLedger(path)
        reopened.record_new("u1", "squat", "TRAINING_MAX", 225.0, T1 + timedelta(days=1))

        with pytest.warns(UserWarning, match="skipping invalid ledger line 2"):
            again = JsonlLedger(path)
        assert again.skipped_lines == 1
        assert again.get_current("u1", "squat", "TRAINING_MAX").value == 225.0

    def test_naive_timestamps_match_after_reopen(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        naive = datetime(2024, 3, 4, 18, 30)
        ledger = JsonlLedger(path)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, naive)
        entry = ProgressionLogEntry(
            user_id="u1",
            progression_id="lp",
            lift_id="squat",
            max_kind="TRAINING_MAX",
            previous_value=200.0,
            new_value=205.0,
            delta=5.0,
            trigger_type="AFTER_SESSION",
            applied_at=naive,
        )
        with ledger.transaction("u1", "squat", "TRAINING_MAX") as uow:
            uow.record_new("u1", "squat", "TRAINING_MAX", 205.0, naive)
            uow.insert(entry)

        reopened = JsonlLedger(path)
        assert reopened.exists("u1", "lp", "AFTER_SESSION", naive, lift_id="squat")
        assert reopened.get_current("u1", "squat", "TRAINING_MAX").effective_at == T1

    def test_write_error_is_transaction_failed(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        ledger = JsonlLedger(blocker / "ledger.jsonl")
        with pytest.raises(TransactionFailed):
            ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, T1)
        assert ledger.get_current("u1", "squat", "TRAINING_MAX") is None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_deep_merge(self):
        base = {"rounding": {"increment": 5.0, "direction": "NEAREST"}, "batch": {"max_workers": 4}}
        merged = deep_merge(base, {"rounding": {"increment": 2.5}})
        assert merged == {"rounding": {"increment": 2.5, "direction": "NEAREST"}, "batch": {"max_workers": 4}}
        assert base["rounding"]["increment"] == 5.0

    def test_bundled_defaults(self, home):
        assert load_engine_settings() == EngineSettings()

    def test_user_override(self, home):
        user_dir = home / ".lift-engine"
        user_dir.mkdir()
        (user_dir / "settings.yaml").write_text("rounding:\n  increment: 2.5\n  direction: down\n")
        settings = load_engine_settings()
        assert settings.rounding_increment == 2.5
        assert settings.rounding_direction == "DOWN"
        assert settings.tm_percentage == 90.0

    def test_invalid_override_falls_back(self, home):
        user_dir = home / ".lift-engine"
        user_dir.mkdir()
        (user_dir / "settings.yaml").write_text("rounding:\n  increment: -1\n")
        with pytest.warns(UserWarning, match="invalid settings"):
            settings = load_engine_settings()
        assert settings == EngineSettings()


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------


class TestProgramLoading:
    def test_bundled_programs(self, home):
        catalog = load_catalog()
        ids = {p.id for p in catalog.programs}
        assert {"starting_strength", "wendler_531", "greyskull_lp", "texas_method"} <= ids

    def test_bundled_links_resolve(self, home):
        catalog = load_catalog()
        links = catalog.get_program_progressions("greyskull_lp", "AFTER_SET")
        assert [link.priority for link in links] == sorted(link.priority for link in links)
        assert catalog.get_program_progressions("greyskull_lp", "AFTER_SESSION") == []

    def test_bundled_failure_deload_and_amrap_sets(self, home):
        catalog = load_catalog()
        (link,) = catalog.get_program_progressions("starting_strength", "ON_FAILURE")
        deload = catalog.get_progression(link.progression_id)
        assert isinstance(deload, DeloadOnFailureProgression)
        assert (deload.failure_threshold, deload.deload_percent) == (3, 0.10)

        bench = catalog.get_program("greyskull_lp").get_day("a").prescriptions[0]
        assert isinstance(bench.set_scheme, Amrap)
        assert [s.is_amrap for s in bench.set_scheme.generate_sets(100.0)] == [False, False, True]

    def test_unknown_program(self, home):
        with pytest.raises(ValidationFailed, match="Valid IDs"):
            load_catalog().get_program("couch_to_5k")

    def test_user_override_is_merged(self, home):
        programs_dir = home / ".lift-engine" / "programs"
        programs_dir.mkdir(parents=True)
        (programs_dir / "starting_strength.yaml").write_text("name: My Starting Strength\n")

        program = load_catalog().get_program("starting_strength")
        assert program.name == "My Starting Strength"
        assert set(program.days) == {"a", "b"}

    def test_invalid_user_program_is_skipped(self, home):
        programs_dir = home / ".lift-engine" / "programs"
        programs_dir.mkdir(parents=True)
        (programs_dir / "broken.yaml").write_text("id: broken\nname: Broken\n")

        with pytest.warns(UserWarning, match="skipping program 'broken'"):
            catalog = load_catalog()
        assert "broken" not in {p.id for p in catalog.programs}

    def test_malformed_user_program_is_skipped(self, home):
        programs_dir = home / ".lift-engine" / "programs"
        programs_dir.mkdir(parents=True)
        (programs_dir / "broken2.yaml").write_text("id: broken2\nname: Broken\nlifts: [squat]\ndays: [a, b]\n")

        with pytest.warns(UserWarning, match="skipping program 'broken2'"):
            catalog = load_catalog()
        ids = {p.id for p in catalog.programs}
        assert "broken2" not in ids
        assert "starting_strength" in ids

    def test_program_file(self, tmp_path, home):
        path = tmp_path / "mine.yaml"
        path.write_text(
            "id: mine\n"
            "name: Mine\n"
            "lifts: [squat]\n"
            "progressions:\n"
            "  - {id: mine_lp, name: Linear, type: LINEAR, increment: 5}\n"
            "links:\n"
            "  - {id: mine_default, progression_id: mine_lp}\n"
            "days:\n"
            "  a:\n"
            "    prescriptions:\n"
            "      - id: sq\n"
            "        lift_id: squat\n"
            "        load_strategy: {type: PERCENT_OF, percentage: 80}\n"
            "        set_scheme: {type: FIXED, sets: 5, reps: 5}\n"
        )
        program = load_program_file(path)
        assert program.get_day("A").prescriptions[0].id == "sq"
        assert "mine" in {p.id for p in load_catalog(extra_files=[path]).programs}

    def test_missing_program_file(self, tmp_path):
        with pytest.warns(UserWarning, match="cannot read program file"):
            with pytest.raises(ValidationFailed):
                load_program_file(tmp_path / "nope.yaml")

    @pytest.mark.parametrize("raw,message", [
        ({"id": "x", "name": "X", "lifts": ["squat"]}, "missing fields"),
        ({"id": "x", "name": "X", "lifts": ["squat"], "days": {"a": {"prescriptions": [
            {"id": "p", "lift_id": "bench", "load_strategy": {"type": "FIXED_WEIGHT", "weight": 20},
             "set_scheme": {"type": "FIXED", "sets": 1, "reps": 5}}]}}}, "unknown lift"),
        ({"id": "x", "name": "X", "lifts": ["squat"], "days": {},
          "links": [{"id": "l", "progression_id": "ghost"}]}, "unknown progression"),
        ({"id": "x", "name": "X", "lifts": ["squat"], "days": ["a", "b"]}, "'days' must be a mapping"),
        ({"id": "x", "name": "X", "lifts": "squat", "days": {}}, "'lifts' must be a list"),
        ({"id": "x", "name": "X", "lifts": ["squat"], "days": {}, "cycle_weeks": "x"}, "malformed program 'x'"),
        ({"id": "x", "name": "X", "lifts": ["squat"], "days": {"a": ["sq"]}}, "malformed program 'x'"),
    ])
    def test_invalid_programs(self, raw, message):
        with pytest.raises(ValidationFailed, match=message):
            program_from_dict(raw)

    def test_rotation_lookup_program(self):
        program = program_from_dict({
            "id": "rot",
            "name": "Rotating focus",
            "lifts": ["squat", "bench"],
            "lookups": {
                "daily": {"id": "rot_days", "name": "Days", "entries": [{"day_identifier": "heavy", "percentage": 80}]},
                "rotation": {
                    "id": "rot_focus",
                    "name": "Focus",
                    "entries": [
                        {"position": 0, "lift_id": "squat", "description": "squat focus", "percentage": 90, "reps": [3]},
                        {"position": 1, "lift_id": "bench", "percentage": 90, "reps": [3]},
                    ],
                },
            },
            "days": {"heavy": {"prescriptions": [
                {"id": "sq", "lift_id": "squat", "order": 0,
                 "load_strategy": {"type": "PERCENT_OF", "percentage": 70}, "set_scheme": {"type": "FIXED", "sets": 2, "reps": 5}},
                {"id": "bp", "lift_id": "bench", "order": 1,
                 "load_strategy": {"type": "PERCENT_OF", "percentage": 70}, "set_scheme": {"type": "FIXED", "sets": 2, "reps": 5}},
            ]}},
        })
        catalog = ProgramCatalog([program])
        ledger = InMemoryLedger()
        ledger.record_new("u1", "squat", "TRAINING_MAX", 200.0, T1)
        ledger.record_new("u1", "bench", "TRAINING_MAX", 100.0, T1)

        ctx = program.lookup_context(day_identifier="heavy", rotation_position=0)
        squat, bench = PrescriptionResolver(ledger, catalog).resolve_batch(program.get_day("heavy").prescriptions, "u1", ctx)

        # Squat is the focus lift: rotation 90% x3 on the first set
        assert [(s.weight, s.target_reps) for s in squat.result.sets] == [(180.0, 3), (180.0, 5)]
        # Bench only gets the daily 80%
        assert [(s.weight, s.target_reps) for s in bench.result.sets] == [(80.0, 5), (80.0, 5)]
