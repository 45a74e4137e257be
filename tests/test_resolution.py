"""
Tests for prescription resolution.

Covers single resolution against a max store, batch partial failure, the
shared max cache and lookup-driven programs (5/3/1 waves, Texas Method
days) loaded from the bundled YAML files.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from lift_engine.core.config import EngineSettings
from lift_engine.core.errors import MaxNotFound
from lift_engine.core.load_strategies import FixedWeight, PercentOf
from lift_engine.core.lookups import LookupContext
from lift_engine.core.models import Prescription
from lift_engine.core.resolution import MemoizedMaxLookup, PrescriptionResolver, resolve_batch, resolve_prescription
from lift_engine.core.set_schemes import Fixed
from lift_engine.io.memory_store import InMemoryLedger
from lift_engine.io.program_loader import load_catalog

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _ledger(**training_maxes: float) -> InMemoryLedger:
    ledger = InMemoryLedger()
    for lift, value in training_maxes.items():
        ledger.record_new("u1", lift, "TRAINING_MAX", value, T0)
    return ledger


def _rx(pid: str, lift: str, pct: float = 85.0, sets: int = 5, reps: int = 5, order: int = 0) -> Prescription:
    return Prescription(
        id=pid,
        lift_id=lift,
        load_strategy=PercentOf(percentage=pct),
        set_scheme=Fixed(sets=sets, reps=reps),
        order=order,
    )


class CountingStore:
    """Wraps a max store and counts get_current calls."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0
        self._lock = threading.Lock()

    def get_current(self, user_id, lift_id, max_kind):
        with self._lock:
            self.calls += 1
        return self.inner.get_current(user_id, lift_id, max_kind)

    def record_new(self, *args, **kwargs):
        return self.inner.record_new(*args, **kwargs)


@pytest.fixture(scope="module")
def catalog():
    return load_catalog()


class TestResolvePrescription:
    def test_percent_of_training_max(self):
        """85% of a 200 TM, 5x5 → five sets of 170."""
        resolved = resolve_prescription(_rx("p1", "squat"), "u1", None, _ledger(squat=200.0))
        assert len(resolved.sets) == 5
        assert {s.weight for s in resolved.sets} == {170.0}
        assert all(s.target_reps == 5 for s in resolved.sets)
        assert resolved.reference_max == 200.0
        assert resolved.percentage == 85.0

    def test_latest_max_is_used(self):
        ledger = _ledger(squat=200.0)
        ledger.record_new("u1", "squat", "TRAINING_MAX", 220.0, T0 + timedelta(days=7))
        resolved = resolve_prescription(_rx("p1", "squat", pct=100.0), "u1", None, ledger)
        assert resolved.sets[0].weight == 220.0

    def test_missing_max_raises(self):
        with pytest.raises(MaxNotFound) as exc_info:
            resolve_prescription(_rx("p1", "bench"), "u1", None, _ledger(squat=200.0))
        assert exc_info.value.lift_id == "bench"
        assert exc_info.value.max_kind == "TRAINING_MAX"

    def test_max_kind_is_respected(self):
        ledger = _ledger(squat=200.0)
        rx = Prescription(
            id="p1",
            lift_id="squat",
            load_strategy=PercentOf(percentage=80.0, max_kind="ONE_REP_MAX"),
            set_scheme=Fixed(sets=1, reps=3),
        )
        with pytest.raises(MaxNotFound):
            resolve_prescription(rx, "u1", None, ledger)

    def test_fixed_weight_needs_no_max(self):
        rx = Prescription(
            id="p1",
            lift_id="face_pull",
            load_strategy=FixedWeight(weight=40.0, rounding_increment=2.5),
            set_scheme=Fixed(sets=3, reps=15),
        )
        resolved = resolve_prescription(rx, "u1", None, InMemoryLedger())
        assert [s.weight for s in resolved.sets] == [40.0, 40.0, 40.0]
        assert resolved.reference_max is None


class TestResolveBatch:
    def test_partial_failure_keeps_order(self):
        prescriptions = [
            _rx("p1", "squat", order=0),
            _rx("p2", "bench", order=1),
            _rx("p3", "deadlift", order=2),
            _rx("p4", "press", order=3),
        ]
        results = resolve_batch(prescriptions, "u1", None, _ledger(squat=200.0, bench=150.0, press=100.0))

        assert [r.prescription_id for r in results] == ["p1", "p2", "p3", "p4"]
        assert [r.status for r in results] == ["success", "success", "error", "success"]
        failed = results[2]
        assert failed.error_kind == "MaxNotFound"
        assert "deadlift" in failed.error
        assert failed.result is None
        # 150 × 0.85 = 127.5 → 130
        assert results[1].result.sets[0].weight == 130.0

    def test_tiny_percentage_rounds_to_zero(self):
        # 200 × 1% = 2 → 0 at increment 5
        results = resolve_batch([_rx("p1", "squat", pct=1.0)], "u1", None, _ledger(squat=200.0))
        assert results[0].ok
        assert results[0].result.sets[0].weight == 0.0

    @pytest.mark.parametrize("workers", [1, 4])
    def test_one_store_query_per_lift(self, workers):
        store = CountingStore(_ledger(squat=200.0, bench=150.0))
        prescriptions = [
            _rx("p1", "squat"),
            _rx("p2", "squat", pct=70.0),
            _rx("p3", "bench"),
            _rx("p4", "squat", pct=60.0),
            _rx("p5", "bench", pct=60.0),
        ]
        resolver = PrescriptionResolver(store, settings=EngineSettings(batch_max_workers=workers))
        results = resolver.resolve_batch(prescriptions, "u1")
        assert all(r.ok for r in results)
        assert store.calls == 2

    def test_misses_are_cached(self):
        store = CountingStore(InMemoryLedger())
        results = resolve_batch([_rx("p1", "squat"), _rx("p2", "squat")], "u1", None, store)
        assert all(r.error_kind == "MaxNotFound" for r in results)
        assert store.calls == 1

    def test_empty_batch(self):
        assert resolve_batch([], "u1", None, InMemoryLedger()) == []


class TestMemoizedMaxLookup:
    def test_counts_queries(self):
        lookup = MemoizedMaxLookup(_ledger(squat=200.0))
        assert lookup.get("u1", "squat", "TRAINING_MAX").value == 200.0
        assert lookup.get("u1", "squat", "TRAINING_MAX").value == 200.0
        with pytest.raises(MaxNotFound):
            lookup.get("u1", "bench", "TRAINING_MAX")
        assert lookup.store_queries == 2


class TestProgramLookups:
    def test_wendler_week_three_wave(self, catalog):
        program = catalog.get_program("wendler_531")
        day = program.get_day("press")
        ctx = program.lookup_context(week_number=3)
        resolver = PrescriptionResolver(_ledger(press=200.0), catalog)

        resolved = resolver.resolve(day.prescriptions[0], "u1", ctx)
        assert [(s.weight, s.target_reps) for s in resolved.sets] == [(150.0, 5), (170.0, 3), (190.0, 1)]
        assert resolved.intensity_level == "HEAVY"
        assert resolved.percentage == 95.0

    def test_wendler_week_without_entry_uses_base(self, catalog):
        program = catalog.get_program("wendler_531")
        ctx = program.lookup_context(week_number=7)
        resolver = PrescriptionResolver(_ledger(press=200.0), catalog)

        resolved = resolver.resolve(program.get_day("press").prescriptions[0], "u1", ctx)
        assert [s.weight for s in resolved.sets] == [170.0, 170.0, 170.0]
        assert resolved.intensity_level is None

    def test_texas_method_days(self, catalog):
        program = catalog.get_program("texas_method")
        resolver = PrescriptionResolver(_ledger(squat=300.0, bench=200.0, press=135.0, deadlift=400.0), catalog)

        volume = resolver.resolve_batch(
            program.get_day("volume").prescriptions, "u1", program.lookup_context(day_identifier="volume")
        )
        squat = volume[0].result
        assert [s.weight for s in squat.sets] == [270.0] * 5

        recovery = resolver.resolve_batch(
            program.get_day("recovery").prescriptions, "u1", program.lookup_context(day_identifier="Recovery")
        )
        # 300 × 0.72 = 216 → 215; reps override covers two of two sets
        assert [(s.weight, s.target_reps) for s in recovery[0].result.sets] == [(215.0, 5), (215.0, 5)]
        assert recovery[0].result.intensity_level == "LIGHT"

    def test_starting_strength_ramp(self, catalog):
        program = catalog.get_program("starting_strength")
        resolver = PrescriptionResolver(_ledger(squat=200.0), catalog)

        resolved = resolver.resolve(program.get_day("a").prescriptions[0], "u1", LookupContext())
        assert [s.weight for s in resolved.sets] == [80.0, 120.0, 160.0, 200.0, 200.0, 200.0]
        assert len(resolved.work_sets) == 3
        assert resolved.rest_seconds == 300
