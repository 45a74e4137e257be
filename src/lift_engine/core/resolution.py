"""
Prescription resolution: prescription + reference max + lookup position →
concrete sets.

Pipeline for one prescription:

1. Look up the reference max the load strategy needs (MaxNotFound if none).
2. Overlay lookup modifiers on the strategy's base percentage
   (Weekly → Daily → Rotation, see lookups.py).
3. LoadStrategy computes the working weight (and per-set weights for waves).
4. SetScheme expands it into GeneratedSets.

Batch resolution runs the pipeline per prescription with a shared
compute-once max cache.  Each item succeeds or fails on its own.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Sequence

from .config import EngineSettings
from .errors import LiftEngineError, MaxNotFound
from .lookups import LookupContext, Modifiers, apply_overlay
from .models import BatchItemResult, Prescription, ReferenceMax, ResolvedPrescription
from .ports import LookupStore, ReferenceMaxStore

logger = logging.getLogger(__name__)

MaxGetter = Callable[[str, str, str], ReferenceMax]


class MemoizedMaxLookup:
    """
    Compute-once-per-key cache over a ReferenceMaxStore.

    The first caller for a key queries the store; concurrent callers for
    the same key wait on that caller's Future instead of querying again.
    Misses are cached too and raise MaxNotFound for every reader.
    """

    def __init__(self, store: ReferenceMaxStore):
        self._store = store
        self._lock = threading.Lock()
        self._futures: dict[tuple[str, str, str], Future] = {}
        self.store_queries = 0

    def get(self, user_id: str, lift_id: str, max_kind: str) -> ReferenceMax:
        key = (user_id, lift_id, max_kind)
        with self._lock:
            future = self._futures.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._futures[key] = future
                self.store_queries += 1

        if owner:
            try:
                current = self._store.get_current(user_id, lift_id, max_kind)
            except Exception as exc:
                future.set_exception(exc)
                raise
            future.set_result(current)

        current = future.result()
        if current is None:
            raise MaxNotFound(user_id, lift_id, max_kind)
        return current


class PrescriptionResolver:
    """
    Resolves prescriptions against a max store and lookup tables.

    Args:
        max_store: Source of current reference maxes
        lookup_store: Source of weekly/daily/rotation entries (None = no overlays)
        settings: Engine defaults; only batch_max_workers is read here
    """

    def __init__(
        self,
        max_store: ReferenceMaxStore,
        lookup_store: LookupStore | None = None,
        settings: EngineSettings | None = None,
    ):
        self.max_store = max_store
        self.lookup_store = lookup_store
        self.settings = settings or EngineSettings()

    def _direct_max(self, user_id: str, lift_id: str, max_kind: str) -> ReferenceMax:
        current = self.max_store.get_current(user_id, lift_id, max_kind)
        if current is None:
            raise MaxNotFound(user_id, lift_id, max_kind)
        return current

    def _resolve(
        self,
        prescription: Prescription,
        user_id: str,
        ctx: LookupContext,
        get_max: MaxGetter,
    ) -> ResolvedPrescription:
        strategy = prescription.load_strategy
        reference = None
        if strategy.max_kind is not None:
            reference = get_max(user_id, prescription.lift_id, strategy.max_kind)
        ref_value = reference.value if reference is not None else None

        base = Modifiers(percentage=strategy.base_percentage)
        mods = apply_overlay(base, ctx, self.lookup_store, prescription.lift_id)

        working = strategy.calculate_load(ref_value, mods.percentage)
        set_weights = None
        if mods.set_percentages:
            set_weights = [strategy.calculate_load(ref_value, pct) for pct in mods.set_percentages]

        sets = prescription.set_scheme.generate_sets(
            working,
            increment=strategy.rounding_increment,
            direction=strategy.rounding_direction,
            set_weights=set_weights,
            rep_overrides=mods.reps,
        )
        return ResolvedPrescription(
            prescription_id=prescription.id,
            lift_id=prescription.lift_id,
            sets=sets,
            percentage=mods.percentage,
            reference_max=ref_value,
            intensity_level=mods.intensity_level,
            notes=prescription.notes,
            rest_seconds=prescription.rest_seconds,
        )

    def resolve(
        self,
        prescription: Prescription,
        user_id: str,
        lookup_context: LookupContext | None = None,
    ) -> ResolvedPrescription:
        """
        Resolve one prescription.

        Raises:
            MaxNotFound: The strategy needs a max the user does not have
            ValidationFailed: A strategy, scheme or lookup value is invalid
        """
        return self._resolve(prescription, user_id, lookup_context or LookupContext(), self._direct_max)

    def resolve_batch(
        self,
        prescriptions: Sequence[Prescription],
        user_id: str,
        lookup_context: LookupContext | None = None,
        max_workers: int | None = None,
    ) -> list[BatchItemResult]:
        """
        Resolve many prescriptions for one user.

        Max lookups are shared: a lift appearing in several prescriptions
        costs one store query.  A failing item becomes an "error" result
        and never stops the others.

        Args:
            prescriptions: Items to resolve
            user_id: Lifter
            lookup_context: Week/day/rotation position
            max_workers: Thread count; defaults to settings.batch_max_workers

        Returns:
            One BatchItemResult per prescription, in input order
        """
        ctx = lookup_context or LookupContext()
        lookup = MemoizedMaxLookup(self.max_store)
        workers = max_workers if max_workers is not None else self.settings.batch_max_workers

        def resolve_item(prescription: Prescription) -> BatchItemResult:
            try:
                resolved = self._resolve(prescription, user_id, ctx, lookup.get)
            except LiftEngineError as exc:
                logger.warning("prescription %s failed: %s", prescription.id, exc)
                return BatchItemResult(
                    prescription_id=prescription.id,
                    status="error",
                    error=str(exc),
                    error_kind=type(exc).__name__,
                )
            except Exception as exc:
                logger.exception("prescription %s failed unexpectedly", prescription.id)
                return BatchItemResult(
                    prescription_id=prescription.id,
                    status="error",
                    error=str(exc),
                    error_kind=type(exc).__name__,
                )
            return BatchItemResult(prescription_id=prescription.id, status="success", result=resolved)

        if workers <= 1 or len(prescriptions) <= 1:
            results = [resolve_item(p) for p in prescriptions]
        else:
            with ThreadPoolExecutor(max_workers=min(workers, len(prescriptions))) as pool:
                results = list(pool.map(resolve_item, prescriptions))

        failed = sum(1 for r in results if not r.ok)
        logger.debug(
            "resolved %d prescriptions for %s (%d failed, %d max queries)",
            len(results), user_id, failed, lookup.store_queries,
        )
        return results


def resolve_prescription(
    prescription: Prescription,
    user_id: str,
    lookup_context: LookupContext | None,
    max_store: ReferenceMaxStore,
    lookup_store: LookupStore | None = None,
) -> ResolvedPrescription:
    """Functional form of PrescriptionResolver.resolve."""
    return PrescriptionResolver(max_store, lookup_store).resolve(prescription, user_id, lookup_context)


def resolve_batch(
    prescriptions: Sequence[Prescription],
    user_id: str,
    lookup_context: LookupContext | None,
    max_store: ReferenceMaxStore,
    lookup_store: LookupStore | None = None,
    max_workers: int | None = None,
) -> list[BatchItemResult]:
    """Functional form of PrescriptionResolver.resolve_batch."""
    return PrescriptionResolver(max_store, lookup_store).resolve_batch(
        prescriptions, user_id, lookup_context, max_workers=max_workers
    )
