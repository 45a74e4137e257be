"""
In-process ledger: reference maxes, the progression audit log and failure
counters.

Transactions are scoped to (user, lift, max kind).  Writes made through a
transaction are staged on a unit of work and become visible only when the
block exits normally; an exception discards them.  The audit log keeps a
unique index on the idempotency key, checked again at commit time.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime

from ..core.errors import DuplicateLogEntry
from ..core.models import FailureCounter, MaxKind, ProgressionLogEntry, ReferenceMax, as_utc

logger = logging.getLogger(__name__)

MaxKey = tuple[str, str, str]
CounterKey = tuple[str, str, str]


def _latest(candidates: list[ReferenceMax]) -> ReferenceMax | None:
    """Most recent by effective_at; on ties the later-recorded value wins."""
    current = None
    for m in candidates:
        if current is None or m.effective_at >= current.effective_at:
            current = m
    return current


def _entry_matches(
    entry: ProgressionLogEntry,
    user_id: str,
    progression_id: str,
    trigger_type: str,
    applied_at: datetime,
    lift_id: str | None,
) -> bool:
    return (
        entry.user_id == user_id
        and entry.progression_id == progression_id
        and entry.trigger_type == trigger_type
        and entry.applied_at == applied_at
        and (lift_id is None or entry.lift_id == lift_id)
    )


class InMemoryLedger:
    """
    Thread-safe in-memory implementation of the Ledger interface.

    Subclasses persist commits by overriding _persist(), which runs under
    the commit lock before the in-memory state changes.
    """

    def __init__(self) -> None:
        self._maxes: dict[MaxKey, list[ReferenceMax]] = {}
        self._log: list[ProgressionLogEntry] = []
        self._log_keys: set[tuple] = set()
        self._counters: dict[CounterKey, FailureCounter] = {}
        self._commit_lock = threading.RLock()
        self._key_locks: dict[MaxKey, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_current(self, user_id: str, lift_id: str, max_kind: str) -> ReferenceMax | None:
        with self._commit_lock:
            return _latest(list(self._maxes.get((user_id, lift_id, max_kind), [])))

    def max_history(self, user_id: str, lift_id: str, max_kind: str) -> list[ReferenceMax]:
        """All recorded values for a key, oldest first."""
        with self._commit_lock:
            return sorted(self._maxes.get((user_id, lift_id, max_kind), []), key=lambda m: m.effective_at)

    def current_maxes(self, user_id: str) -> list[ReferenceMax]:
        """Current value of every (lift, max kind) the user has."""
        with self._commit_lock:
            keys = [k for k in self._maxes if k[0] == user_id]
            found = [_latest(self._maxes[k]) for k in sorted(keys)]
        return [m for m in found if m is not None]

    def exists(
        self,
        user_id: str,
        progression_id: str,
        trigger_type: str,
        applied_at: datetime,
        lift_id: str | None = None,
    ) -> bool:
        applied_at = as_utc(applied_at, "applied_at")
        if lift_id is not None:
            with self._commit_lock:
                return (user_id, progression_id, lift_id, trigger_type, applied_at) in self._log_keys
        with self._commit_lock:
            return any(
                _entry_matches(e, user_id, progression_id, trigger_type, applied_at, None) for e in self._log
            )

    def list_entries(self, user_id: str, lift_id: str | None = None) -> list[ProgressionLogEntry]:
        with self._commit_lock:
            entries = [e for e in self._log if e.user_id == user_id and (lift_id is None or e.lift_id == lift_id)]
        return sorted(entries, key=lambda e: e.applied_at, reverse=True)

    def get_failure_counter(self, user_id: str, lift_id: str, progression_id: str) -> FailureCounter | None:
        with self._commit_lock:
            return self._counters.get((user_id, lift_id, progression_id))

    # -----------------------------------------------------------------------
    # Auto-commit writes (outside any transaction)
    # -----------------------------------------------------------------------

    def record_new(
        self,
        user_id: str,
        lift_id: str,
        max_kind: str,
        value: float,
        effective_at: datetime,
    ) -> ReferenceMax:
        new_max = ReferenceMax(user_id, lift_id, max_kind, value, effective_at)  # type: ignore[arg-type]
        self._commit([new_max], [])
        return new_max

    def insert(self, entry: ProgressionLogEntry) -> None:
        self._commit([], [entry])

    def save_failure_counter(self, counter: FailureCounter) -> None:
        self._commit([], [], [counter])

    # -----------------------------------------------------------------------
    # Transactions
    # -----------------------------------------------------------------------

    def _lock_for(self, key: MaxKey) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    @contextmanager
    def transaction(self, user_id: str, lift_id: str, max_kind: MaxKind) -> Iterator[UnitOfWork]:
        """
        Serialize read-modify-write on one (user, lift, max kind).

        Yields:
            UnitOfWork staging writes until the block exits normally
        """
        key = (user_id, lift_id, max_kind)
        with self._lock_for(key):
            uow = UnitOfWork(self)
            try:
                yield uow
            except Exception:
                logger.debug("rolled back transaction for %s", key)
                raise
            self._commit(uow.staged_maxes, uow.staged_entries)

    def _persist(
        self,
        maxes: list[ReferenceMax],
        entries: list[ProgressionLogEntry],
        counters: Sequence[FailureCounter] = (),
    ) -> None:
        """Durably record one commit; in-memory ledgers have nothing to do."""

    def _commit(
        self,
        maxes: list[ReferenceMax],
        entries: list[ProgressionLogEntry],
        counters: Sequence[FailureCounter] = (),
    ) -> None:
        if not maxes and not entries and not counters:
            return
        with self._commit_lock:
            keys = [e.key for e in entries]
            for k in keys:
                if k in self._log_keys or keys.count(k) > 1:
                    raise DuplicateLogEntry(f"progression log already has {k[1]}/{k[2]} at {k[4].isoformat()}")
            self._persist(maxes, entries, counters)
            self._apply(maxes, entries, counters)

    def _apply(
        self,
        maxes: list[ReferenceMax],
        entries: list[ProgressionLogEntry],
        counters: Sequence[FailureCounter] = (),
    ) -> None:
        for m in maxes:
            self._maxes.setdefault(m.key, []).append(m)
        for e in entries:
            self._log.append(e)
            self._log_keys.add(e.key)
        for c in counters:
            self._counters[c.key] = c


class UnitOfWork:
    """Transaction-scoped view over an InMemoryLedger."""

    def __init__(self, ledger: InMemoryLedger):
        self._ledger = ledger
        self.staged_maxes: list[ReferenceMax] = []
        self.staged_entries: list[ProgressionLogEntry] = []

    def get_current(self, user_id: str, lift_id: str, max_kind: str) -> ReferenceMax | None:
        committed = self._ledger.get_current(user_id, lift_id, max_kind)
        staged = [m for m in self.staged_maxes if m.key == (user_id, lift_id, max_kind)]
        return _latest(([committed] if committed else []) + staged)

    def record_new(
        self,
        user_id: str,
        lift_id: str,
        max_kind: str,
        value: float,
        effective_at: datetime,
    ) -> ReferenceMax:
        new_max = ReferenceMax(user_id, lift_id, max_kind, value, effective_at)  # type: ignore[arg-type]
        self.staged_maxes.append(new_max)
        return new_max

    def exists(
        self,
        user_id: str,
        progression_id: str,
        trigger_type: str,
        applied_at: datetime,
        lift_id: str | None = None,
    ) -> bool:
        applied_at = as_utc(applied_at, "applied_at")
        if any(_entry_matches(e, user_id, progression_id, trigger_type, applied_at, lift_id) for e in self.staged_entries):
            return True
        return self._ledger.exists(user_id, progression_id, trigger_type, applied_at, lift_id=lift_id)

    def insert(self, entry: ProgressionLogEntry) -> None:
        if self.exists(entry.user_id, entry.progression_id, entry.trigger_type, entry.applied_at, lift_id=entry.lift_id):
            raise DuplicateLogEntry(f"progression log already has {entry.progression_id}/{entry.lift_id}")
        self.staged_entries.append(entry)

    def list_entries(self, user_id: str, lift_id: str | None = None) -> list[ProgressionLogEntry]:
        return self._ledger.list_entries(user_id, lift_id)
