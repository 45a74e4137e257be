"""
Collaborator interfaces consumed by the engines.

Implementations live outside the core: lift_engine.io ships in-process
adapters (InMemoryLedger, JsonlLedger, ProgramCatalog), and a web layer
would provide database-backed ones.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol

from .lookups import DailyEntry, RotationEntry, WeeklyEntry
from .models import FailureCounter, MaxKind, ProgramProgression, ProgressionLogEntry, ReferenceMax
from .progressions import Progression


class ReferenceMaxStore(Protocol):
    """Read/write access to reference maxes."""

    def get_current(self, user_id: str, lift_id: str, max_kind: str) -> ReferenceMax | None:
        """Return the max with the latest effective_at, or None."""
        ...

    def record_new(
        self,
        user_id: str,
        lift_id: str,
        max_kind: str,
        value: float,
        effective_at: datetime,
    ) -> ReferenceMax:
        """Store a new max value superseding the current one."""
        ...


class LookupStore(Protocol):
    """Lookup table entries by table id and key."""

    def get_weekly_entry(self, lookup_id: str, week_number: int) -> WeeklyEntry | None: ...

    def get_daily_entry(self, lookup_id: str, day_identifier: str) -> DailyEntry | None: ...

    def get_rotation_entry(self, lookup_id: str, position: int) -> RotationEntry | None: ...


class ProgramConfig(Protocol):
    """Program enrollment and progression configuration."""

    def get_enrolled_program(self, user_id: str) -> str | None: ...

    def get_program_lifts(self, program_id: str) -> list[str]: ...

    def get_program_progressions(self, program_id: str, trigger_type: str) -> list[ProgramProgression]:
        """Enabled links whose progression fires on trigger_type, priority ascending."""
        ...

    def get_progression(self, progression_id: str) -> Progression | None: ...


class AuditLogStore(Protocol):
    """Progression audit log with a unique idempotency key."""

    def exists(
        self,
        user_id: str,
        progression_id: str,
        trigger_type: str,
        applied_at: datetime,
        lift_id: str | None = None,
    ) -> bool:
        """True if an entry with this key is recorded (lift_id=None matches any lift)."""
        ...

    def insert(self, entry: ProgressionLogEntry) -> None:
        """Append an entry; raises DuplicateLogEntry on a key collision."""
        ...

    def list_entries(self, user_id: str, lift_id: str | None = None) -> list[ProgressionLogEntry]:
        """Entries for a user, newest first."""
        ...


class FailureCounterStore(Protocol):
    """Consecutive-failure streaks keyed by (user, lift, progression)."""

    def get_failure_counter(self, user_id: str, lift_id: str, progression_id: str) -> FailureCounter | None: ...

    def save_failure_counter(self, counter: FailureCounter) -> None:
        """Replace the stored counter for counter.key."""
        ...


class UnitOfWork(ReferenceMaxStore, AuditLogStore, Protocol):
    """Transaction-scoped view of a Ledger; writes become visible on commit."""


class Ledger(ReferenceMaxStore, AuditLogStore, FailureCounterStore, Protocol):
    """Max store, audit log and failure counters sharing one transaction boundary."""

    def transaction(self, user_id: str, lift_id: str, max_kind: MaxKind) -> AbstractContextManager[UnitOfWork]:
        """
        Open a transaction scoped to (user, lift, max kind).

        Leaving the block normally commits all staged writes atomically;
        leaving it with an exception discards them.
        """
        ...
