"""
JSONL-backed ledger for reference maxes and the progression log.

Each committed transaction is appended as exactly one JSON line:

    {"committed_at": "...", "maxes": [...], "entries": [...]}

Failure counter updates add a "counters" list; replay keeps the last state
of each counter.  A commit is all-or-nothing at line granularity.  A torn
final line (for example after a crash mid-write) is skipped with a warning
on load, and the next commit starts on a fresh line so it is never merged
into the torn one.
"""

import json
import os
import warnings
from collections.abc import Sequence
from pathlib import Path

from ..core.engine.config_loader import get_user_dir
from ..core.errors import TransactionFailed, ValidationFailed
from ..core.models import FailureCounter, ProgressionLogEntry, ReferenceMax, utc_now
from .memory_store import InMemoryLedger
from .serializers import (
    dict_to_failure_counter,
    dict_to_log_entry,
    dict_to_reference_max,
    failure_counter_to_dict,
    format_timestamp,
    log_entry_to_dict,
    reference_max_to_dict,
    to_json_line,
)

LEDGER_FILENAME = "ledger.jsonl"


class JsonlLedger(InMemoryLedger):
    """
    Ledger persisted to a JSONL file.

    The file is replayed into memory on construction; every commit is
    appended and fsync'ed before it becomes visible to readers.
    """

    def __init__(self, ledger_path: str | Path):
        """
        Initialize the ledger.

        Args:
            ledger_path: Path to the JSONL ledger file (need not exist yet)
        """
        super().__init__()
        self.ledger_path = Path(ledger_path)
        self.skipped_lines = 0
        if self.ledger_path.exists():
            self._load()

    def file_exists(self) -> bool:
        """Check if the ledger file exists."""
        return self.ledger_path.exists()

    def init(self) -> None:
        """
        Create an empty ledger file if it doesn't exist.

        Creates parent directories if needed.
        """
        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.ledger_path.exists():
            self.ledger_path.touch()

    def _load(self) -> None:
        with open(self.ledger_path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    maxes = [dict_to_reference_max(m) for m in record.get("maxes", [])]
                    entries = [dict_to_log_entry(e) for e in record.get("entries", [])]
                    counters = [dict_to_failure_counter(c) for c in record.get("counters", [])]
                except (json.JSONDecodeError, ValidationFailed, AttributeError, TypeError) as e:
                    self.skipped_lines += 1
                    warnings.warn(
                        f"lift-engine: skipping invalid ledger line {line_num} in {self.ledger_path} ({e})",
                        stacklevel=2,
                    )
                    continue
                self._apply(maxes, entries, counters)

    def _ends_mid_line(self) -> bool:
        """True if the file is non-empty and its last byte is not a newline."""
        if not self.ledger_path.exists():
            return False
        with open(self.ledger_path, "rb") as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return False
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    def _persist(
        self,
        maxes: list[ReferenceMax],
        entries: list[ProgressionLogEntry],
        counters: Sequence[FailureCounter] = (),
    ) -> None:
        record = {
            "committed_at": format_timestamp(utc_now()),
            "maxes": [reference_max_to_dict(m) for m in maxes],
            "entries": [log_entry_to_dict(e) for e in entries],
        }
        if counters:
            record["counters"] = [failure_counter_to_dict(c) for c in counters]
        try:
            self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
            prefix = "\n" if self._ends_mid_line() else ""
            with open(self.ledger_path, "a", encoding="utf-8") as f:
                f.write(prefix + to_json_line(record) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise TransactionFailed(f"could not write {self.ledger_path}: {e}") from e


def get_default_ledger_path() -> Path:
    """
    Get the default ledger file path.

    Returns:
        ~/.lift-engine/ledger.jsonl
    """
    return get_user_dir() / LEDGER_FILENAME
