"""
CLI view formatters using Rich for pretty console output.

Handles table formatting for resolved workouts, progression outcomes,
reference maxes and the progression log.
"""

from rich.console import Console
from rich.table import Table

from ..core.models import BatchItemResult, ProgressionLogEntry, ProgressionOutcome, ReferenceMax, ResolvedPrescription
from ..io.program_catalog import ProgramDefinition

console = Console()

_STATUS_STYLE = {
    "APPLIED": "green",
    "SKIPPED_IDEMPOTENT": "yellow",
    "SKIPPED_NOT_APPLICABLE": "dim",
    "FAILED": "red",
}


def _fmt_weight(weight: float | None) -> str:
    if weight is None:
        return "-"
    return f"{weight:g}"


def _fmt_sets(result: ResolvedPrescription) -> str:
    """
    Compact set notation, grouping consecutive identical sets.

    Example: 135x5, 185x3, 225x5 ×3, 225x5+
    """
    groups: list[tuple[float, int, bool, bool, int]] = []
    for s in result.sets:
        if groups and groups[-1][:4] == (s.weight, s.target_reps, s.is_work_set, s.is_amrap):
            w, r, work, amrap, n = groups[-1]
            groups[-1] = (w, r, work, amrap, n + 1)
        else:
            groups.append((s.weight, s.target_reps, s.is_work_set, s.is_amrap, 1))
    parts = []
    for weight, reps, work, amrap, count in groups:
        text = f"{weight:g}x{reps}" + ("+" if amrap else "") + (f" ×{count}" if count > 1 else "")
        parts.append(text if work else f"[dim]{text}[/dim]")
    return ", ".join(parts)


def print_programs(programs: list[ProgramDefinition]) -> None:
    """Print the available programs."""
    table = Table(title="Programs")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Days")
    table.add_column("Lifts")
    table.add_column("Cycle", justify="right")
    for p in sorted(programs, key=lambda p: p.id):
        table.add_row(p.id, p.name, ", ".join(p.days), ", ".join(p.lifts), f"{p.cycle_weeks}w")
    console.print(table)


def print_resolved(day_name: str, results: list[BatchItemResult]) -> None:
    """
    Print a resolved training day.

    Failed items are shown in place with their error so the rest of the
    day stays usable.

    Args:
        day_name: Heading for the table
        results: Batch resolution output, in prescription order
    """
    table = Table(title=day_name)
    table.add_column("Lift", style="cyan")
    table.add_column("%", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Sets")
    table.add_column("Rest", justify="right")
    table.add_column("Notes")

    for item in results:
        r = item.result
        if not item.ok or r is None:
            table.add_row(item.prescription_id, "", "", f"[red]{item.error_kind}: {item.error}[/red]", "", "")
            continue
        pct = f"{r.percentage:g}" if r.percentage is not None else "-"
        rest = f"{r.rest_seconds}s" if r.rest_seconds is not None else ""
        notes = r.notes
        if r.intensity_level:
            notes = f"[{r.intensity_level.lower()}] {notes}".strip()
        table.add_row(r.lift_id, pct, _fmt_weight(r.reference_max), _fmt_sets(r), rest, notes)

    console.print(table)


def print_outcomes(outcomes: list[ProgressionOutcome]) -> None:
    """Print one row per evaluated (progression, lift) pair."""
    if not outcomes:
        print_info("No progressions configured for this event.")
        return
    table = Table(title="Progressions")
    table.add_column("Progression", style="cyan")
    table.add_column("Lift")
    table.add_column("Status")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Reason")
    for o in outcomes:
        style = _STATUS_STYLE.get(o.status, "")
        before = after = ""
        if o.result is not None:
            before = _fmt_weight(o.result.previous_value)
            after = _fmt_weight(o.result.new_value) if o.applied else ""
        reason = o.reason + (" (retryable)" if o.retryable else "")
        table.add_row(o.progression_id, o.lift_id, f"[{style}]{o.status}[/{style}]", before, after, reason)
    console.print(table)


def print_maxes(maxes: list[ReferenceMax]) -> None:
    """Print current reference maxes."""
    if not maxes:
        print_info("No maxes recorded yet. Use 'lift-engine set-max'.")
        return
    table = Table(title="Current maxes")
    table.add_column("Lift", style="cyan")
    table.add_column("Kind")
    table.add_column("Value", justify="right")
    table.add_column("Since")
    for m in maxes:
        table.add_row(m.lift_id, m.max_kind, _fmt_weight(m.value), m.effective_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


def print_history(entries: list[ProgressionLogEntry]) -> None:
    """Print progression log entries, newest first."""
    if not entries:
        print_info("No progressions applied yet.")
        return
    table = Table(title="Progression history")
    table.add_column("Applied", style="dim")
    table.add_column("Lift", style="cyan")
    table.add_column("Progression")
    table.add_column("Trigger")
    table.add_column("Change", justify="right")
    for e in entries:
        sign = "+" if e.delta >= 0 else ""
        table.add_row(
            e.applied_at.strftime("%Y-%m-%d %H:%M"),
            e.lift_id,
            e.progression_id,
            e.trigger_type,
            f"{e.previous_value:g} → {e.new_value:g} ({sign}{e.delta:g})",
        )
    console.print(table)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]Error: {message}[/red]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]Warning: {message}[/yellow]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]{message}[/blue]")
