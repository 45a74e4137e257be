"""
CLI entry point using Typer.

Provides commands for running a strength program:
- programs: List available programs
- resolve: Show the concrete sets for a training day
- set-max / show-maxes: Record and view reference maxes
- trigger session|week|cycle|set: Report training events, apply progressions
- apply: Apply one progression by hand
- history: Show applied progressions
"""

import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from .app import app
from .commands import maxes, progression, resolve  # noqa: F401  (registers commands)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log engine decisions (progression outcomes, cache use)"),
    ] = False,
) -> None:
    """
    Strength program engine: resolve prescribed workouts and progress reference maxes.
    """
    # Per-item failures are already shown in tables; only log them on request
    logger = logging.getLogger("lift_engine")
    logger.handlers.clear()
    logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False, markup=False))
    logger.setLevel(logging.DEBUG if verbose else logging.ERROR)


if __name__ == "__main__":
    app()
