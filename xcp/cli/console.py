"""Console utilities for Rich output."""

from __future__ import annotations

import contextlib
import sys
from typing import Any, Iterator

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.status import Status
from rich.table import Table


def create_console() -> Console:
    """Create a Rich Console writing to the current stdout."""
    return Console(file=sys.stdout, force_terminal=None, safe_box=True)


@contextlib.contextmanager
def spinner(message: str, console: Console | None = None) -> Iterator[Status]:
    """Show a spinner while a blocking step runs.

    Yields:
        Status object that can be updated

    """
    if console is None:
        console = create_console()
    status = Status(message, console=console, spinner="dots")
    status.start()
    try:
        yield status
    finally:
        status.stop()


def print_success(message: str, console: Console | None = None, **kwargs: Any) -> None:
    """Print a success message."""
    (console or create_console()).print(f"[green]✓[/green] {message}", **kwargs)


def print_error(message: str, console: Console | None = None, **kwargs: Any) -> None:
    """Print an error message."""
    (console or create_console()).print(f"[red]✗[/red] {message}", **kwargs)


def print_warning(message: str, console: Console | None = None, **kwargs: Any) -> None:
    """Print a warning message."""
    (console or create_console()).print(f"[yellow]⚠[/yellow] {message}", **kwargs)


def print_info(message: str, console: Console | None = None, **kwargs: Any) -> None:
    """Print an informational message."""
    (console or create_console()).print(f"[cyan]ℹ[/cyan] {message}", **kwargs)


def create_table(
    title: str | None = None,
    border_style: str = "blue",
    header_style: str = "bold cyan",
    **kwargs: Any,
) -> Table:
    """Create a Rich table with the CLI's default styling."""
    return Table(
        title=title,
        border_style=border_style,
        header_style=header_style,
        **kwargs,
    )


def print_panel(
    content: str,
    title: str | None = None,
    console: Console | None = None,
    border_style: str = "blue",
    **kwargs: Any,
) -> None:
    """Print a Rich panel."""
    panel = Panel(
        content,
        title=title,
        border_style=border_style,
        title_align="left",
        expand=False,
        **kwargs,
    )
    (console or create_console()).print(panel)


def print_details(
    rows: list[tuple[str, Any]],
    console: Console | None = None,
    value_style: str = "yellow",
) -> None:
    """Print aligned ``label: value`` lines."""
    console = console or create_console()
    width = max((len(label) for label, _ in rows), default=0) + 1
    for label, value in rows:
        console.print(
            f"  {label + ':':<{width}} [{value_style}]{escape(str(value))}[/{value_style}]",
            soft_wrap=True,
        )


def print_table(table: Table, console: Console | None = None) -> None:
    """Print a table built with :func:`create_table`."""
    (console or create_console()).print(table)


__all__ = [
    "create_console",
    "create_table",
    "escape",
    "print_details",
    "print_error",
    "print_info",
    "print_panel",
    "print_success",
    "print_table",
    "print_warning",
    "spinner",
]
