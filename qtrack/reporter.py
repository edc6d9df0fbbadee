from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from qtrack.domain.models import StoreStatus
from qtrack.domain.schema import TableSpec


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]-[/dim]"
    return str(value)


def print_records(
    table_spec: TableSpec,
    records: List[Dict[str, Any]],
    console: Optional[Console] = None,
) -> None:
    """
    Render the records of one table as a rich table.

    Encrypted columns are always left out.
    """
    console = console or Console()

    if not records:
        console.print(f"[yellow]No records in '{table_spec.name}'.[/yellow]")
        return

    columns = [c for c in table_spec.columns if not c.is_encrypted]
    table = Table(
        title=f"{table_spec.name}",
        box=box.ROUNDED,
        caption=f"{len(records)} record(s), primary-key order",
    )
    for column in columns:
        if column.is_primary_key:
            table.add_column(column.name, justify="right", style="cyan", no_wrap=True)
        elif column.enum_options:
            table.add_column(column.name, style="magenta")
        else:
            table.add_column(column.name)

    for record in records:
        table.add_row(*(_cell(record.get(c.name)) for c in columns))

    console.print(table)


def print_status(status: StoreStatus, console: Optional[Console] = None) -> None:
    """Render the store status as a two-column table."""
    console = console or Console()
    table = Table(title="QTrack store", box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    state = "[green]yes[/green]" if status.initialized else "[red]no[/red]"
    table.add_row("Initialized", state)
    table.add_row("Store", status.store_name)
    table.add_row("Version", str(status.version))
    table.add_row("Tables", ", ".join(status.table_names) or "-")
    console.print(table)


__all__ = ["print_records", "print_status"]
