from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from qtrack.config import get_settings
from qtrack.domain.errors import QTrackError
from qtrack.domain.schema import TableSpec
from qtrack.infrastructure.store import DataStore
from qtrack.reporter import print_records, print_status
from qtrack.utils.logging import configure_logging

app = typer.Typer(help="QTrack local store maintenance CLI.")

T = TypeVar("T")


def _run(action: Callable[[DataStore], Awaitable[T]], db_path: Optional[str]) -> T:
    """Open a store, run ``action`` against it and close it again."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def _main() -> T:
        async with DataStore(settings=settings, db_path=db_path) as store:
            return await action(store)

    try:
        return asyncio.run(_main())
    except QTrackError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


DB_OPTION = typer.Option(None, "--db", "-d", help="Database file (default from settings).")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_path} name={settings.db_name} version={settings.db_version} | "
        f"max_retries={settings.max_retries} timeout={settings.timeout_seconds}s"
    )


@app.command()
def init(db_path: Optional[str] = DB_OPTION) -> None:
    """
    Create or migrate the database and show its status.
    """

    async def _init(store: DataStore) -> None:
        print_status(store.status())
        report = store.last_migration
        if report is not None and report.migrated:
            typer.echo(
                f"Migrated v{report.from_version} -> v{report.to_version}: "
                f"created={report.created_tables or '-'} added={report.added_columns or '-'}"
            )

    _run(_init, db_path)


@app.command("add-user")
def add_user(
    username: str = typer.Argument(..., help="Login name (unique)."),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True
    ),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Role (default: utilisateur)."),
    email: Optional[str] = typer.Option(None, "--email", "-e"),
    db_path: Optional[str] = DB_OPTION,
) -> None:
    """
    Register a user; the password is stored as a SHA-256 digest.
    """
    user: dict[str, Any] = {"username": username, "password": password}
    if role is not None:
        user["role"] = role
    if email is not None:
        user["email"] = email

    key = _run(lambda store: store.add_user(user), db_path)
    typer.echo(f"User '{username}' created with id {key}.")


@app.command("list")
def list_records(
    table: str = typer.Argument(..., help="users, nonconformities or correctiveActions."),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table."),
    db_path: Optional[str] = DB_OPTION,
) -> None:
    """
    List every record of a table.
    """

    async def _list(store: DataStore) -> tuple[TableSpec, list[dict[str, Any]]]:
        records = await store.list(table)
        return store.schema.table(table), records

    spec, records = _run(_list, db_path)
    if as_json:
        hidden = {c.name for c in spec.columns if c.is_encrypted}
        payload = [{k: v for k, v in r.items() if k not in hidden} for r in records]
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        print_records(spec, records)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
