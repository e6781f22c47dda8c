"""Maintenance commands. Both are idempotent and safe to re-run."""
from __future__ import annotations

import json
import logging
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from dealdesk.config import get_settings
from dealdesk.db import init_db, session_scope
from dealdesk.inventory import reconcile_legacy_hierarchy
from dealdesk.licenses import migrate_all

app = typer.Typer(help="DealDesk maintenance commands")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db_url: str | None = typer.Option(None, "--db-url", help="SQLAlchemy URL; defaults to DEALDESK_DATABASE_URL."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    ctx.obj = {"json_output": json_output, "db_url": db_url or get_settings().database_url}
    _configure_logging(verbose=verbose, json_output=json_output)


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if ctx.obj["json_output"]:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for key, value in payload.items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(Panel(table, title=title, border_style="cyan"))


@app.command("reconcile-pages")
def reconcile_pages_command(ctx: typer.Context) -> None:
    """Give every asset a Homepage and move page-less positions and deals onto it."""
    init_db(ctx.obj["db_url"])
    with session_scope() as session:
        report = reconcile_legacy_hierarchy(session)
    payload = report.as_dict()
    if not ctx.obj["json_output"] and not report.changed:
        console.print("[green]Nothing to reconcile.[/green]")
    _print("reconcile-pages", payload, ctx)


@app.command("migrate-licenses")
def migrate_licenses_command(ctx: typer.Context) -> None:
    """Rewrite legacy regulator license codes to ISO country codes."""
    init_db(ctx.obj["db_url"])
    with session_scope() as session:
        report = migrate_all(session)
    _print("migrate-licenses", report.as_dict(), ctx)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
