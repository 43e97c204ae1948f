"""Command-line interface for ADIF Ledger.

Commands cover initializing the database, ADIF import/export, listing QSOs,
managing the contacts QSOs link to, and a few logbook statistics.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from adif_ledger.errors import LogbookError
from adif_ledger.logbook import Logbook
from adif_ledger.storage import (
    APP_NAME,
    add_contact,
    count_qsos,
    count_unique_countries,
    create_db_and_tables,
    get_engine,
    latest_qso_time,
    list_qsos,
    session_scope,
)

app = typer.Typer(add_completion=False, help=f"{APP_NAME} - ADIF logbook with merge-on-import")
console = Console()


# Utilities

def _parse_day(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD (or YYYYMMDD) date option.

    Raises typer.BadParameter for invalid formats.
    """
    if not value:
        return None
    for fmt in ("%Y-%m-%d", "%Y%m%d"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise typer.BadParameter(f"Unrecognized date format: {value} (expected YYYY-MM-DD)")


def _logbook() -> Logbook:
    """Ensure the database and tables exist (idempotent) and return a Logbook.

    Raises typer.Exit on database creation failure.
    """
    try:
        engine = create_db_and_tables(get_engine())
    except LogbookError as e:
        console.print(f"[red]Error creating database: {e}[/red]")
        raise typer.Exit(1) from e
    return Logbook(engine)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show import/export progress"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command()
def init() -> None:
    """Create the database in your user data directory (or ADIF_LEDGER_DB_PATH)."""
    try:
        engine = create_db_and_tables(get_engine())
    except LogbookError as e:
        console.print(f"[red]Error initializing database: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(
        f"Database ready at: [bold]{engine.url.render_as_string(hide_password=True)}[/bold]"
    )


@app.command("import-adif")
def import_adif(
    src: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="ADIF file to import",
    ),
) -> None:
    """Import QSOs from an ADIF file, merging into QSOs already logged."""
    logbook = _logbook()
    try:
        result = logbook.import_adif(src.read_bytes())
    except LogbookError as e:
        console.print(f"[red]Error importing ADIF: {e}[/red]")
        console.print(f"{e.processed} QSO(s) were stored before the error.")
        raise typer.Exit(1) from e
    console.print(
        f"Processed {result.processed} QSOs "
        f"({result.inserted} new, {result.updated} merged, {result.skipped} skipped). "
        f"Linked {result.linked} to contacts."
    )
    if result.rejected_fields:
        console.print(f"[yellow]{result.rejected_fields} unparseable field(s) were ignored.[/yellow]")


@app.command()
def export(
    output: Path = typer.Option(
        ...,
        exists=False,
        dir_okay=False,
        writable=True,
        help="ADIF file to write",
    ),
    from_date: Optional[str] = typer.Option(None, "--from", help="First QSO date, YYYY-MM-DD"),
    to_date: Optional[str] = typer.Option(None, "--to", help="Last QSO date, YYYY-MM-DD"),
) -> None:
    """Write QSOs (optionally within a date range) to an ADIF file on disk."""
    start = _parse_day(from_date)
    end = _parse_day(to_date)
    logbook = _logbook()
    try:
        data = logbook.export_adif(start, end)
        output.write_bytes(data)
    except (LogbookError, OSError) as e:
        console.print(f"[red]Error exporting ADIF: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"Exported {data.count(b'<EOR>')} QSOs to {output}")


@app.command("list")
def list_cmd(
    limit: int = typer.Option(20, min=1, max=1000, help="Max QSOs to show"),
    call: Optional[str] = typer.Option(None, help="Filter by callsign contains"),
) -> None:
    """Display recent QSOs in a table, optionally filtering by callsign substring."""
    logbook = _logbook()
    try:
        with session_scope(logbook.engine) as session:
            rows = list_qsos(session, limit=limit, call=call)
    except LogbookError as e:
        console.print(f"[red]Error listing QSOs: {e}[/red]")
        raise typer.Exit(1) from e
    if not rows:
        console.print("No QSOs found.")
        return
    table = Table(title="Recent QSOs", show_lines=False)
    table.add_column("UTC")
    table.add_column("Call")
    table.add_column("Band")
    table.add_column("Mode")
    table.add_column("Country")
    table.add_column("Linked", justify="center")
    for q in rows:
        table.add_row(
            q.start_at.strftime("%Y-%m-%d %H:%M:%S"),
            q.call,
            q.band or "",
            q.mode,
            q.country or "",
            "yes" if q.contact_id else "",
        )
    console.print(table)


@app.command()
def link() -> None:
    """Link unlinked QSOs to contacts with the same callsign."""
    logbook = _logbook()
    try:
        linked = logbook.link_unlinked()
    except LogbookError as e:
        console.print(f"[red]Error linking QSOs: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"Linked {linked} QSO(s) to contacts")


@app.command("add-contact")
def add_contact_cmd(
    callsign: str = typer.Argument(..., help="Contact callsign, e.g., K1ABC"),
    name: Optional[str] = typer.Option(None, help="Display name"),
) -> None:
    """Add a contact that QSOs can be linked to by callsign."""
    logbook = _logbook()
    try:
        with session_scope(logbook.engine) as session:
            contact = add_contact(session, callsign, name)
            contact_id, contact_call = contact.id, contact.callsign
    except LogbookError as e:
        console.print(f"[red]Error adding contact: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"Saved contact id={contact_id} ({contact_call})")


@app.command()
def stats(json_out: bool = typer.Option(False, help="Output as JSON")) -> None:
    """Show QSO totals, unique countries and the latest QSO time."""
    logbook = _logbook()
    try:
        with session_scope(logbook.engine) as session:
            total = count_qsos(session)
            countries = count_unique_countries(session)
            latest = latest_qso_time(session)
    except LogbookError as e:
        console.print(f"[red]Error computing stats: {e}[/red]")
        raise typer.Exit(1) from e
    data = {
        "total_qsos": total,
        "unique_countries": countries,
        "latest_qso": latest.isoformat() if latest else None,
    }
    if json_out:
        console.print_json(data=data)
        return
    table = Table(title="Logbook")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total QSOs", str(total))
    table.add_row("Unique countries", str(countries))
    table.add_row("Latest QSO (UTC)", latest.strftime("%Y-%m-%d %H:%M:%S") if latest else "n/a")
    console.print(table)


def main() -> None:  # pragma: no cover - exercised via CLI
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
