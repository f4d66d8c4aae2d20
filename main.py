# main.py
import logging
from pathlib import Path
from typing import Optional

import typer
from rich import print

from core.dates import FiscalYearStart, fiscal_year_bounds
from db.db_manager import DB_PATH_DEFAULT, DBManager
from kernel.invoice_repo import InvoiceRepoDB
from services.constants import FecConfig
from services.fec_exporter import FecExporter, validate_balanced

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

MIN_FISCAL_YEAR = 2000
MAX_FISCAL_YEAR = 2100

app = typer.Typer(add_completion=False, help="Invoicing ledger CLI")


@app.callback()
def configure(db: str = typer.Option(DB_PATH_DEFAULT, "--db", help="SQLite database path")) -> None:
    DBManager.configure(db)


@app.command("init-db")
def init_db() -> None:
    """Create the schema and apply pending migrations."""
    logger.info("Initializing database...")
    DBManager.initialize()
    print("[green]Database initialized.[/green]")


@app.command("export-fec")
def export_fec(
    fiscal_year: int = typer.Argument(..., help="Fiscal year to export, e.g. 2025"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File to write; stdout when omitted"),
    issuer_id: Optional[int] = typer.Option(None, "--issuer-id", help="Only this issuer's invoices"),
    fiscal_start_month: int = typer.Option(1, "--fiscal-start-month", min=1, max=12),
    fiscal_start_day: int = typer.Option(1, "--fiscal-start-day", min=1, max=31),
    include_payments: bool = typer.Option(False, "--include-payments", help="Add bank journal rows for payments"),
) -> None:
    """Export the FEC ledger of one fiscal year."""
    if not MIN_FISCAL_YEAR <= fiscal_year <= MAX_FISCAL_YEAR:
        print(f"[red]Invalid fiscal year {fiscal_year}: expected {MIN_FISCAL_YEAR}-{MAX_FISCAL_YEAR}[/red]")
        raise typer.Exit(code=1)
    try:
        start = FiscalYearStart(fiscal_start_month, fiscal_start_day)
    except ValueError as ex:
        print(f"[red]{ex}[/red]")
        raise typer.Exit(code=1)

    first, last = fiscal_year_bounds(fiscal_year, start)
    exporter = FecExporter(InvoiceRepoDB(), FecConfig(include_payments=include_payments))
    text = exporter.export(first, last, issuer_id)

    errors = validate_balanced(text)
    if errors:
        for e in errors:
            print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)

    if output is None:
        typer.echo(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")
    rows = text.count("\n")
    print(f"FEC {fiscal_year} ({first}..{last}): {rows} rows -> {output}")


def main():
    app()


if __name__ == "__main__":
    main()
