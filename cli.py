import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas
import typer

from catalog import BOOK_COLUMNS, CatalogStore, Saved
from settings import get_settings

app = typer.Typer(
    name="book-catalog",
    help="Book catalog web application.",
    no_args_is_help=True,
)

SPREADSHEET_SUFFIXES = {".xlsx", ".xls"}


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_spreadsheet(path: Path) -> pandas.DataFrame:
    """Read a CSV or Excel file of books, keeping only the catalog columns."""
    if path.suffix.lower() in SPREADSHEET_SUFFIXES:
        frame = pandas.read_excel(path, dtype=str)
    else:
        frame = pandas.read_csv(path, dtype=str)
    frame.columns = [str(column).strip().lower() for column in frame.columns]
    for column in BOOK_COLUMNS:
        if column not in frame.columns:
            frame[column] = None
    return frame[BOOK_COLUMNS]


def save_spreadsheet(frame: pandas.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in SPREADSHEET_SUFFIXES:
        frame.to_excel(path, index=False)
    else:
        frame.to_csv(path, index=False)


def _row_fields(row: Dict[str, Any]) -> Dict[str, Optional[str]]:
    return {column: (None if pandas.isna(row.get(column)) else row.get(column)) for column in BOOK_COLUMNS}


def _open_store(db: Optional[Path]) -> CatalogStore:
    return CatalogStore(db_path=db)


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind"),
    port: Optional[int] = typer.Option(None, help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the web server."""
    import uvicorn

    settings = get_settings()
    configure_logging()
    uvicorn.run(
        "server:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@app.command("init-db")
def init_db(db: Optional[Path] = typer.Option(None, help="SQLite database path")):
    """Create the books table if it does not exist."""
    configure_logging()
    store = _open_store(db)
    try:
        typer.echo(f"Catalog ready at {store.db_path} ({store.count()} books)")
    finally:
        store.close()


@app.command("import")
def import_books(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or Excel file"),
    db: Optional[Path] = typer.Option(None, help="SQLite database path"),
):
    """Add every valid row of a spreadsheet to the catalog."""
    configure_logging()
    frame = load_spreadsheet(path)
    store = _open_store(db)
    added = 0
    skipped: List[str] = []
    try:
        for index, row in enumerate(frame.to_dict(orient="records"), start=2):
            outcome = store.create_book(_row_fields(row))
            if isinstance(outcome, Saved):
                added += 1
                continue
            messages = "; ".join(error.message for error in outcome.errors)
            skipped.append(f"row {index}: {messages}")
    finally:
        store.close()

    for line in skipped:
        typer.echo(f"Skipped {line}", err=True)
    typer.echo(f"Imported {added} book(s), skipped {len(skipped)}.")


@app.command("export")
def export_books(
    path: Path = typer.Argument(..., dir_okay=False, help="CSV or Excel file to write"),
    db: Optional[Path] = typer.Option(None, help="SQLite database path"),
):
    """Write the whole catalog, newest first, to a spreadsheet."""
    configure_logging()
    store = _open_store(db)
    try:
        records = store.all_books()
    finally:
        store.close()
    frame = pandas.DataFrame(records, columns=["id"] + BOOK_COLUMNS + ["created_at", "updated_at"])
    save_spreadsheet(frame, path)
    typer.echo(f"Exported {len(frame)} book(s) to {path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
