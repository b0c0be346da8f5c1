import json
import os
import subprocess
import sys
from datetime import date, timedelta
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.prompt import Confirm

from libdash.analytics import Dashboard
from libdash.backup import BackupManager
from libdash.config import settings
from libdash.dispatcher import MockApiDispatcher
from libdash.errors import ValidationError
from libdash.library import LibraryStore, RecordStore
from libdash.logging_setup import configure_logging
from libdash.storage import SQLiteStorage
from libdash.utils.ui_helpers import (
    print_json,
    print_ranking,
    print_record,
    print_records,
    print_stats_result,
    set_output_mode,
)

APP_NAME = "Library Dashboard CLI"

console = Console(stderr=True)

# CLI names for the stored collections
COLLECTIONS = {
    "books": "books",
    "borrowers": "borrowers",
    "librarians": "librarians",
    "borrowings": "borrowings",
    "feedback": "feedback",
    "research": "research_papers",
    "applications": "membership_applications",
}


class StoreManager:
    """One LibraryStore per database file for the lifetime of the process."""

    _instance: Optional[LibraryStore] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> LibraryStore:
        current_db = settings.db_file
        if cls._instance is None or current_db != cls._db_file_snapshot:
            cls._instance = LibraryStore(SQLiteStorage(current_db))
            cls._db_file_snapshot = current_db
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None
        cls._db_file_snapshot = None


def _records(collection: str) -> RecordStore:
    attr = COLLECTIONS.get(collection)
    if attr is None:
        print(f"Unknown collection: {collection}. Use one of: {', '.join(COLLECTIONS)}")
        raise typer.Exit(code=1)
    return getattr(StoreManager.get_instance(), attr)


def _create(records: RecordStore, payload: Dict[str, Any], label: str) -> None:
    try:
        record = records.create({k: v for k, v in payload.items() if v is not None})
    except ValidationError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Successfully added {label} with ID {record['id']}")


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite file holding the library data"),
):
    """Global CLI options (output mode, database file)."""
    configure_logging()
    if output:
        set_output_mode(output)
    if db_file:
        settings.db_file = db_file


@app.command("list")
def cli_list(
    collection: str = typer.Argument("books"),
    category: Optional[str] = typer.Option(None, help="Borrower category filter"),
    borrower_id: Optional[int] = typer.Option(None, "--borrower-id", help="Borrowings of one borrower"),
):
    """List the records of a collection."""
    records = _records(collection)
    if category and collection == "borrowers":
        items = [b for b in records.list() if str(b.get("category") or "").lower() == category.lower()]
    elif borrower_id is not None and collection == "borrowings":
        items = records.find(borrowerId=borrower_id)
    else:
        items = records.list()
    print_records(COLLECTIONS[collection], items)


@app.command("show")
def cli_show(collection: str, record_id: int):
    """Show one record."""
    record = _records(collection).get(record_id)
    if record is None:
        print(f"No record with ID {record_id} in {collection}.")
        raise typer.Exit(code=1)
    print_record(record)


@app.command("add-book")
def cli_add_book(
    name: str = typer.Option(..., "--name"),
    author: Optional[str] = typer.Option(None),
    publisher: Optional[str] = typer.Option(None),
    copies: Optional[int] = typer.Option(None),
    genres: Optional[str] = typer.Option(None, help="Comma separated genres"),
    cabinet: Optional[str] = typer.Option(None),
    shelf: Optional[str] = typer.Option(None),
    num: Optional[str] = typer.Option(None),
):
    """Add a book."""
    _create(StoreManager.get_instance().books, {
        "name": name, "author": author, "publisher": publisher, "copies": copies,
        "genres": genres, "cabinet": cabinet, "shelf": shelf, "num": num,
    }, "book")


@app.command("add-borrower")
def cli_add_borrower(
    name: str = typer.Option(..., "--name"),
    category: str = typer.Option(..., "--category", help="primary | middle | secondary | university | graduate"),
    phone: Optional[str] = typer.Option(None),
    email: Optional[str] = typer.Option(None),
    favorite_books: Optional[str] = typer.Option(None, "--favorite-books"),
):
    """Add a borrower."""
    _create(StoreManager.get_instance().borrowers, {
        "name": name, "category": category, "phone": phone, "email": email, "favoriteBooks": favorite_books,
    }, "borrower")


@app.command("add-librarian")
def cli_add_librarian(
    name: str = typer.Option(..., "--name"),
    librarian_id: Optional[str] = typer.Option(None, "--librarian-id"),
    phone: Optional[str] = typer.Option(None),
    email: Optional[str] = typer.Option(None),
):
    """Add a librarian."""
    _create(StoreManager.get_instance().librarians, {
        "name": name, "librarianId": librarian_id, "phone": phone, "email": email,
        "employmentStatus": "active",
    }, "librarian")


@app.command("borrow")
def cli_borrow(
    borrower_id: int = typer.Option(..., "--borrower-id"),
    librarian_id: int = typer.Option(..., "--librarian-id"),
    book_id: Optional[int] = typer.Option(None, "--book-id"),
    research_id: Optional[int] = typer.Option(None, "--research-id"),
    days: int = typer.Option(14, help="Loan period in days"),
):
    """Record a new borrowing of a book or research paper."""
    today = date.today()
    _create(StoreManager.get_instance().borrowings, {
        "borrowerId": borrower_id,
        "librarianId": librarian_id,
        "bookId": book_id,
        "researchId": research_id,
        "borrowDate": today.isoformat(),
        "dueDate": (today + timedelta(days=days)).isoformat(),
        "status": "borrowed",
    }, "borrowing")


@app.command("return")
def cli_return(
    borrowing_id: int,
    rating: Optional[int] = typer.Option(None, help="Rating from 1 to 10"),
    review: Optional[str] = typer.Option(None),
):
    """Mark a borrowing as returned today."""
    changes: Dict[str, Any] = {"status": "returned", "returnDate": date.today().isoformat()}
    if rating is not None:
        changes["rating"] = rating
    if review:
        changes["review"] = review
    try:
        updated = StoreManager.get_instance().borrowings.update(borrowing_id, changes)
    except ValidationError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    if updated is None:
        print(f"Borrowing with ID {borrowing_id} not found.")
        raise typer.Exit(code=1)
    print(f"Borrowing {borrowing_id} returned.")


@app.command("delete")
def cli_delete(collection: str, record_id: int):
    """Delete a record by ID."""
    if _records(collection).delete(record_id):
        print(f"Record {record_id} has been removed from {collection}.")
    else:
        print(f"Record {record_id} not found in {collection}.")


@app.command("stats")
def cli_stats():
    """Show dashboard counters."""
    print_stats_result(Dashboard(StoreManager.get_instance()).stats())


@app.command("dashboard")
def cli_dashboard(limit: int = typer.Option(5, help="Rows per ranking")):
    """Show the dashboard rankings."""
    dashboard = Dashboard(StoreManager.get_instance())
    print_stats_result(dashboard.stats())
    print_ranking("Most Borrowed Books", dashboard.most_borrowed_books(limit), "borrowCount")
    print_ranking("Popular Books", dashboard.popular_books(limit), "popularityScore")
    print_ranking("Top Borrowers", dashboard.top_borrowers(limit), "borrowCount")
    print_ranking("Most Engaged Borrowers", dashboard.top_borrowers_by_engagement(limit), "engagementScore")
    print_ranking("Recommended Books", dashboard.book_recommendations(limit), "recommendationScore")


@app.command("repair")
def cli_repair():
    """Drop corrupted records from every collection."""
    dropped = StoreManager.get_instance().repair()
    if not dropped:
        print("No corrupted records found.")
        return
    for name, count in dropped.items():
        print(f"Removed {count} corrupted {name} records")


@app.command("cleanup")
def cli_cleanup(policy: Optional[str] = typer.Option(None, help="reset | isolate")):
    """Purge unparseable keys and run the aggressive corruption cleanup."""
    if policy and policy not in ("reset", "isolate"):
        print(f"Unknown policy: {policy}. Use reset or isolate.")
        raise typer.Exit(code=1)
    store = StoreManager.get_instance()
    purged = store.purge_unparseable_keys()
    for key in purged:
        print(f"Removed unparseable key {key}")
    store.aggressive_cleanup(policy)
    print("Cleanup complete.")


@app.command("reset")
def cli_reset(
    sample: bool = typer.Option(True, "--sample/--empty", help="Write the sample data after wiping"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Wipe all stored data."""
    if not yes and not Confirm.ask("This removes all library data. Continue?", console=console):
        print("Reset cancelled.")
        return
    StoreManager.get_instance().force_reset(sample=sample)
    print("Database reset" + (" with sample data." if sample else "."))


@app.command("export")
def cli_export(output: str = typer.Argument("library_export.json")):
    """Export all collections to a JSON file."""
    data = StoreManager.get_instance().export_data()
    with open(output, "w", encoding="utf-8") as jsonfile:
        json.dump(data, jsonfile, indent=2, ensure_ascii=False)
    total = sum(len(v) for v in data.values())
    print(f"Exported {total} records to {output}")


@app.command("import")
def cli_import(source: str):
    """Replace stored data with the contents of an exported JSON file."""
    try:
        with open(source, encoding="utf-8") as jsonfile:
            data = json.load(jsonfile)
        counts = StoreManager.get_instance().import_data(data)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    for name, count in counts.items():
        print(f"{name}: {count}")


@app.command("backup")
def cli_backup(backup_dir: Optional[str] = typer.Option(None, "--dir")):
    """Write a timestamped snapshot of all stored data."""
    store = StoreManager.get_instance()
    path = BackupManager(store.storage, backup_dir).create_backup()
    print(f"Backup created at {path}")


@app.command("restore")
def cli_restore(path: Optional[str] = typer.Argument(None), backup_dir: Optional[str] = typer.Option(None, "--dir")):
    """Restore a backup (the latest one by default)."""
    store = StoreManager.get_instance()
    try:
        source = BackupManager(store.storage, backup_dir).restore(path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    store.storage_replaced()
    print(f"Restored from {source}")


@app.command("request")
def cli_request(
    method: str,
    path: str,
    body: Optional[str] = typer.Option(None, help="JSON request body"),
):
    """Run one request through the in-process API dispatcher and print the JSON result."""
    payload = None
    if body:
        try:
            payload = json.loads(body)
        except ValueError as e:
            print(f"Error: invalid JSON body: {e}")
            raise typer.Exit(code=1)
    result = MockApiDispatcher(StoreManager.get_instance()).handle(method, path, payload)
    print_json(result)


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart on code changes")):
    """Start the API server with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [sys.executable, "-m", "uvicorn", "libdash.api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    subprocess.run(args, env={**os.environ, "LIBDASH_DB_FILE": settings.db_file})


if __name__ == "__main__":
    app()
