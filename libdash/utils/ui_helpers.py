import json
import os
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBDASH_CLI_OUTPUT"

_console = Console()

# Columns shown per collection in plain and rich output
COLUMNS: Dict[str, Sequence[str]] = {
    "books": ("id", "name", "author", "copies"),
    "borrowers": ("id", "memberId", "name", "category"),
    "librarians": ("id", "librarianId", "name", "employmentStatus"),
    "borrowings": ("id", "borrowerId", "bookId", "status", "dueDate"),
    "membership_applications": ("id", "name", "stage", "borrowerId"),
    "feedback": ("id", "type", "status", "message"),
    "research_papers": ("id", "name", "author"),
}


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _cell(record: Dict[str, Any], column: str) -> str:
    value = record.get(column)
    if value is None and column == "name":
        value = record.get("title")
    return "" if value is None else str(value)


def print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def print_records(collection: str, records: List[Dict[str, Any]]) -> None:
    """Print a collection in the current output mode.
    - plain: one 'id | field | field' line per record, or 'No <collection> found.'
    - json: the records as a JSON array
    - rich: Rich table
    """
    mode = get_output_mode()
    if not records:
        print(f"No {collection} found.")
        return

    columns = COLUMNS.get(collection, ("id", "name"))
    if mode == "json":
        print(json.dumps(records, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=collection.title(), show_lines=True, header_style="bold cyan")
        for column in columns:
            table.add_column(column, style="magenta" if column == "id" else "white", no_wrap=column == "id")
        for record in records:
            table.add_row(*(_cell(record, c) for c in columns))
        _console.print(table)
    else:
        for record in records:
            print(" | ".join(_cell(record, c) for c in columns))


def print_record(record: Dict[str, Any]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(record, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key}:[/] {value}" for key, value in record.items())
        _console.print(Panel.fit(content, border_style="blue"))
    else:
        for key, value in record.items():
            print(f"{key}: {value}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print dashboard counters.
    - plain: 'Label: value' lines
    - json: JSON object
    - rich: Panel with the main metrics
    """
    mode = get_output_mode()
    if not stats:
        print("No statistics available.")
        return

    labels = {
        "totalBooks": "Total Books",
        "totalBorrowers": "Total Borrowers",
        "totalLibrarians": "Total Librarians",
        "activeBorrowings": "Active Borrowings",
        "overdueBorrowings": "Overdue Borrowings",
    }
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{labels.get(k, k)}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{labels.get(key, key)}: {value}")


def print_ranking(title: str, rows: List[Dict[str, Any]], value_field: str) -> None:
    """Print a dashboard ranking such as most borrowed books."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
        return
    if mode == "rich":
        table = Table(title=title, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Name")
        table.add_column(value_field, justify="right")
        for position, row in enumerate(rows, start=1):
            table.add_row(str(position), _cell(row, "name"), _cell(row, value_field))
        _console.print(table)
        return
    print(title)
    if not rows:
        print("  (none)")
    for position, row in enumerate(rows, start=1):
        print(f"  {position}. {_cell(row, 'name')} ({value_field}: {_cell(row, value_field)})")
