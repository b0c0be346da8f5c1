import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from libdash.config import settings
from libdash.main import StoreManager, app
from libdash.utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_db(tmp_path, monkeypatch):
    # Every test gets its own database and plain output
    monkeypatch.setattr(settings, "db_file", str(tmp_path / "cli.db"))
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    StoreManager.reset()
    yield
    StoreManager.reset()


def _add_book(name="Dune"):
    result = runner.invoke(app, ["add-book", "--name", name, "--author", "Frank Herbert"])
    assert result.exit_code == 0
    return int(result.stdout.strip().rsplit(" ", 1)[-1])


def test_list_no_books():
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books found." in result.stdout


def test_add_and_list_book():
    book_id = _add_book()
    result = runner.invoke(app, ["list", "books"])
    assert result.exit_code == 0
    assert f"{book_id} | Dune | Frank Herbert | 1" in result.stdout


def test_list_json_output():
    _add_book()
    result = runner.invoke(app, ["--output", "json", "list", "books"])
    assert result.exit_code == 0
    books = json.loads(result.stdout)
    assert books[0]["name"] == "Dune"


def test_show_missing_record():
    result = runner.invoke(app, ["show", "books", "123"])
    assert result.exit_code == 1
    assert "No record with ID 123 in books." in result.stdout


def test_unknown_collection():
    result = runner.invoke(app, ["list", "dragons"])
    assert result.exit_code == 1
    assert "Unknown collection: dragons" in result.stdout


def test_add_borrower_invalid_category():
    result = runner.invoke(app, ["add-borrower", "--name", "Ann", "--category", "nursery"])
    assert result.exit_code == 1
    assert "Error:" in result.stdout


def test_borrow_requires_existing_librarian():
    book_id = _add_book()
    borrower = runner.invoke(app, ["add-borrower", "--name", "Ann", "--category", "graduate"])
    borrower_id = int(borrower.stdout.strip().rsplit(" ", 1)[-1])

    result = runner.invoke(app, ["borrow", "--borrower-id", str(borrower_id), "--librarian-id", "5",
                                 "--book-id", str(book_id)])
    assert result.exit_code == 1
    assert "Librarian with ID 5 does not exist" in result.stdout


def test_borrow_and_return_flow():
    book_id = _add_book()
    borrower = runner.invoke(app, ["add-borrower", "--name", "Ann", "--category", "graduate"])
    borrower_id = int(borrower.stdout.strip().rsplit(" ", 1)[-1])
    librarian = runner.invoke(app, ["add-librarian", "--name", "Sarah"])
    librarian_id = int(librarian.stdout.strip().rsplit(" ", 1)[-1])

    borrowed = runner.invoke(app, ["borrow", "--borrower-id", str(borrower_id), "--librarian-id",
                                   str(librarian_id), "--book-id", str(book_id)])
    assert borrowed.exit_code == 0
    borrowing_id = int(borrowed.stdout.strip().rsplit(" ", 1)[-1])

    stats = runner.invoke(app, ["stats"])
    assert "Active Borrowings: 1" in stats.stdout

    returned = runner.invoke(app, ["return", str(borrowing_id), "--rating", "9"])
    assert returned.exit_code == 0
    assert f"Borrowing {borrowing_id} returned." in returned.stdout
    assert "Active Borrowings: 0" in runner.invoke(app, ["stats"]).stdout


def test_delete_book():
    book_id = _add_book()
    result = runner.invoke(app, ["delete", "books", str(book_id)])
    assert f"Record {book_id} has been removed from books." in result.stdout
    result = runner.invoke(app, ["delete", "books", str(book_id)])
    assert f"Record {book_id} not found in books." in result.stdout


def test_dashboard_command():
    _add_book()
    result = runner.invoke(app, ["dashboard"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Most Borrowed Books" in result.stdout


def test_reset_with_sample_data():
    result = runner.invoke(app, ["reset", "--yes"])
    assert result.exit_code == 0
    assert "Database reset with sample data." in result.stdout
    assert "The Great Gatsby" in runner.invoke(app, ["list", "books"]).stdout


def test_reset_cancelled():
    _add_book()
    result = runner.invoke(app, ["reset", "--empty"], input="n\n")
    assert "Reset cancelled." in result.stdout
    assert "Dune" in runner.invoke(app, ["list"]).stdout


def test_export_and_import(tmp_path):
    _add_book()
    target = tmp_path / "export.json"
    result = runner.invoke(app, ["export", str(target)])
    assert "Exported 1 records" in result.stdout

    runner.invoke(app, ["reset", "--empty", "--yes"])
    result = runner.invoke(app, ["import", str(target)])
    assert result.exit_code == 0
    assert "books: 1" in result.stdout


def test_backup_and_restore(tmp_path):
    _add_book()
    backup_dir = str(tmp_path / "backups")
    assert runner.invoke(app, ["backup", "--dir", backup_dir]).exit_code == 0
    runner.invoke(app, ["reset", "--empty", "--yes"])
    result = runner.invoke(app, ["restore", "--dir", backup_dir])
    assert result.exit_code == 0
    assert "Dune" in runner.invoke(app, ["list"]).stdout


def test_request_command():
    result = runner.invoke(app, ["request", "GET", "/api/nowhere"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["message"] == "Endpoint not implemented"


def test_request_command_with_body():
    result = runner.invoke(app, ["request", "POST", "/api/books", "--body", '{"name": "Dune"}'])
    assert json.loads(result.stdout)["name"] == "Dune"


def test_repair_command_reports_clean_store():
    result = runner.invoke(app, ["repair"])
    assert "No corrupted records found." in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run):
    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    args = mock_subprocess_run.call_args[0][0]
    assert "libdash.api:app" in args
