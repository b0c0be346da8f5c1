import pytest

from libdash.library import LibraryStore
from libdash.storage import MemoryStorage, SQLiteStorage


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return LibraryStore(storage, storage_key="library-management-data", corruption_policy="reset")


@pytest.fixture
def sqlite_store(tmp_path, request):
    # Unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    return LibraryStore(SQLiteStorage(db_file), storage_key="library-management-data")


@pytest.fixture
def librarian(store):
    return store.librarians.create({"name": "Sarah Johnson", "librarianId": "LIB-001"})


@pytest.fixture
def borrower(store):
    return store.borrowers.create({"name": "John Smith", "category": "university"})


@pytest.fixture
def book(store):
    return store.books.create({"name": "Dune", "author": "Frank Herbert", "genres": "Science Fiction"})


@pytest.fixture
def borrowing_payload():
    def build(borrower_id, librarian_id, **overrides):
        payload = {
            "borrowerId": borrower_id,
            "librarianId": librarian_id,
            "borrowDate": "2024-03-01",
            "dueDate": "2024-03-15",
            "status": "borrowed",
        }
        payload.update(overrides)
        return payload
    return build
