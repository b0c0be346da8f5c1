import json

import pytest

from libdash.errors import ValidationError
from libdash.library import PLACEHOLDER_COVER, LibraryStore
from libdash.storage import SQLiteStorage

KEY = "library-management-data"


def test_create_then_get_round_trip(store):
    created = store.books.create({"name": "Dune", "author": "Frank Herbert"})
    assert isinstance(created["id"], int)
    assert "createdAt" in created
    assert store.books.get(created["id"]) == created


def test_book_defaults(store):
    book = store.books.create({"name": "Dune", "cabinet": "A", "shelf": "2", "num": "014"})
    assert book["copies"] == 1
    assert book["coverImage"] == PLACEHOLDER_COVER
    assert book["bookCode"] == "A/2/014"
    assert "addedDate" in book


def test_book_requires_name_or_title(store):
    with pytest.raises(ValidationError):
        store.books.create({"author": "Nobody"})
    assert store.books.list() == []


def test_borrower_defaults_and_category_normalized(store):
    borrower = store.borrowers.create({"name": "Emily", "category": "Graduate"})
    assert borrower["category"] == "graduate"
    assert borrower["memberId"] == f"BRW-{borrower['id']}"
    assert borrower["joinedDate"] < borrower["expiryDate"]


def test_borrower_rejects_unknown_category(store):
    with pytest.raises(ValidationError):
        store.borrowers.create({"name": "Emily", "category": "kindergarten"})


def test_ids_are_unique(store):
    ids = {store.books.create({"name": f"Book {i}"})["id"] for i in range(20)}
    assert len(ids) == 20


def test_update_merges_and_keeps_id(store, book):
    updated = store.books.update(book["id"], {"id": 1, "copies": 4})
    assert updated["id"] == book["id"]
    assert updated["copies"] == 4
    assert updated["author"] == "Frank Herbert"
    assert store.books.get(book["id"])["copies"] == 4


def test_update_missing_returns_none(store):
    assert store.books.update(12345, {"name": "Ghost"}) is None
    assert store.feedback.update(12345, {"status": "read"}) is None


def test_delete_is_idempotent(store, book):
    assert store.books.delete(book["id"]) is True
    assert store.books.delete(book["id"]) is False
    assert store.books.get(book["id"]) is None


def test_borrowing_requires_existing_librarian(store, borrower, book, borrowing_payload):
    with pytest.raises(ValidationError, match="Librarian with ID 42 does not exist"):
        store.borrowings.create(borrowing_payload(borrower["id"], 42, bookId=book["id"]))
    assert store.borrowings.list() == []


def test_borrowing_requires_exactly_one_item(store, borrower, librarian, book, borrowing_payload):
    with pytest.raises(ValidationError, match="either bookId or researchId"):
        store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"]))
    with pytest.raises(ValidationError, match="only one"):
        store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"], researchId=7))
    assert store.borrowings.list() == []


@pytest.mark.parametrize("missing,message", [("borrowerId", "Missing borrowerId"), ("librarianId", "Missing librarianId")])
def test_borrowing_missing_ids(store, borrower, librarian, book, borrowing_payload, missing, message):
    payload = borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"])
    del payload[missing]
    with pytest.raises(ValidationError, match=message):
        store.borrowings.create(payload)


def test_borrowing_accepts_json_string(store, borrower, librarian, book, borrowing_payload):
    payload = json.dumps(borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"]))
    created = store.borrowings.create(payload)
    assert created["bookId"] == book["id"]
    assert store.borrowings.for_borrower(borrower["id"]) == [created]


def test_borrowing_rejects_malformed_json(store):
    with pytest.raises(ValidationError, match="Invalid borrowing data format"):
        store.borrowings.create("{not json")
    with pytest.raises(ValidationError, match="Invalid borrowing data structure"):
        store.borrowings.create("[1, 2]")


def test_borrowing_of_research_paper(store, borrower, librarian, borrowing_payload):
    paper = store.research_papers.create({"name": "On Libraries"})
    created = store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"], researchId=paper["id"]))
    # Survives the read-time shape check
    assert store.borrowings.get(created["id"]) == created


def test_return_with_rating(store, borrower, librarian, book, borrowing_payload):
    created = store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"]))
    updated = store.borrowings.update(created["id"], {"status": "returned", "returnDate": "2024-03-10", "rating": 9})
    assert updated["status"] == "returned"
    with pytest.raises(ValidationError):
        store.borrowings.update(created["id"], {"rating": 11})


def test_load_drops_corrupted_records_and_persists(storage, store):
    storage.set_item(KEY, json.dumps({
        "books": [{"0": "D", "1": "u"}, {"id": 1, "name": "Dune"}, "garbage", {"id": "2", "name": "x"}],
        "borrowers": [{"id": 3, "name": "Ann"}],
        "librarians": [],
        "borrowings": [{"id": 4, "borrowerId": 3}],
    }))
    books = store.books.list()
    assert books == [{"id": 1, "name": "Dune"}]
    assert store.borrowings.list() == []

    stored = json.loads(storage.get_item(KEY))
    assert stored["books"] == [{"id": 1, "name": "Dune"}]
    assert stored["membershipApplications"] == []


def test_invalid_json_document_is_discarded(storage, store):
    storage.set_item(KEY, "{broken")
    assert store.load() == {name: [] for name in
                            ("books", "borrowers", "librarians", "borrowings", "membershipApplications")}
    assert storage.get_item(KEY) is None


def test_write_after_corruption_keeps_only_clean_records(storage, store):
    storage.set_item(KEY, json.dumps({"books": [{"0": "x", "1": "y"}]}))
    store.books.create({"name": "Fresh"})
    stored = json.loads(storage.get_item(KEY))
    assert [b["name"] for b in stored["books"]] == ["Fresh"]


def test_repair_reports_dropped_counts(storage, store):
    storage.set_item(KEY, json.dumps({"books": [{"0": "x"}, {"id": 1, "name": "Ok"}], "borrowers": []}))
    storage.set_item("feedback", json.dumps([{"id": 5, "message": "hi"}, {"12": "bad"}]))
    assert store.repair() == {"books": 1, "feedback": 1}
    assert store.repair() == {}


def test_aggressive_cleanup_resets_document(storage, store):
    storage.set_item(KEY, json.dumps({"books": [{"0": "x"}], "borrowers": [{"id": 1, "name": "Ann"}]}))
    data = store.aggressive_cleanup()
    assert data["borrowers"] == []
    assert storage.get_item(KEY) is None
    assert store.borrowers.list() == []


def test_aggressive_cleanup_isolate_keeps_valid_collections(storage):
    store = LibraryStore(storage, storage_key=KEY, corruption_policy="isolate")
    storage.set_item(KEY, json.dumps({"books": [{"0": "x"}], "borrowers": [{"id": 1, "name": "Ann"}]}))
    data = store.aggressive_cleanup()
    assert data["books"] == []
    assert data["borrowers"] == [{"id": 1, "name": "Ann"}]
    assert store.borrowers.list() == [{"id": 1, "name": "Ann"}]


def test_membership_application_creates_borrower(store):
    application = store.create_membership_application(
        {"name": "Mary Adams", "stage": "Librarian", "phone": "555", "favoriteBooks": "Harper Lee"}
    )
    borrower = store.borrowers.get(application["borrowerId"])
    assert borrower["category"] == "graduate"
    assert borrower["favoriteBooks"] == "Harper Lee"
    assert store.membership_applications.list() == [application]


def test_membership_application_with_bad_stage_writes_nothing(store):
    with pytest.raises(ValidationError):
        store.create_membership_application({"name": "Mary", "stage": "toddler"})
    assert store.borrowers.list() == []
    assert store.membership_applications.list() == []


def test_feedback_lives_under_its_own_key(storage, store):
    entry = store.feedback.create(
        {"stage": "university", "membershipStatus": "member", "type": "suggestion", "message": "<b>More</b> books"}
    )
    assert entry["status"] == "pending"
    assert entry["message"] == "More books"
    assert "submittedAt" in entry
    assert json.loads(storage.get_item("feedback")) == [entry]


def test_quotes_and_index_for_book(store, book):
    quote = store.add_quote(book["id"], {"content": "Fear is the mind-killer.", "page": 8})
    assert quote["isFavorite"] is False
    assert store.quotes_for_book(book["id"]) == [quote]

    second = store.add_index_entry(book["id"], {"title": "Book Two", "order": 2})
    first = store.add_index_entry(book["id"], {"title": "Book One", "order": 1})
    assert [e["title"] for e in store.index_for_book(book["id"])] == ["Book One", "Book Two"]
    assert first["level"] == 0 and second["level"] == 0

    with pytest.raises(ValidationError):
        store.add_quote(999, {"content": "orphan"})


def test_export_import_round_trip(store, book, storage):
    store.add_quote(book["id"], {"content": "Quote"})
    exported = store.export_data()
    assert exported["books"] == [book]
    assert len(exported["book_quotes"]) == 1

    store.force_reset(sample=False)
    counts = store.import_data(exported)
    assert counts["books"] == 1
    assert counts["book_quotes"] == 1
    assert store.books.list() == [book]


def test_force_reset_with_sample_data(store, book):
    store.force_reset(sample=True)
    data = store.load()
    assert len(data["books"]) == 2
    assert len(data["librarians"]) == 1
    librarian_ids = {lib["id"] for lib in data["librarians"]}
    assert all(b["librarianId"] in librarian_ids for b in data["borrowings"])


def test_subscribers_notified_on_write(store):
    seen = []
    store.subscribe(seen.append)
    store.books.create({"name": "Dune"})
    store.feedback.create({"stage": "x", "membershipStatus": "y", "type": "z", "message": "m"})
    assert seen == ["books", "feedback"]


def test_sqlite_store_persists_across_instances(sqlite_store):
    created = sqlite_store.books.create({"name": "Dune"})
    reopened = LibraryStore(SQLiteStorage(sqlite_store.storage.db_file), storage_key=KEY)
    assert reopened.books.get(created["id"]) == created


def test_end_to_end_scenario(store):
    librarian = store.librarians.create({"name": "Sarah"})
    borrower = store.borrowers.create({"name": "John", "category": "university"})
    book = store.books.create({"name": "Dune"})
    borrowing = store.borrowings.create({
        "borrowerId": borrower["id"], "librarianId": librarian["id"], "bookId": book["id"],
        "borrowDate": "2024-03-01", "dueDate": "2024-03-15", "status": "borrowed",
    })
    store.borrowings.update(borrowing["id"], {"status": "returned", "returnDate": "2024-03-12", "rating": 8})
    returned = store.borrowings.get(borrowing["id"])
    assert returned["status"] == "returned"
    assert returned["borrowerId"] == borrower["id"]
    assert returned["bookId"] == book["id"]
    assert returned["rating"] == 8
    assert store.books.delete(book["id"])
    assert store.books.list() == []
    assert len(store.borrowings.list()) == 1


def test_numeric_field_names_are_rejected_on_create(store):
    with pytest.raises(ValidationError, match="numeric"):
        store.books.create({"name": "Dune", "12": "vol"})
    assert store.books.list() == []


def test_numeric_field_names_are_rejected_on_update(store, book):
    with pytest.raises(ValidationError, match="numeric"):
        store.books.update(book["id"], {"0": "x"})
    assert store.books.get(book["id"]) == book


def test_borrowing_update_cannot_set_both_items(store, borrower, librarian, book, borrowing_payload):
    created = store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"]))
    with pytest.raises(ValidationError, match="only one"):
        store.borrowings.update(created["id"], {"researchId": 9})
    assert store.borrowings.get(created["id"]) == created


def test_borrowing_update_checks_new_librarian(store, borrower, librarian, book, borrowing_payload):
    created = store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"]))
    with pytest.raises(ValidationError, match="Librarian with ID 424242 does not exist"):
        store.borrowings.update(created["id"], {"librarianId": 424242})
    assert store.borrowings.get(created["id"])["librarianId"] == librarian["id"]


def test_borrowing_update_cannot_clear_item(store, borrower, librarian, book, borrowing_payload):
    created = store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"]))
    with pytest.raises(ValidationError, match="either bookId or researchId"):
        store.borrowings.update(created["id"], {"bookId": None})
    assert store.borrowings.get(created["id"]) == created


def test_borrowing_update_can_switch_item(store, borrower, librarian, book, borrowing_payload):
    paper = store.research_papers.create({"name": "On Libraries"})
    created = store.borrowings.create(borrowing_payload(borrower["id"], librarian["id"], bookId=book["id"]))
    updated = store.borrowings.update(created["id"], {"bookId": None, "researchId": paper["id"]})
    assert store.borrowings.get(created["id"]) == updated
    assert updated["researchId"] == paper["id"]


def test_borrowing_accepts_librarian_id_as_string(store, borrower, librarian, book, borrowing_payload):
    created = store.borrowings.create(borrowing_payload(borrower["id"], str(librarian["id"]), bookId=book["id"]))
    assert created["librarianId"] == librarian["id"]
    assert store.borrowings.get(created["id"]) == created


def test_load_drops_signature_record_next_to_valid_borrowing(storage, store):
    borrowing = {
        "id": 1, "borrowerId": 2, "librarianId": 3, "bookId": 4,
        "borrowDate": "2024-03-01", "dueDate": "2024-03-15", "status": "borrowed",
    }
    storage.set_item(KEY, json.dumps({"borrowings": [borrowing, {"0": "a", "1": "b"}]}))
    assert store.borrowings.list() == [borrowing]
    assert json.loads(storage.get_item(KEY))["borrowings"] == [borrowing]
