import json
import logging
import random
import threading
import time
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from libdash import repair
from libdash.config import settings
from libdash.errors import ValidationError
from libdash.sample_data import build_sample_document
from libdash.records import (
    BookIndexPayload,
    BookPayload,
    BorrowerPayload,
    BorrowingPayload,
    FeedbackPayload,
    LibrarianPayload,
    MembershipApplicationPayload,
    QuotePayload,
    ResearchPaperPayload,
    validate_payload,
)
from libdash.storage import KeyValueStorage
from libdash.utils.validators import DateValidator

logger = logging.getLogger(__name__)

PLACEHOLDER_COVER = "/assets/book-covers/placeholder.svg"

# Collections kept under their own storage key instead of inside the main document
SIDE_COLLECTIONS = ("feedback", "research_papers", "book_quotes", "book_index")

Record = Dict[str, Any]


def generate_id() -> int:
    """Millisecond timestamp plus a random offset."""
    return int(time.time() * 1000) + random.randint(0, 999)


class RecordStore:
    """CRUD operations over one collection of schema-less records."""

    def __init__(
        self,
        library: "LibraryStore",
        collection: str,
        model: type,
        prepare: Optional[Callable[[Record], Record]] = None,
        timestamp_field: str = "createdAt",
    ) -> None:
        self.library = library
        self.collection = collection
        self.model = model
        self.prepare = prepare
        self.timestamp_field = timestamp_field

    def list(self) -> List[Record]:
        return self.library.read_collection(self.collection)

    def count(self) -> int:
        return len(self.list())

    def get(self, record_id: int) -> Optional[Record]:
        for record in self.list():
            if record.get("id") == record_id:
                return record
        return None

    def find(self, **criteria: Any) -> List[Record]:
        return [r for r in self.list() if all(r.get(k) == v for k, v in criteria.items())]

    def _ensure_storable(self, record: Record) -> None:
        """Reject a record the load-time cleaning would drop."""
        if repair.has_corruption_signature(record):
            numeric = [k for k in record if repair.is_numeric_key(str(k))]
            raise ValidationError(f"Field names must not be numeric: {', '.join(map(str, numeric))}")
        if not repair.is_valid_record(self.collection, record):
            raise ValidationError(f"Record is missing required {self.collection} fields")

    def create(self, payload: Record) -> Record:
        """Validate, assign identity and creation timestamp, append and persist."""
        data = validate_payload(self.model, payload)
        with self.library.lock:
            records = self.list()
            existing = {r.get("id") for r in records}
            new_id = generate_id()
            while new_id in existing:
                new_id += 1
            record = {**data, "id": new_id, self.timestamp_field: DateValidator.now()}
            if self.prepare:
                record = self.prepare(record)
            self._ensure_storable(record)
            records.append(record)
            self.library.write_collection(self.collection, records)
        logger.info("Created %s record %s", self.collection, new_id)
        return record

    def update(self, record_id: int, changes: Record) -> Optional[Record]:
        """Merge changes over an existing record, keeping its id. None when missing."""
        if not isinstance(changes, dict):
            raise ValidationError(f"Expected an object payload, got {type(changes).__name__}")
        with self.library.lock:
            records = self.list()
            for index, record in enumerate(records):
                if record.get("id") != record_id:
                    continue
                merged = validate_payload(self.model, {**record, **changes})
                merged["id"] = record["id"]
                self._ensure_storable(merged)
                records[index] = merged
                self.library.write_collection(self.collection, records)
                return merged
        logger.info("No %s record %s to update", self.collection, record_id)
        return None

    def delete(self, record_id: int) -> bool:
        with self.library.lock:
            records = self.list()
            remaining = [r for r in records if r.get("id") != record_id]
            if len(remaining) == len(records):
                return False
            self.library.write_collection(self.collection, remaining)
        logger.info("Deleted %s record %s", self.collection, record_id)
        return True


class BorrowingStore(RecordStore):
    """Borrowings additionally require an existing librarian and exactly one item."""

    def create(self, payload: Any) -> Record:
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise ValidationError("Invalid borrowing data format") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Invalid borrowing data structure")
        if not payload.get("borrowerId"):
            raise ValidationError("Missing borrowerId")
        self._check_librarian(payload.get("librarianId"))
        self._check_item(payload)
        return super().create(payload)

    def update(self, record_id: int, changes: Record) -> Optional[Record]:
        """Re-check the librarian and the borrowed item against the merged record."""
        if not isinstance(changes, dict):
            raise ValidationError(f"Expected an object payload, got {type(changes).__name__}")
        with self.library.lock:
            existing = self.get(record_id)
            if existing is None:
                return super().update(record_id, changes)
            if "librarianId" in changes:
                self._check_librarian(changes["librarianId"])
            self._check_item({**existing, **changes})
            return super().update(record_id, changes)

    def _check_librarian(self, librarian_id: Any) -> None:
        if librarian_id is None or librarian_id == "":
            raise ValidationError("Missing librarianId")
        try:
            lookup_id = int(librarian_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid librarianId {librarian_id!r}") from exc
        if self.library.librarians.get(lookup_id) is None:
            logger.warning("Rejected borrowing with unknown librarianId %s", librarian_id)
            raise ValidationError(f"Librarian with ID {librarian_id} does not exist")

    @staticmethod
    def _check_item(record: Record) -> None:
        has_book = record.get("bookId") is not None
        has_research = record.get("researchId") is not None
        if not has_book and not has_research:
            raise ValidationError("Must specify either bookId or researchId")
        if has_book and has_research:
            raise ValidationError("Specify only one of bookId or researchId")

    def for_borrower(self, borrower_id: int) -> List[Record]:
        return self.find(borrowerId=borrower_id)


class LibraryStore:
    """Owns the stored library document and the record stores built on it."""

    def __init__(
        self,
        storage: KeyValueStorage,
        storage_key: Optional[str] = None,
        corruption_policy: Optional[str] = None,
    ) -> None:
        self.storage = storage
        self.storage_key = storage_key or settings.storage_key
        self.corruption_policy = corruption_policy or settings.corruption_policy
        self.lock = threading.RLock()
        self._listeners: List[Callable[[str], None]] = []

        self.books = RecordStore(self, "books", BookPayload, prepare=_prepare_book)
        self.borrowers = RecordStore(self, "borrowers", BorrowerPayload, prepare=_prepare_borrower)
        self.librarians = RecordStore(self, "librarians", LibrarianPayload)
        self.borrowings = BorrowingStore(self, "borrowings", BorrowingPayload)
        self.membership_applications = RecordStore(self, "membershipApplications", MembershipApplicationPayload)
        self.feedback = RecordStore(
            self, "feedback", FeedbackPayload, prepare=_prepare_feedback, timestamp_field="submittedAt"
        )
        self.research_papers = RecordStore(self, "research_papers", ResearchPaperPayload, prepare=_prepare_research)
        self.quotes = RecordStore(self, "book_quotes", QuotePayload, prepare=_prepare_quote)
        self.book_index = RecordStore(self, "book_index", BookIndexPayload, prepare=_prepare_index_entry)

    # ------------------------- Change notification ------------------------- #
    def subscribe(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the collection name after every write."""
        self._listeners.append(listener)

    def _notify(self, collection: str) -> None:
        for listener in self._listeners:
            listener(collection)

    def storage_replaced(self) -> None:
        """Tell listeners that storage was rewritten outside the store (e.g. a backup restore)."""
        self._notify("*")

    # ------------------------- Persistence ------------------------- #
    def load(self) -> Dict[str, List[Record]]:
        """Read the main document, dropping corrupted records and re-persisting if any were dropped."""
        data, dropped = self._read_document()
        if dropped:
            self._save_document(data)
        return data

    def _read_document(self) -> Tuple[Dict[str, List[Record]], Dict[str, int]]:
        raw = self.storage.get_item(self.storage_key)
        if not raw:
            return repair.default_document(), {}
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.error("Stored document under %s is not valid JSON, discarding it", self.storage_key)
            self.storage.remove_item(self.storage_key)
            return repair.default_document(), {}

        data = repair.default_document()
        dropped: Dict[str, int] = {}
        if not isinstance(parsed, dict):
            return data, dropped
        for name in repair.COLLECTIONS:
            kept, count = repair.clean_collection(name, parsed.get(name))
            data[name] = kept
            if count:
                dropped[name] = count
        return data, dropped

    def _save_document(self, data: Dict[str, Any]) -> None:
        clean, dropped = repair.validate_and_clean_document(data)
        if dropped:
            logger.warning("Dropped %d invalid records before saving", dropped)
        try:
            self.storage.set_item(self.storage_key, json.dumps(clean))
        except Exception as exc:
            logger.error("Error saving library document: %s", exc)

    def _read_side(self, key: str) -> List[Record]:
        raw = self.storage.get_item(key)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Error loading %s from storage, using an empty list", key)
            return []
        kept, dropped = repair.clean_collection(key, parsed)
        if dropped:
            self._write_side(key, kept)
        return kept

    def _write_side(self, key: str, records: List[Record]) -> None:
        try:
            self.storage.set_item(key, json.dumps(records))
        except Exception as exc:
            logger.error("Error saving %s: %s", key, exc)

    def read_collection(self, collection: str) -> List[Record]:
        if collection in SIDE_COLLECTIONS:
            return self._read_side(collection)
        return self.load()[collection]

    def write_collection(self, collection: str, records: List[Record]) -> None:
        """Persist a collection. Main document collections rewrite the whole document."""
        with self.lock:
            if collection in SIDE_COLLECTIONS:
                self._write_side(collection, records)
            else:
                data = self.load()
                data[collection] = records
                self._save_document(data)
        self._notify(collection)

    # ------------------------- Membership ------------------------- #
    def create_membership_application(self, payload: Record) -> Record:
        """Store an application and create the matching borrower."""
        application = validate_payload(MembershipApplicationPayload, payload)
        stage = str(application["stage"]).strip().lower()
        today = date.today()
        borrower_payload = {
            key: application[key]
            for key in (
                "name", "phone", "email", "address", "churchName", "fatherOfConfession",
                "studies", "job", "hobbies", "favoriteBooks", "additionalPhone",
            )
            if application.get(key) is not None
        }
        borrower_payload.update({
            "category": "graduate" if stage == "librarian" else stage,
            "joinedDate": today.isoformat(),
            "expiryDate": (today + timedelta(days=365)).isoformat(),
        })
        if application.get("memberId"):
            borrower_payload["memberId"] = application["memberId"]
        # Reject before anything is written
        validate_payload(BorrowerPayload, borrower_payload)

        with self.lock:
            borrower = self.borrowers.create(borrower_payload)
            record = self.membership_applications.create({**application, "borrowerId": borrower["id"]})
        return record

    # ------------------------- Research and book side data ------------------------- #
    def add_quote(self, book_id: int, payload: Record) -> Record:
        if self.books.get(book_id) is None:
            raise ValidationError(f"Book with ID {book_id} does not exist")
        return self.quotes.create({**payload, "bookId": book_id})

    def quotes_for_book(self, book_id: int) -> List[Record]:
        return self.quotes.find(bookId=book_id)

    def add_index_entry(self, book_id: int, payload: Record) -> Record:
        if self.books.get(book_id) is None:
            raise ValidationError(f"Book with ID {book_id} does not exist")
        return self.book_index.create({**payload, "bookId": book_id})

    def index_for_book(self, book_id: int) -> List[Record]:
        entries = self.book_index.find(bookId=book_id)
        return sorted(entries, key=lambda e: (e.get("order") is None, e.get("order") or 0, e.get("page") or 0))

    # ------------------------- Maintenance ------------------------- #
    def repair(self) -> Dict[str, int]:
        """Drop corrupted records from every collection. Returns dropped counts per collection."""
        with self.lock:
            data, dropped = self._read_document()
            if dropped:
                self._save_document(data)
            for key in SIDE_COLLECTIONS:
                raw = self.storage.get_item(key)
                if not raw:
                    continue
                try:
                    parsed = json.loads(raw)
                except ValueError:
                    continue
                kept, count = repair.clean_collection(key, parsed)
                if count:
                    dropped[key] = count
                    self._write_side(key, kept)
        if dropped:
            self._notify("*")
        return dropped

    def aggressive_cleanup(self, policy: Optional[str] = None) -> Dict[str, Any]:
        with self.lock:
            result = repair.aggressive_cleanup(self.storage, self.storage_key, policy or self.corruption_policy)
        self._notify("*")
        return result

    def purge_unparseable_keys(self) -> List[str]:
        with self.lock:
            return repair.purge_unparseable_keys(self.storage)

    def export_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.load())
        for key in SIDE_COLLECTIONS:
            data[key] = self._read_side(key)
        return data

    def import_data(self, data: Dict[str, Any]) -> Dict[str, int]:
        """Replace stored data with an exported snapshot. Invalid records are dropped."""
        if not isinstance(data, dict):
            raise ValidationError("Import data must be an object")
        with self.lock:
            self._save_document(data)
            counts = {name: len(records) for name, records in self.load().items()}
            for key in SIDE_COLLECTIONS:
                if key in data:
                    kept, _ = repair.clean_collection(key, data[key])
                    self._write_side(key, kept)
                    counts[key] = len(kept)
        self._notify("*")
        return counts

    def clear_all_data(self) -> None:
        self.storage.remove_item(self.storage_key)
        self._notify("*")

    def force_reset(self, sample: bool = True) -> None:
        """Wipe every storage key and optionally write the sample document."""
        logger.warning("Force resetting all data")
        with self.lock:
            self.storage.clear()
            if sample:
                # Written directly: the sample document is known to be clean
                self.storage.set_item(self.storage_key, json.dumps(build_sample_document()))
        self._notify("*")


# ------------------------- Record defaults ------------------------- #
def _prepare_book(record: Record) -> Record:
    record.setdefault("copies", 1)
    if not record.get("coverImage"):
        record["coverImage"] = PLACEHOLDER_COVER
    if not record.get("bookCode") and all(record.get(k) for k in ("cabinet", "shelf", "num")):
        record["bookCode"] = f"{record['cabinet']}/{record['shelf']}/{record['num']}"
    record.setdefault("addedDate", DateValidator.today())
    return record


def _prepare_borrower(record: Record) -> Record:
    today = date.today()
    if not record.get("memberId"):
        record["memberId"] = f"BRW-{record['id']}"
    if not record.get("joinedDate"):
        record["joinedDate"] = today.isoformat()
    if not record.get("expiryDate"):
        record["expiryDate"] = (today + timedelta(days=365)).isoformat()
    return record


def _prepare_feedback(record: Record) -> Record:
    if not record.get("status"):
        record["status"] = "pending"
    return record


def _prepare_research(record: Record) -> Record:
    record.setdefault("copies", 1)
    if not record.get("coverImage"):
        record["coverImage"] = PLACEHOLDER_COVER
    return record


def _prepare_quote(record: Record) -> Record:
    record.setdefault("isFavorite", False)
    return record


def _prepare_index_entry(record: Record) -> Record:
    record.setdefault("level", 0)
    return record
