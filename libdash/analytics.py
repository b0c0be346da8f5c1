"""Dashboard views computed over the full dataset.

All scores are weighted sums over the borrowings of a book or borrower.
Ratings are stored on a 1-10 scale.
"""

import logging
import math
from collections import Counter
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from libdash.utils.validators import BORROWER_CATEGORIES, DateValidator, split_list_field

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
MAX_RATING = 10


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _counts(borrowings: Iterable[Record], field: str) -> Counter:
    return Counter(b.get(field) for b in borrowings if b.get(field) is not None)


def _average_rating(borrowings: List[Record]) -> float:
    ratings = [b["rating"] for b in borrowings if b.get("rating")]
    return sum(ratings) / len(ratings) if ratings else 0.0


def _book_title(book: Record) -> str:
    return str(book.get("name") or book.get("title") or "")


# ------------------------- Counters ------------------------- #
def dashboard_stats(books: List[Record], borrowers: List[Record], librarians: List[Record],
                    borrowings: List[Record]) -> Dict[str, int]:
    return {
        "totalBooks": len(books),
        "totalBorrowers": len(borrowers),
        "totalLibrarians": len(librarians),
        "activeBorrowings": sum(1 for b in borrowings if b.get("status") == "borrowed"),
        "overdueBorrowings": sum(1 for b in borrowings if b.get("status") == "overdue"),
    }


def most_borrowed_books(books: List[Record], borrowings: List[Record], limit: int = 5) -> List[Record]:
    counts = _counts(borrowings, "bookId")
    ranked = [{**book, "borrowCount": counts.get(book.get("id"), 0)} for book in books]
    ranked.sort(key=lambda b: b["borrowCount"], reverse=True)
    return ranked[:limit]


def top_borrowers(borrowers: List[Record], borrowings: List[Record], limit: int = 5) -> List[Record]:
    counts = _counts(borrowings, "borrowerId")
    ranked = [{**borrower, "borrowCount": counts.get(borrower.get("id"), 0)} for borrower in borrowers]
    ranked.sort(key=lambda b: b["borrowCount"], reverse=True)
    return ranked[:limit]


def borrower_distribution(borrowers: List[Record]) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for borrower in borrowers:
        category = borrower.get("category") or "unknown"
        counts[category] = counts.get(category, 0) + 1
    return [{"category": category, "count": count} for category, count in counts.items()]


def member_growth(borrowers: List[Record], months: int = 6, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """New members per category for each of the last `months` months, oldest first."""
    today = today or date.today()
    rows: List[Dict[str, Any]] = []
    index: Dict[Tuple[int, int], Dict[str, Any]] = {}
    for offset in range(months - 1, -1, -1):
        total = today.year * 12 + (today.month - 1) - offset
        year, month = divmod(total, 12)
        row: Dict[str, Any] = {"month": f"{MONTH_NAMES[month]} {year}"}
        row.update({category: 0 for category in BORROWER_CATEGORIES})
        rows.append(row)
        index[(year, month + 1)] = row

    for borrower in borrowers:
        joined = DateValidator.parse(borrower.get("joinedDate"))
        category = str(borrower.get("category") or "").lower()
        if joined is None or category not in BORROWER_CATEGORIES:
            continue
        row = index.get((joined.year, joined.month))
        if row is not None:
            row[category] += 1
    return rows


# ------------------------- Popularity ------------------------- #
def popularity_score(book_borrowings: List[Record], today: Optional[date] = None) -> float:
    """Score out of 10: 4 for frequency, 3 for recency, 3 for ratings."""
    if not book_borrowings:
        return 0.0
    today = today or date.today()
    times_borrowed = len(book_borrowings)
    avg_rating = _average_rating(book_borrowings)

    borrow_dates = [d for d in (DateValidator.parse(b.get("borrowDate")) for b in book_borrowings) if d]
    recency_score = 0.0
    if borrow_dates:
        days_since = (today - max(borrow_dates)).days
        recency_score = max(0.0, 3 - days_since / 30)

    borrow_score = min(times_borrowed / 5, 1) * 4
    rating_score = (avg_rating / MAX_RATING) * 3
    return round(min(borrow_score + recency_score + rating_score, 10), 1)


def popular_books(books: List[Record], borrowings: List[Record], limit: int = 4,
                  today: Optional[date] = None) -> List[Record]:
    ranked = []
    for book in books:
        history = [b for b in borrowings if b.get("bookId") == book.get("id")]
        avg = _average_rating(history)
        ranked.append({
            **book,
            "timesBorrowed": len(history),
            "averageRating": round(avg, 1) if avg else None,
            "popularityScore": popularity_score(history, today),
        })
    ranked.sort(key=lambda b: b["popularityScore"], reverse=True)
    return ranked[:limit]


# ------------------------- Engagement ------------------------- #
def _returned_on_time(borrowing: Record) -> bool:
    returned = DateValidator.parse(borrowing.get("returnDate"))
    due = DateValidator.parse(borrowing.get("dueDate"))
    return returned is not None and due is not None and returned <= due


def engagement_score(borrower_borrowings: List[Record]) -> float:
    """Score out of 10: 3 frequency, 3 timeliness, 2 rating habit, 2 current activity."""
    total = len(borrower_borrowings)
    if not total:
        return 0.0
    active = sum(1 for b in borrower_borrowings if b.get("status") == "borrowed")
    returned = [b for b in borrower_borrowings if b.get("status") == "returned"]
    rated = sum(1 for b in borrower_borrowings if b.get("rating"))
    on_time = sum(1 for b in returned if _returned_on_time(b))

    frequency_score = min(total / 3, 1) * 3
    timeliness_score = (on_time / len(returned)) * 3 if returned else 0.0
    rating_score = (rated / total) * 2
    activity_score = (active / max(1, total)) * 2
    return min(frequency_score + timeliness_score + rating_score + activity_score, 10.0)


def engagement_metrics(borrower_borrowings: List[Record]) -> Dict[str, Any]:
    if not borrower_borrowings:
        return {"totalBooks": 0, "onTimeReturns": 0, "ratings": 0, "avgRating": 0}
    returned = [b for b in borrower_borrowings if b.get("status") == "returned"]
    on_time = sum(1 for b in returned if _returned_on_time(b))
    rated = [b for b in borrower_borrowings if b.get("rating")]
    return {
        "totalBooks": len(borrower_borrowings),
        "onTimeReturns": _round_half_up(on_time / len(returned) * 100) if returned else 0,
        "ratings": len(rated),
        "avgRating": round(_average_rating(rated), 1),
    }


def engagement_level(score: float) -> str:
    if score >= 8:
        return "Excellent"
    if score >= 6:
        return "Good"
    if score >= 4:
        return "Average"
    return "Low"


def top_borrowers_by_engagement(borrowers: List[Record], borrowings: List[Record], limit: int = 10) -> List[Record]:
    """Borrowers ranked by engagement, graduate members first."""
    ranked = []
    for borrower in borrowers:
        history = [b for b in borrowings if b.get("borrowerId") == borrower.get("id")]
        score = engagement_score(history)
        ranked.append({
            **borrower,
            "engagementScore": round(score, 1),
            "engagementLevel": engagement_level(score),
            "metrics": engagement_metrics(history),
        })
    ranked.sort(key=lambda b: (b.get("category") != "graduate", -b["engagementScore"]))
    return ranked[:limit]


# ------------------------- Recommendations ------------------------- #
def _member_preferences(books: List[Record], borrowers: List[Record],
                        borrowings: List[Record]) -> Tuple[Dict[str, int], Set[str], Set[str]]:
    favorite_books: Set[str] = set()
    favorite_authors: Set[str] = set()
    for borrower in borrowers:
        for item in split_list_field(str(borrower.get("favoriteBooks") or "").lower(), r"[,\n\r]+"):
            favorite_books.add(item)
            # Short entries and ones mentioning an author are treated as author names
            if "author" in item or "writer" in item or len(item.split(" ")) <= 3:
                favorite_authors.add(item.replace("author", "").replace("writer", "").strip())

    genres: Dict[str, int] = {}
    by_id = {book.get("id"): book for book in books}
    for borrowing in borrowings:
        book = by_id.get(borrowing.get("bookId"))
        if not book:
            continue
        for genre in split_list_field(book.get("genres")):
            key = genre.lower()
            genres[key] = genres.get(key, 0) + 1
    return genres, favorite_authors, favorite_books


def book_recommendations(books: List[Record], borrowers: List[Record], borrowings: List[Record],
                         limit: int = 6, today: Optional[date] = None) -> List[Record]:
    """Books ranked by popularity, ratings and overlap with member preferences."""
    today = today or date.today()
    genre_prefs, favorite_authors, favorite_books = _member_preferences(books, borrowers, borrowings)

    scored = []
    for book in books:
        history = [b for b in borrowings if b.get("bookId") == book.get("id")]
        avg_rating = _average_rating(history)
        reasons: List[str] = []
        score = len(history) * 2.0
        if avg_rating > 0:
            score += avg_rating * 1.5

        book_genres = [g.lower() for g in split_list_field(book.get("genres"))]
        matching_genres = [g for g in book_genres if genre_prefs.get(g)]
        score += sum(genre_prefs[g] * 3 for g in matching_genres)
        if matching_genres:
            reasons.append(f"Popular in {matching_genres[0]} genre")

        author = str(book.get("author") or "")
        author_matches = [a for a in favorite_authors if len(a) > 2 and a in author.lower()]
        score += 15 * len(author_matches)
        if author_matches:
            reasons.append(f"Favorite author: {author.split(',')[0]}")

        title = _book_title(book).lower()
        if title:
            score += 12 * sum(1 for fav in favorite_books if fav in title or title in fav)

        tags = str(book.get("tags") or "").lower()
        if tags:
            score += 5 * sum(1 for fav in favorite_books if fav in tags)

        borrow_dates = [d for d in (DateValidator.parse(b.get("borrowDate")) for b in history) if d]
        if any((today - d).days < 30 for d in borrow_dates):
            score *= 0.8

        if avg_rating >= 8:
            reasons.append("Highly rated")
        if len(history) >= 5:
            reasons.append("Popular choice")

        scored.append({**book, "recommendationScore": _round_half_up(score), "matchReasons": reasons[:2]})

    scored = [b for b in scored if b["recommendationScore"] > 0]
    scored.sort(key=lambda b: b["recommendationScore"], reverse=True)
    return scored[:limit]


# ------------------------- Cached service ------------------------- #
class Dashboard:
    """Dashboard views over a LibraryStore, cached until the next write."""

    CACHE_PREFIX = "dashboard:"

    def __init__(self, store, cache=None, ttl_seconds: Optional[int] = None) -> None:
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        if cache is not None:
            store.subscribe(self._invalidate)

    def _invalidate(self, collection: str) -> None:
        removed = self.cache.invalidate_pattern(f"{self.CACHE_PREFIX}*")
        logger.debug("Invalidated %d dashboard cache entries after %s write", removed, collection)

    def _cached(self, name: str, compute, *args: Any) -> Any:
        if self.cache is None:
            return compute()
        key = f"{self.CACHE_PREFIX}{name}:{':'.join(str(a) for a in args)}"
        hit = self.cache.get(key)
        if hit is not None:
            return hit
        value = compute()
        self.cache.set(key, value, self.ttl_seconds)
        return value

    def _data(self) -> Dict[str, List[Record]]:
        return self.store.load()

    def stats(self) -> Dict[str, int]:
        def compute():
            d = self._data()
            return dashboard_stats(d["books"], d["borrowers"], d["librarians"], d["borrowings"])
        return self._cached("stats", compute)

    def most_borrowed_books(self, limit: int = 5) -> List[Record]:
        def compute():
            d = self._data()
            return most_borrowed_books(d["books"], d["borrowings"], limit)
        return self._cached("most-borrowed-books", compute, limit)

    def popular_books(self, limit: int = 4) -> List[Record]:
        def compute():
            d = self._data()
            return popular_books(d["books"], d["borrowings"], limit)
        return self._cached("popular-books", compute, limit, date.today())

    def top_borrowers(self, limit: int = 5) -> List[Record]:
        def compute():
            d = self._data()
            return top_borrowers(d["borrowers"], d["borrowings"], limit)
        return self._cached("top-borrowers", compute, limit)

    def borrower_distribution(self) -> List[Dict[str, Any]]:
        return self._cached("borrower-distribution", lambda: borrower_distribution(self._data()["borrowers"]))

    def member_growth(self, months: int = 6) -> List[Dict[str, Any]]:
        return self._cached("member-growth", lambda: member_growth(self._data()["borrowers"], months),
                            months, date.today())

    def top_borrowers_by_engagement(self, limit: int = 10) -> List[Record]:
        def compute():
            d = self._data()
            return top_borrowers_by_engagement(d["borrowers"], d["borrowings"], limit)
        return self._cached("top-borrowers-engagement", compute, limit)

    def book_recommendations(self, limit: int = 6) -> List[Record]:
        def compute():
            d = self._data()
            return book_recommendations(d["books"], d["borrowers"], d["borrowings"], limit)
        return self._cached("book-recommendations", compute, limit, date.today())
