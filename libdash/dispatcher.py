"""In-process request dispatcher that emulates the REST API over a LibraryStore.

Handlers never raise to the caller: any exception becomes an error
envelope, and unknown endpoints get a success envelope.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from libdash.analytics import Dashboard
from libdash.errors import ValidationError
from libdash.library import LibraryStore

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]

ENTITY_PATHS = {
    "books": "books",
    "borrowers": "borrowers",
    "librarians": "librarians",
    "borrowings": "borrowings",
    "feedback": "feedback",
    "research": "research_papers",
}


def error_envelope(message: str, endpoint: str) -> Dict[str, Any]:
    return {"error": True, "message": message, "endpoint": endpoint}


def not_implemented_envelope(endpoint: str) -> Dict[str, Any]:
    return {"success": True, "message": "Endpoint not implemented", "endpoint": endpoint}


def _int_param(query: Dict[str, str], name: str, default: Optional[int] = None,
               minimum: Optional[int] = None) -> Optional[int]:
    value = query.get(name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except ValueError as exc:
        raise ValidationError(f"Query parameter '{name}' must be an integer") from exc
    if minimum is not None and number < minimum:
        raise ValidationError(f"Query parameter '{name}' must be at least {minimum}")
    return number


def _require_body(body: Any) -> Any:
    if body is None or body == "":
        raise ValidationError("Request body is required")
    return body


class MockApiDispatcher:
    """Routes (method, path) pairs to LibraryStore and Dashboard operations."""

    def __init__(self, store: LibraryStore, dashboard: Optional[Dashboard] = None) -> None:
        self.store = store
        self.dashboard = dashboard or Dashboard(store)
        self._routes: List[Tuple[str, re.Pattern, Handler]] = []
        self._register_routes()

    def route(self, method: str, pattern: str, handler: Handler) -> None:
        """Register a handler. `:id` segments match integers and are passed positionally."""
        regex = "^" + re.sub(r":\w+", r"(-?\\d+)", pattern) + "/?$"
        self._routes.append((method.upper(), re.compile(regex), handler))

    def _register_routes(self) -> None:
        for segment, collection in ENTITY_PATHS.items():
            records = getattr(self.store, collection)
            base = f"/api/{segment}"
            self.route("GET", base, self._lister(collection))
            self.route("POST", base, lambda query, body, records=records: records.create(_require_body(body)))
            self.route("GET", base + "/:id", lambda query, body, record_id, records=records: records.get(record_id))
            self.route("PUT", base + "/:id", lambda query, body, record_id, records=records:
                       records.update(record_id, _require_body(body)))
            self.route("DELETE", base + "/:id", lambda query, body, record_id, records=records:
                       {"success": records.delete(record_id)})

        self.route("GET", "/api/books/:id/quotes", lambda query, body, book_id: self.store.quotes_for_book(book_id))
        self.route("POST", "/api/books/:id/quotes", lambda query, body, book_id:
                   self.store.add_quote(book_id, _require_body(body)))
        self.route("GET", "/api/books/:id/index", lambda query, body, book_id: self.store.index_for_book(book_id))
        self.route("POST", "/api/books/:id/index", lambda query, body, book_id:
                   self.store.add_index_entry(book_id, _require_body(body)))
        self.route("POST", "/api/membership-application", lambda query, body:
                   self.store.create_membership_application(_require_body(body)))

        dashboard = self.dashboard
        self.route("GET", "/api/dashboard/stats", lambda query, body: dashboard.stats())
        self.route("GET", "/api/dashboard/most-borrowed-books", lambda query, body:
                   dashboard.most_borrowed_books(_int_param(query, "limit", 5, minimum=1)))
        self.route("GET", "/api/dashboard/popular-books", lambda query, body:
                   dashboard.popular_books(_int_param(query, "limit", 4, minimum=1)))
        self.route("GET", "/api/dashboard/top-borrowers", lambda query, body:
                   dashboard.top_borrowers(_int_param(query, "limit", 5, minimum=1)))
        self.route("GET", "/api/dashboard/borrower-distribution", lambda query, body:
                   dashboard.borrower_distribution())
        self.route("GET", "/api/dashboard/member-growth", lambda query, body:
                   dashboard.member_growth(_int_param(query, "months", 6, minimum=1)))
        self.route("GET", "/api/dashboard/book-recommendations", lambda query, body:
                   dashboard.book_recommendations(_int_param(query, "limit", 6, minimum=1)))
        self.route("GET", "/api/dashboard/top-borrowers-engagement", lambda query, body:
                   dashboard.top_borrowers_by_engagement(_int_param(query, "limit", 10, minimum=1)))

    def _lister(self, collection: str) -> Handler:
        records = getattr(self.store, collection)

        def handler(query: Dict[str, str], body: Any) -> List[Dict[str, Any]]:
            items = records.list()
            if collection == "borrowers" and query.get("category"):
                category = query["category"].lower()
                items = [b for b in items if str(b.get("category") or "").lower() == category]
            if collection == "borrowings" and query.get("borrowerId"):
                borrower_id = _int_param(query, "borrowerId")
                items = [b for b in items if b.get("borrowerId") == borrower_id]
            return items

        return handler

    def resolve(self, method: str, path: str) -> Optional[Tuple[Handler, Tuple[int, ...]]]:
        method = method.upper()
        for route_method, regex, handler in self._routes:
            if route_method != method:
                continue
            match = regex.match(path)
            if match:
                return handler, tuple(int(g) for g in match.groups())
        return None

    def handle(self, method: str, path: str, body: Any = None,
               query: Optional[Dict[str, Any]] = None) -> Any:
        """Dispatch one request. Returns the handler result or an envelope."""
        parts = urlsplit(path)
        clean_path = parts.path
        params: Dict[str, str] = dict(parse_qsl(parts.query))
        params.update({k: str(v) for k, v in (query or {}).items() if v is not None})

        resolved = self.resolve(method, clean_path)
        if resolved is None:
            logger.info("No handler for %s %s", method.upper(), clean_path)
            return not_implemented_envelope(path)
        handler, args = resolved
        try:
            return handler(params, body, *args)
        except Exception as exc:
            logger.error("Error handling %s %s: %s", method.upper(), clean_path, exc)
            return error_envelope(str(exc), path)
