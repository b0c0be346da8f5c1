import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from libdash.analytics import Dashboard
from libdash.backup import BackupManager
from libdash.cache_manager import CacheManager
from libdash.config import settings
from libdash.errors import ValidationError
from libdash.library import LibraryStore, RecordStore
from libdash.logging_setup import configure_logging
from libdash.storage import SQLiteStorage

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class Services:
    """Objects shared by every request of one app instance."""

    def __init__(self, store: LibraryStore, cache: Optional[CacheManager] = None,
                 backups: Optional[BackupManager] = None):
        self.store = store
        self.cache = cache or CacheManager()
        self.dashboard = Dashboard(store, self.cache)
        self.backups = backups or BackupManager(store.storage)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Library store is not initialized")
    return services


def get_store(services: Services = Depends(get_services)) -> LibraryStore:
    return services.store


def _found(record: Optional[Record], what: str) -> Record:
    if record is None:
        raise HTTPException(status_code=404, detail=f"{what} not found.")
    return record


# --- Entity CRUD ---
def _crud_router(segment: str, collection: str, label: str) -> APIRouter:
    router = APIRouter(prefix=f"/api/{segment}", tags=[segment])

    def records(store: LibraryStore = Depends(get_store)) -> RecordStore:
        return getattr(store, collection)

    if collection == "borrowers":
        @router.get("", response_model=List[Record])
        def list_borrowers(category: Optional[str] = Query(None), rs: RecordStore = Depends(records)):
            items = rs.list()
            if category:
                items = [b for b in items if str(b.get("category") or "").lower() == category.lower()]
            return items
    elif collection == "borrowings":
        @router.get("", response_model=List[Record])
        def list_borrowings(borrowerId: Optional[int] = Query(None), rs: RecordStore = Depends(records)):
            return rs.list() if borrowerId is None else rs.find(borrowerId=borrowerId)
    else:
        @router.get("", response_model=List[Record])
        def list_records(rs: RecordStore = Depends(records)):
            return rs.list()

    @router.post("", status_code=201)
    def create_record(payload: Any = Body(...), rs: RecordStore = Depends(records)):
        return rs.create(payload)

    @router.get("/{record_id}")
    def get_record(record_id: int, rs: RecordStore = Depends(records)):
        return _found(rs.get(record_id), label)

    @router.put("/{record_id}")
    def update_record(record_id: int, payload: Dict[str, Any] = Body(...), rs: RecordStore = Depends(records)):
        return _found(rs.update(record_id, payload), label)

    @router.delete("/{record_id}")
    def delete_record(record_id: int, rs: RecordStore = Depends(records)):
        if not rs.delete(record_id):
            raise HTTPException(status_code=404, detail=f"{label} not found.")
        return {"success": True}

    return router


# --- Book side data, membership ---
side_router = APIRouter(prefix="/api", tags=["books"])


@side_router.get("/books/{book_id}/quotes")
def list_quotes(book_id: int, store: LibraryStore = Depends(get_store)):
    _found(store.books.get(book_id), "Book")
    return store.quotes_for_book(book_id)


@side_router.post("/books/{book_id}/quotes", status_code=201)
def add_quote(book_id: int, payload: Dict[str, Any] = Body(...), store: LibraryStore = Depends(get_store)):
    _found(store.books.get(book_id), "Book")
    return store.add_quote(book_id, payload)


@side_router.get("/books/{book_id}/index")
def list_index(book_id: int, store: LibraryStore = Depends(get_store)):
    _found(store.books.get(book_id), "Book")
    return store.index_for_book(book_id)


@side_router.post("/books/{book_id}/index", status_code=201)
def add_index_entry(book_id: int, payload: Dict[str, Any] = Body(...), store: LibraryStore = Depends(get_store)):
    _found(store.books.get(book_id), "Book")
    return store.add_index_entry(book_id, payload)


@side_router.post("/membership-application", status_code=201)
def membership_application(payload: Dict[str, Any] = Body(...), store: LibraryStore = Depends(get_store)):
    return store.create_membership_application(payload)


# --- Dashboard ---
dashboard_router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def get_dashboard(services: Services = Depends(get_services)) -> Dashboard:
    return services.dashboard


@dashboard_router.get("/stats")
def dashboard_stats(dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.stats()


@dashboard_router.get("/most-borrowed-books")
def most_borrowed_books(limit: int = Query(5, ge=1, le=100), dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.most_borrowed_books(limit)


@dashboard_router.get("/popular-books")
def popular_books(limit: int = Query(4, ge=1, le=100), dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.popular_books(limit)


@dashboard_router.get("/top-borrowers")
def top_borrowers(limit: int = Query(5, ge=1, le=100), dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.top_borrowers(limit)


@dashboard_router.get("/borrower-distribution")
def borrower_distribution(dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.borrower_distribution()


@dashboard_router.get("/member-growth")
def member_growth(months: int = Query(6, ge=1, le=36), dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.member_growth(months)


@dashboard_router.get("/book-recommendations")
def book_recommendations(limit: int = Query(6, ge=1, le=100), dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.book_recommendations(limit)


@dashboard_router.get("/top-borrowers-engagement")
def top_borrowers_engagement(limit: int = Query(10, ge=1, le=100), dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.top_borrowers_by_engagement(limit)


# --- Maintenance ---
admin_router = APIRouter(prefix="/api", tags=["maintenance"])


@admin_router.get("/export")
def export_data(store: LibraryStore = Depends(get_store)):
    return store.export_data()


@admin_router.post("/import")
def import_data(payload: Dict[str, Any] = Body(...), store: LibraryStore = Depends(get_store)):
    return {"success": True, "counts": store.import_data(payload)}


@admin_router.post("/maintenance/repair")
def repair_data(store: LibraryStore = Depends(get_store)):
    dropped = store.repair()
    return {"success": True, "dropped": dropped}


@admin_router.post("/maintenance/cleanup")
def cleanup_data(policy: Optional[str] = Query(None, pattern="^(reset|isolate)$"),
                 store: LibraryStore = Depends(get_store)):
    purged = store.purge_unparseable_keys()
    data = store.aggressive_cleanup(policy)
    return {
        "success": True,
        "purgedKeys": purged,
        "counts": {name: len(records) for name, records in data.items() if isinstance(records, list)},
    }


@admin_router.post("/reset-database")
def reset_database(sample: bool = Query(True), store: LibraryStore = Depends(get_store)):
    store.force_reset(sample=sample)
    return {"success": True, "message": "Database reset" + (" with sample data" if sample else "")}


@admin_router.post("/backup")
def create_backup(services: Services = Depends(get_services)):
    path = services.backups.create_backup()
    return {"success": True, "path": str(path)}


@admin_router.post("/backup/restore")
def restore_backup(path: Optional[str] = Query(None), services: Services = Depends(get_services)):
    try:
        source = services.backups.restore(path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    services.store.storage_replaced()
    return {"success": True, "path": str(source)}


def create_app(store: Optional[LibraryStore] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the API. Without a store, one backed by settings.db_file is opened at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            configure_logging()
            app.state.services = Services(LibraryStore(SQLiteStorage(settings.db_file)))
            logger.info("Library store opened at %s", settings.db_file)
        yield

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if services is None and store is not None:
        services = Services(store)
    app.state.services = services

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health(request: Request):
        current = getattr(request.app.state, "services", None)
        total_books = len(current.store.books.list()) if current else 0
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "total_books": total_books,
            "cache": current.cache.get_stats() if current else None,
        }

    for segment, collection, label in (
        ("books", "books", "Book"),
        ("borrowers", "borrowers", "Borrower"),
        ("librarians", "librarians", "Librarian"),
        ("borrowings", "borrowings", "Borrowing"),
        ("feedback", "feedback", "Feedback"),
        ("research", "research_papers", "Research paper"),
    ):
        app.include_router(_crud_router(segment, collection, label))
    app.include_router(side_router)
    app.include_router(dashboard_router)
    app.include_router(admin_router)
    return app


app = create_app()
