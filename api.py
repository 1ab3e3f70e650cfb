import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from shelfwise.config import configure_logging, settings
from shelfwise.enrichment import MetadataEnricher
from shelfwise.importer import ImportFailed, ImportReconciler, ImportResult, ImportStatus
from shelfwise.library import Library, ValidationError
from shelfwise.repository import InMemoryRepository, SqliteRepository
from shelfwise.services.http_client import cleanup_http_client
from shelfwise.spine import rating_label, spine_height

configure_logging()
logger = logging.getLogger(__name__)

_db_file = os.environ.get("LIBRARY_DB_FILE") or settings.database_file
library = Library(
    repository=SqliteRepository(_db_file) if _db_file else InMemoryRepository(),
    seed_default_shelves=settings.seed_default_shelves,
)
enricher = MetadataEnricher(library)
import_state: Dict[str, ImportResult] = {"last": ImportResult(ImportStatus.IDLE)}


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        # Cancel outstanding lookups so shutdown does not hang on the network
        await enricher.cancel_all()
        await cleanup_http_client()
        library.close()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Dependency that checks the API key on mutating endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Models ---
class ShelfModel(BaseModel):
    id: str
    name: str
    color: str
    books: int = 0
    active: bool = False


class ShelfCreateModel(BaseModel):
    name: str


class EnrichmentModel(BaseModel):
    isbn: str
    title: str
    authors: List[str] = []
    description: Optional[str] = None
    published_date: Optional[str] = None
    page_count: Optional[int] = None
    categories: List[str] = []
    image_links: Dict[str, str] = {}
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    language: Optional[str] = None
    publisher: Optional[str] = None


class BookModel(BaseModel):
    id: str
    title: str
    author: str
    shelf_id: str
    status: str
    rating: Optional[int] = None
    rating_label: Optional[str] = None
    isbn: Optional[str] = None
    cover_image: Optional[str] = None
    spine_text: str
    spine_color: str
    spine_texture: str
    last_edited: str
    enrichment: Optional[EnrichmentModel] = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    shelf_id: Optional[str] = Field(default=None, description="Defaults to the active shelf")
    isbn: Optional[str] = None
    cover_image: Optional[str] = None


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    status: Optional[str] = None
    rating: Optional[int] = None
    shelf_id: Optional[str] = None
    isbn: Optional[str] = None
    cover_image: Optional[str] = None


class SpineModel(BaseModel):
    text: str
    color: str
    texture: str
    height: int


class ReviewModel(BaseModel):
    id: str
    book_id: str
    user_name: str
    rating: int
    rating_label: str
    comment: str
    date: str


class ReviewCreateModel(BaseModel):
    rating: int
    comment: str


class ImportCsvModel(BaseModel):
    content: str = Field(description="CSV text of a Goodreads export")
    shelf_id: Optional[str] = None
    skip_duplicates: Optional[bool] = None


class ImportResultModel(BaseModel):
    status: str
    count: int = 0
    skipped: int = 0
    error: Optional[str] = None


class StatsModel(BaseModel):
    total_books: int
    books_read: int
    currently_reading: int
    want_to_read: int
    average_rating: Optional[float] = None
    average_rating_label: Optional[str] = None
    favorite_genres: List[str] = []
    reading_goal: int
    goal_progress: float
    books_to_go: int


# --- Helpers ---
def _book_model(book) -> BookModel:
    data = book.to_dict()
    data["rating_label"] = rating_label(book.rating) if book.rating is not None else None
    return BookModel(**data)


def _shelf_model(shelf) -> ShelfModel:
    counts = library.shelf_book_counts()
    return ShelfModel(**shelf.to_dict(), books=counts.get(shelf.id, 0),
                      active=shelf.id == library.active_shelf_id)


def _review_model(review) -> ReviewModel:
    return ReviewModel(**review.to_dict(), rating_label=rating_label(review.rating))


def _require_book(book_id: str):
    book = library.find_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


def _require_shelf(shelf_id: str):
    shelf = library.find_shelf(shelf_id)
    if shelf is None:
        raise HTTPException(status_code=404, detail="Shelf not found")
    return shelf


def _record_import(result: ImportResult) -> None:
    import_state["last"] = result


async def _run_import(reconciler: ImportReconciler, start) -> ImportResultModel:
    if import_state["last"].status == ImportStatus.IN_PROGRESS:
        raise HTTPException(status_code=409, detail="An import is already running")
    result = await start(reconciler)
    if result.status is ImportStatus.FAILED:
        raise HTTPException(status_code=422, detail=result.to_dict())
    return ImportResultModel(**result.to_dict())


# --- Health ---
@app.get("/health")
def health():
    """Lightweight liveness endpoint with feature flags."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "persistent": bool(_db_file),
        "google_books_enabled": settings.enable_google_books,
    }


# --- Shelves ---
@app.get("/shelves", response_model=List[ShelfModel])
def get_shelves():
    return [_shelf_model(s) for s in library.list_shelves()]


@app.post("/shelves", response_model=ShelfModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_shelf(payload: ShelfCreateModel):
    try:
        shelf = library.add_shelf(payload.name)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _shelf_model(shelf)


@app.put("/shelves/{shelf_id}", response_model=ShelfModel, dependencies=[Depends(get_api_key)])
def rename_shelf(shelf_id: str, payload: ShelfCreateModel):
    try:
        shelf = library.rename_shelf(shelf_id, payload.name)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if shelf is None:
        raise HTTPException(status_code=404, detail="Shelf not found")
    return _shelf_model(shelf)


@app.delete("/shelves/{shelf_id}", dependencies=[Depends(get_api_key)])
def delete_shelf(shelf_id: str):
    _require_shelf(shelf_id)
    try:
        removed = library.delete_shelf(shelf_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"deleted": shelf_id, "removed_books": removed}


@app.post("/shelves/{shelf_id}/activate", response_model=ShelfModel, dependencies=[Depends(get_api_key)])
def activate_shelf(shelf_id: str):
    shelf = _require_shelf(shelf_id)
    library.set_active_shelf(shelf_id)
    return _shelf_model(shelf)


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def get_books(shelf_id: Optional[str] = Query(None, description="Only books on this shelf")):
    return [_book_model(b) for b in library.list_books(shelf_id)]


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    try:
        book = library.add_book(payload.shelf_id or library.active_shelf_id, payload.title, payload.author,
                                isbn=payload.isbn, cover_image=payload.cover_image)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _book_model(book)


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    return _book_model(_require_book(book_id))


@app.patch("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, update: BookUpdateModel):
    _require_book(book_id)
    patch = update.model_dump(exclude_unset=True)
    try:
        book = library.edit_book(book_id, **patch)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _book_model(book)


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: str):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return {"deleted": book_id}


@app.post("/books/{book_id}/select", response_model=BookModel, dependencies=[Depends(get_api_key)])
async def select_book(book_id: str, wait: bool = Query(False, description="Wait for the metadata lookup")):
    """Open a book: it becomes the one currently being read and its metadata is fetched in the background."""
    _require_book(book_id)
    try:
        enricher.select(book_id)
    except ValidationError:
        raise HTTPException(status_code=404, detail="Book not found")
    task = enricher.request(book_id)
    if wait and task is not None:
        await asyncio.gather(task, return_exceptions=True)
    return _book_model(_require_book(book_id))


@app.get("/books/{book_id}/spine", response_model=SpineModel)
def get_book_spine(book_id: str):
    book = _require_book(book_id)
    return SpineModel(text=book.spine_text, color=book.spine_color,
                      texture=book.spine_texture, height=spine_height(book.id))


@app.get("/currently-reading", response_model=Optional[BookModel])
def get_currently_reading():
    book = library.currently_reading()
    return _book_model(book) if book else None


# --- Reviews ---
@app.get("/books/{book_id}/reviews", response_model=List[ReviewModel])
def get_book_reviews(book_id: str):
    _require_book(book_id)
    return [_review_model(r) for r in library.reviews_for_book(book_id)]


@app.post("/books/{book_id}/reviews", response_model=ReviewModel, status_code=201,
          dependencies=[Depends(get_api_key)])
def add_book_review(book_id: str, review: ReviewCreateModel):
    _require_book(book_id)
    try:
        created = library.add_review(book_id, review.rating, review.comment)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _review_model(created)


# --- Import ---
@app.post("/import/csv", response_model=ImportResultModel, dependencies=[Depends(get_api_key)])
async def import_csv(payload: ImportCsvModel):
    if payload.shelf_id is not None:
        _require_shelf(payload.shelf_id)
    reconciler = ImportReconciler(library, shelf_id=payload.shelf_id,
                                  skip_duplicates=payload.skip_duplicates, listener=_record_import)
    return await _run_import(reconciler, lambda r: r.import_csv(payload.content))


@app.post("/import/account", response_model=ImportResultModel, dependencies=[Depends(get_api_key)])
async def import_account(shelf_id: Optional[str] = Query(None)):
    if shelf_id is not None:
        _require_shelf(shelf_id)
    reconciler = ImportReconciler(library, shelf_id=shelf_id, listener=_record_import)
    try:
        return await _run_import(reconciler, lambda r: r.import_from_account())
    except ImportFailed as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.get("/import/status", response_model=ImportResultModel)
def get_import_status():
    return ImportResultModel(**import_state["last"].to_dict())


# --- Statistics ---
@app.get("/stats", response_model=StatsModel)
def get_stats(goal: Optional[int] = Query(None, ge=0, description="Reading goal (default from settings)")):
    stats = library.get_statistics(goal if goal is not None else settings.reading_goal)
    data: Dict[str, Any] = stats.to_dict()
    return StatsModel(**data)


@app.get("/")
def read_root():
    return {"message": f"{settings.app_name} API", "docs": "/docs"}
