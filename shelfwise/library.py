import logging
import random
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from shelfwise.book import Book, Bookshelf, Review, GoogleBookData, BOOK_STATUSES, READING, WANT_TO_READ
from shelfwise.reconciler import reconcile_reading_status
from shelfwise.repository import InMemoryRepository, LibraryRepository
from shelfwise.spine import generate_spine_color, generate_spine_texture, spine_text
from shelfwise.stats import ReadingStats, compute_reading_stats
from shelfwise.validators import ISBNValidator, TextValidator, is_valid_rating

if TYPE_CHECKING:  # pragma: no cover
    from shelfwise.importer import ImportedRecord

logger = logging.getLogger(__name__)

REVIEW_USER_NAME = "You"

DEFAULT_SHELVES = (
    ("My Library", "#8B4513"),
    ("Favorites", "#556B2F"),
    ("To Read", "#2F4F4F"),
)

EDITABLE_FIELDS = ("title", "author", "status", "rating", "shelf_id", "isbn", "cover_image")


class ValidationError(ValueError):
    """A mutation was rejected; the library is unchanged."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Library:
    """Owns books, shelves and reviews and keeps them consistent.

    Every mutation runs under one re-entrant lock and, when it changes a
    book's ``last_edited``, re-derives the currently reading book before
    returning.
    """

    def __init__(self, repository: Optional[LibraryRepository] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 rng: Optional[random.Random] = None,
                 seed_default_shelves: bool = True) -> None:
        self.repository = repository or InMemoryRepository()
        self._clock = clock or _utcnow
        self._rng = rng
        self._lock = threading.RLock()
        self._last_timestamp: Optional[datetime] = None

        if not self.repository.list_shelves():
            if seed_default_shelves:
                for name, color in DEFAULT_SHELVES:
                    self.repository.add_shelf(Bookshelf(id=self._new_id(), name=name, color=color))
            else:
                self.repository.add_shelf(Bookshelf(id=self._new_id(), name=DEFAULT_SHELVES[0][0],
                                                    color=DEFAULT_SHELVES[0][1]))
        self._active_shelf_id = self.repository.list_shelves()[0].id

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    def _now(self) -> datetime:
        """Current time, strictly later than any timestamp issued before."""
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _require_book(self, book_id: str) -> Book:
        book = self.repository.get_book(book_id)
        if book is None:
            raise ValidationError(f"Book {book_id} not found.")
        return book

    def _require_shelf(self, shelf_id: str) -> Bookshelf:
        shelf = self.repository.get_shelf(shelf_id)
        if shelf is None:
            raise ValidationError(f"Shelf {shelf_id} not found.")
        return shelf

    def _reconcile(self) -> List[Book]:
        changed = reconcile_reading_status(self.repository.list_books())
        if changed:
            self.repository.update_books(changed)
            logger.debug("Reading status reconciled for %d book(s)", len(changed))
        return changed

    def _build_book(self, shelf_id: str, title: str, author: str, isbn: Optional[str],
                    cover_image: Optional[str], status: str = WANT_TO_READ,
                    rating: Optional[int] = None) -> Book:
        if TextValidator.is_blank(title):
            raise ValidationError("Title cannot be empty.")
        if TextValidator.is_blank(author):
            raise ValidationError("Author cannot be empty.")
        if status not in BOOK_STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        if rating is not None and not is_valid_rating(rating):
            raise ValidationError("Rating must be a whole number between 0 and 100.")
        if isbn and not ISBNValidator.is_valid_isbn(isbn):
            raise ValidationError(f"Invalid ISBN: {isbn}")

        title = title.strip()
        return Book(
            id=self._new_id(),
            title=title,
            author=author,
            shelf_id=shelf_id,
            status=status,
            rating=rating,
            isbn=ISBNValidator.normalize_isbn(isbn) or None,
            cover_image=cover_image or None,
            last_edited=self._now(),
            spine_text=spine_text(title),
            spine_color=generate_spine_color(self._rng),
            spine_texture=generate_spine_texture(self._rng),
        )

    # ------------------------- Books ------------------------- #
    def add_book(self, shelf_id: str, title: str, author: str,
                 isbn: Optional[str] = None, cover_image: Optional[str] = None) -> Book:
        """Create a want-to-read book on ``shelf_id`` and reconcile reading status."""
        with self._lock:
            self._require_shelf(shelf_id)
            book = self._build_book(shelf_id, title, author, isbn, cover_image)
            self.repository.add_books([book])
            self._reconcile()
            logger.info("Added book %s (%s) to shelf %s", book.id, book.title, shelf_id)
            return self._require_book(book.id)

    def edit_book(self, book_id: str, **patch) -> Book:
        """Apply a partial update.

        Setting ``status="reading"`` counts as picking the book up again: its
        ``last_edited`` is refreshed and every other reading book is demoted.
        """
        unknown = set(patch) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            book = self._require_book(book_id)

            if "title" in patch:
                if TextValidator.is_blank(patch["title"]):
                    raise ValidationError("Title cannot be empty.")
            if "author" in patch:
                if TextValidator.is_blank(patch["author"]):
                    raise ValidationError("Author cannot be empty.")
            if "status" in patch and patch["status"] not in BOOK_STATUSES:
                raise ValidationError(f"Unknown status: {patch['status']}")
            if patch.get("rating") is not None and not is_valid_rating(patch["rating"]):
                raise ValidationError("Rating must be a whole number between 0 and 100.")
            if "shelf_id" in patch:
                self._require_shelf(patch["shelf_id"])
            if patch.get("isbn") and not ISBNValidator.is_valid_isbn(patch["isbn"]):
                raise ValidationError(f"Invalid ISBN: {patch['isbn']}")

            for name, value in patch.items():
                if name in ("title", "author"):
                    value = value.strip()
                elif name == "isbn":
                    value = ISBNValidator.normalize_isbn(value) or None
                elif name == "cover_image":
                    value = value or None
                setattr(book, name, value)

            picked_up = patch.get("status") == READING
            if picked_up:
                book.last_edited = self._now()
            self.repository.update_books([book])
            if picked_up:
                self._reconcile()
            logger.info("Edited book %s: %s", book_id, ", ".join(sorted(patch)) or "no changes")
            return self._require_book(book_id)

    def touch_book(self, book_id: str) -> Book:
        """Mark a book as just viewed; the recency signal for reading status."""
        with self._lock:
            book = self._require_book(book_id)
            book.last_edited = self._now()
            self.repository.update_books([book])
            self._reconcile()
            return self._require_book(book_id)

    def remove_book(self, book_id: str) -> bool:
        with self._lock:
            removed = self.repository.delete_book(book_id)
            if removed:
                logger.info("Removed book %s", book_id)
                self._reconcile()
            return removed

    def find_book(self, book_id: str) -> Optional[Book]:
        return self.repository.get_book(book_id)

    def list_books(self, shelf_id: Optional[str] = None) -> List[Book]:
        books = self.repository.list_books()
        if shelf_id is None:
            return books
        return [b for b in books if b.shelf_id == shelf_id]

    def currently_reading(self) -> Optional[Book]:
        for book in self.repository.list_books():
            if book.status == READING:
                return book
        return None

    def attach_enrichment(self, book_id: str, record: GoogleBookData) -> bool:
        """Store a lookup result on a book. Returns False if the book is gone."""
        with self._lock:
            book = self.repository.get_book(book_id)
            if book is None:
                logger.debug("Discarding enrichment for deleted book %s", book_id)
                return False
            book.enrichment = record
            self.repository.update_books([book])
            return True

    def import_records(self, records: Iterable["ImportedRecord"], shelf_id: Optional[str] = None,
                       skip_duplicates: bool = False) -> List[Book]:
        """Append a batch of imported records as new books, all or nothing."""
        with self._lock:
            target = shelf_id or self._active_shelf_id
            self._require_shelf(target)

            seen = set()
            if skip_duplicates:
                seen = {(b.title.casefold(), b.author.casefold()) for b in self.repository.list_books()}

            books: List[Book] = []
            for record in records:
                key = (record.title.strip().casefold(), record.author.strip().casefold())
                if skip_duplicates and key in seen:
                    continue
                seen.add(key)
                books.append(self._build_book(
                    target, record.title, record.author, record.isbn, None,
                    status=record.status or WANT_TO_READ, rating=record.rating,
                ))

            if books:
                self.repository.add_books(books)
                self._reconcile()
            logger.info("Imported %d book(s) onto shelf %s", len(books), target)
            return [self.repository.get_book(b.id) for b in books]

    # ------------------------- Shelves ------------------------- #
    @property
    def active_shelf_id(self) -> str:
        return self._active_shelf_id

    def set_active_shelf(self, shelf_id: str) -> Bookshelf:
        with self._lock:
            shelf = self._require_shelf(shelf_id)
            self._active_shelf_id = shelf_id
            return shelf

    def list_shelves(self) -> List[Bookshelf]:
        return self.repository.list_shelves()

    def find_shelf(self, shelf_id: str) -> Optional[Bookshelf]:
        return self.repository.get_shelf(shelf_id)

    def add_shelf(self, name: str) -> Bookshelf:
        if TextValidator.is_blank(name):
            raise ValidationError("Shelf name cannot be empty.")
        with self._lock:
            shelf = Bookshelf(id=self._new_id(), name=name.strip(), color=generate_spine_color(self._rng))
            self.repository.add_shelf(shelf)
            logger.info("Added shelf %s (%s)", shelf.id, shelf.name)
            return shelf

    def rename_shelf(self, shelf_id: str, name: str) -> Optional[Bookshelf]:
        if TextValidator.is_blank(name):
            raise ValidationError("Shelf name cannot be empty.")
        with self._lock:
            shelf = self.repository.get_shelf(shelf_id)
            if shelf is None:
                return None
            shelf.name = name.strip()
            self.repository.update_shelf(shelf)
            return shelf

    def delete_shelf(self, shelf_id: str) -> List[str]:
        """Delete a shelf with its books and their reviews; returns removed book ids."""
        with self._lock:
            shelves = self.repository.list_shelves()
            if len(shelves) <= 1:
                raise ValidationError("Cannot delete the last remaining shelf.")
            self._require_shelf(shelf_id)

            removed = self.repository.delete_shelf(shelf_id)
            if self._active_shelf_id == shelf_id:
                self._active_shelf_id = next(s.id for s in shelves if s.id != shelf_id)
            self._reconcile()
            logger.info("Deleted shelf %s and %d book(s)", shelf_id, len(removed))
            return removed

    def shelf_book_counts(self) -> Dict[str, int]:
        counts = {shelf.id: 0 for shelf in self.repository.list_shelves()}
        for book in self.repository.list_books():
            if book.shelf_id in counts:
                counts[book.shelf_id] += 1
        return counts

    # ------------------------- Reviews ------------------------- #
    def add_review(self, book_id: str, rating: int, comment: str) -> Review:
        if TextValidator.is_blank(comment):
            raise ValidationError("Review comment cannot be empty.")
        if not is_valid_rating(rating):
            raise ValidationError("Rating must be a whole number between 0 and 100.")
        with self._lock:
            self._require_book(book_id)
            review = Review(
                id=self._new_id(),
                book_id=book_id,
                user_name=REVIEW_USER_NAME,
                rating=rating,
                comment=comment.strip(),
                date=self._clock().date().isoformat(),
            )
            self.repository.add_review(review)
            return review

    def reviews_for_book(self, book_id: str) -> List[Review]:
        return self.repository.list_reviews(book_id)

    # ------------------------- Statistics ------------------------- #
    def get_statistics(self, reading_goal: int) -> ReadingStats:
        return compute_reading_stats(self.repository.list_books(), reading_goal)

    def close(self) -> None:
        self.repository.close()
