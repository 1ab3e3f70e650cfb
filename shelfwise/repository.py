"""Storage backends for the library.

The :class:`~shelfwise.library.Library` owns every mutation rule; a repository
only stores what it is given. ``InMemoryRepository`` keeps state for the life
of the process, ``SqliteRepository`` persists it to a database file.
"""

import json
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from shelfwise.book import Book, Bookshelf, Review

logger = logging.getLogger(__name__)


class LibraryRepository(ABC):
    """Persistence interface used by the Library store.

    Books and shelves are returned in insertion order. Methods taking several
    records apply them all or none.
    """

    # ------------------------- Books ------------------------- #
    @abstractmethod
    def list_books(self) -> List[Book]: ...

    @abstractmethod
    def get_book(self, book_id: str) -> Optional[Book]: ...

    @abstractmethod
    def add_books(self, books: List[Book]) -> None: ...

    @abstractmethod
    def update_books(self, books: List[Book]) -> None: ...

    @abstractmethod
    def delete_book(self, book_id: str) -> bool:
        """Remove a book together with its reviews."""

    # ------------------------- Shelves ------------------------- #
    @abstractmethod
    def list_shelves(self) -> List[Bookshelf]: ...

    @abstractmethod
    def get_shelf(self, shelf_id: str) -> Optional[Bookshelf]: ...

    @abstractmethod
    def add_shelf(self, shelf: Bookshelf) -> None: ...

    @abstractmethod
    def update_shelf(self, shelf: Bookshelf) -> None: ...

    @abstractmethod
    def delete_shelf(self, shelf_id: str) -> List[str]:
        """Remove a shelf, its books and their reviews. Returns the removed book ids."""

    # ------------------------- Reviews ------------------------- #
    @abstractmethod
    def list_reviews(self, book_id: Optional[str] = None) -> List[Review]: ...

    @abstractmethod
    def add_review(self, review: Review) -> None: ...

    def close(self) -> None:
        return None


class InMemoryRepository(LibraryRepository):
    """Volatile storage; books are shared by reference with the store."""

    def __init__(self) -> None:
        self._books: Dict[str, Book] = {}
        self._shelves: Dict[str, Bookshelf] = {}
        self._reviews: Dict[str, Review] = {}

    def list_books(self) -> List[Book]:
        return list(self._books.values())

    def get_book(self, book_id: str) -> Optional[Book]:
        return self._books.get(book_id)

    def add_books(self, books: List[Book]) -> None:
        for book in books:
            if book.id in self._books:
                raise ValueError(f"Book with id {book.id} already exists.")
        for book in books:
            self._books[book.id] = book

    def update_books(self, books: List[Book]) -> None:
        for book in books:
            if book.id in self._books:
                self._books[book.id] = book

    def delete_book(self, book_id: str) -> bool:
        if self._books.pop(book_id, None) is None:
            return False
        self._drop_reviews({book_id})
        return True

    def list_shelves(self) -> List[Bookshelf]:
        return list(self._shelves.values())

    def get_shelf(self, shelf_id: str) -> Optional[Bookshelf]:
        return self._shelves.get(shelf_id)

    def add_shelf(self, shelf: Bookshelf) -> None:
        self._shelves[shelf.id] = shelf

    def update_shelf(self, shelf: Bookshelf) -> None:
        if shelf.id in self._shelves:
            self._shelves[shelf.id] = shelf

    def delete_shelf(self, shelf_id: str) -> List[str]:
        if self._shelves.pop(shelf_id, None) is None:
            return []
        removed = [b.id for b in self._books.values() if b.shelf_id == shelf_id]
        for book_id in removed:
            del self._books[book_id]
        self._drop_reviews(set(removed))
        return removed

    def list_reviews(self, book_id: Optional[str] = None) -> List[Review]:
        return [r for r in self._reviews.values() if book_id is None or r.book_id == book_id]

    def add_review(self, review: Review) -> None:
        self._reviews[review.id] = review

    def _drop_reviews(self, book_ids: Iterable[str]) -> None:
        book_ids = set(book_ids)
        self._reviews = {rid: r for rid, r in self._reviews.items() if r.book_id not in book_ids}


class SqliteRepository(LibraryRepository):
    """SQLite-backed storage, one short-lived connection per operation."""

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file
        directory = os.path.dirname(os.path.abspath(db_file))
        os.makedirs(directory, exist_ok=True)
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_file)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_tables(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS shelves (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT UNIQUE NOT NULL,
                        name TEXT NOT NULL,
                        color TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS books (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT UNIQUE NOT NULL,
                        shelf_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        author TEXT NOT NULL,
                        status TEXT NOT NULL,
                        rating INTEGER CHECK(rating IS NULL OR (rating >= 0 AND rating <= 100)),
                        isbn TEXT,
                        cover_image TEXT,
                        last_edited TEXT NOT NULL,
                        spine_text TEXT NOT NULL,
                        spine_color TEXT NOT NULL,
                        spine_texture TEXT NOT NULL,
                        enrichment TEXT
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS reviews (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT UNIQUE NOT NULL,
                        book_id TEXT NOT NULL,
                        user_name TEXT NOT NULL,
                        rating INTEGER NOT NULL CHECK(rating >= 0 AND rating <= 100),
                        comment TEXT NOT NULL,
                        date TEXT NOT NULL
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_books_shelf_id ON books(shelf_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_reviews_book_id ON reviews(book_id)")
        finally:
            conn.close()

    # ------------------------- Row mapping ------------------------- #
    @staticmethod
    def _book_params(book: Book) -> dict:
        data = book.to_dict()
        data["enrichment"] = json.dumps(data["enrichment"]) if data["enrichment"] else None
        return data

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> Book:
        data = dict(row)
        data.pop("seq", None)
        if data.get("enrichment"):
            data["enrichment"] = json.loads(data["enrichment"])
        return Book.from_dict(data)

    # ------------------------- Books ------------------------- #
    def list_books(self) -> List[Book]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM books ORDER BY seq").fetchall()
            return [self._row_to_book(row) for row in rows]
        finally:
            conn.close()

    def get_book(self, book_id: str) -> Optional[Book]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
            return self._row_to_book(row) if row else None
        finally:
            conn.close()

    def add_books(self, books: List[Book]) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.executemany("""
                    INSERT INTO books (
                        id, shelf_id, title, author, status, rating, isbn, cover_image,
                        last_edited, spine_text, spine_color, spine_texture, enrichment
                    ) VALUES (
                        :id, :shelf_id, :title, :author, :status, :rating, :isbn, :cover_image,
                        :last_edited, :spine_text, :spine_color, :spine_texture, :enrichment
                    )
                """, [self._book_params(b) for b in books])
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Could not store books: {e}") from e
        finally:
            conn.close()

    def update_books(self, books: List[Book]) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.executemany("""
                    UPDATE books
                    SET shelf_id = :shelf_id, title = :title, author = :author, status = :status,
                        rating = :rating, isbn = :isbn, cover_image = :cover_image,
                        last_edited = :last_edited, enrichment = :enrichment
                    WHERE id = :id
                """, [self._book_params(b) for b in books])
        finally:
            conn.close()

    def delete_book(self, book_id: str) -> bool:
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
                conn.execute("DELETE FROM reviews WHERE book_id = ?", (book_id,))
                return cursor.rowcount > 0
        finally:
            conn.close()

    # ------------------------- Shelves ------------------------- #
    def list_shelves(self) -> List[Bookshelf]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT id, name, color FROM shelves ORDER BY seq").fetchall()
            return [Bookshelf(**dict(row)) for row in rows]
        finally:
            conn.close()

    def get_shelf(self, shelf_id: str) -> Optional[Bookshelf]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT id, name, color FROM shelves WHERE id = ?", (shelf_id,)).fetchone()
            return Bookshelf(**dict(row)) if row else None
        finally:
            conn.close()

    def add_shelf(self, shelf: Bookshelf) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("INSERT INTO shelves (id, name, color) VALUES (?, ?, ?)",
                             (shelf.id, shelf.name, shelf.color))
        finally:
            conn.close()

    def update_shelf(self, shelf: Bookshelf) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("UPDATE shelves SET name = ?, color = ? WHERE id = ?",
                             (shelf.name, shelf.color, shelf.id))
        finally:
            conn.close()

    def delete_shelf(self, shelf_id: str) -> List[str]:
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM shelves WHERE id = ?", (shelf_id,))
                if cursor.rowcount == 0:
                    return []
                removed = [row["id"] for row in conn.execute(
                    "SELECT id FROM books WHERE shelf_id = ?", (shelf_id,))]
                conn.execute("DELETE FROM reviews WHERE book_id IN (SELECT id FROM books WHERE shelf_id = ?)",
                             (shelf_id,))
                conn.execute("DELETE FROM books WHERE shelf_id = ?", (shelf_id,))
                return removed
        finally:
            conn.close()

    # ------------------------- Reviews ------------------------- #
    def list_reviews(self, book_id: Optional[str] = None) -> List[Review]:
        conn = self._connect()
        try:
            query = "SELECT id, book_id, user_name, rating, comment, date FROM reviews"
            params: tuple = ()
            if book_id is not None:
                query += " WHERE book_id = ?"
                params = (book_id,)
            rows = conn.execute(query + " ORDER BY seq", params).fetchall()
            return [Review(**dict(row)) for row in rows]
        finally:
            conn.close()

    def add_review(self, review: Review) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO reviews (id, book_id, user_name, rating, comment, date) VALUES (?, ?, ?, ?, ?, ?)",
                    (review.id, review.book_id, review.user_name, review.rating, review.comment, review.date),
                )
        finally:
            conn.close()
