from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

READ = "read"
READING = "reading"
WANT_TO_READ = "want-to-read"
BOOK_STATUSES = (READ, READING, WANT_TO_READ)


@dataclass
class GoogleBookData:
    """Descriptive record attached to a Book after a metadata lookup"""
    isbn: str
    title: str
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    published_date: Optional[str] = None
    page_count: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    image_links: Dict[str, str] = field(default_factory=dict)
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    language: Optional[str] = None
    publisher: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "authors": self.authors,
            "description": self.description,
            "published_date": self.published_date,
            "page_count": self.page_count,
            "categories": self.categories,
            "image_links": self.image_links,
            "average_rating": self.average_rating,
            "ratings_count": self.ratings_count,
            "language": self.language,
            "publisher": self.publisher,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "GoogleBookData":
        return GoogleBookData(
            isbn=data.get("isbn", ""),
            title=data.get("title", ""),
            authors=list(data.get("authors") or []),
            description=data.get("description"),
            published_date=data.get("published_date"),
            page_count=data.get("page_count"),
            categories=list(data.get("categories") or []),
            image_links=dict(data.get("image_links") or {}),
            average_rating=data.get("average_rating"),
            ratings_count=data.get("ratings_count"),
            language=data.get("language"),
            publisher=data.get("publisher"),
        )


class Book:
    """A single book sitting on one of the user's shelves."""

    def __init__(self, id: str, title: str, author: str, shelf_id: str,
                 spine_text: str, spine_color: str, spine_texture: str,
                 last_edited: datetime, status: str = WANT_TO_READ,
                 rating: int | None = None, isbn: str | None = None,
                 cover_image: str | None = None,
                 enrichment: GoogleBookData | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.shelf_id = shelf_id
        self.status = status
        self.rating = rating
        self.isbn = isbn
        self.cover_image = cover_image
        self.last_edited = last_edited

        # Display fields, drawn once at creation
        self.spine_text = spine_text
        self.spine_color = spine_color
        self.spine_texture = spine_texture

        self.enrichment = enrichment

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} [{self.status}]"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, title={self.title!r}, status={self.status!r})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "shelf_id": self.shelf_id,
            "status": self.status,
            "rating": self.rating,
            "isbn": self.isbn,
            "cover_image": self.cover_image,
            "last_edited": self.last_edited.isoformat(),
            "spine_text": self.spine_text,
            "spine_color": self.spine_color,
            "spine_texture": self.spine_texture,
            "enrichment": self.enrichment.to_dict() if self.enrichment else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        last_edited = data["last_edited"]
        if isinstance(last_edited, str):
            last_edited = datetime.fromisoformat(last_edited.replace("Z", "+00:00"))
        if last_edited.tzinfo is None:
            last_edited = last_edited.replace(tzinfo=timezone.utc)

        enrichment = data.get("enrichment")
        if isinstance(enrichment, dict):
            enrichment = GoogleBookData.from_dict(enrichment)

        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            shelf_id=data["shelf_id"],
            status=data.get("status", WANT_TO_READ),
            rating=data.get("rating"),
            isbn=data.get("isbn"),
            cover_image=data.get("cover_image"),
            last_edited=last_edited,
            spine_text=data["spine_text"],
            spine_color=data["spine_color"],
            spine_texture=data["spine_texture"],
            enrichment=enrichment,
        )


@dataclass
class Bookshelf:
    """Named grouping of books"""
    id: str
    name: str
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass
class Review:
    """A reader's rating and comment on one book"""
    id: str
    book_id: str
    user_name: str
    rating: int
    comment: str
    date: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_name": self.user_name,
            "rating": self.rating,
            "comment": self.comment,
            "date": self.date,
        }
