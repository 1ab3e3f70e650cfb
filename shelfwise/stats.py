from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from shelfwise.book import Book, READ, READING, WANT_TO_READ
from shelfwise.spine import rating_label


@dataclass
class ReadingStats:
    """Profile summary of a library against the yearly reading goal"""
    total_books: int
    books_read: int
    currently_reading: int
    want_to_read: int
    average_rating: Optional[float]
    reading_goal: int
    favorite_genres: List[str] = field(default_factory=list)

    @property
    def average_rating_label(self) -> Optional[str]:
        if self.average_rating is None:
            return None
        return rating_label(int(self.average_rating))

    @property
    def goal_progress(self) -> float:
        """Percentage of the goal reached, capped at 100."""
        if self.reading_goal <= 0:
            return 100.0
        return min(100.0, self.books_read / self.reading_goal * 100)

    @property
    def books_to_go(self) -> int:
        return max(0, self.reading_goal - self.books_read)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_books": self.total_books,
            "books_read": self.books_read,
            "currently_reading": self.currently_reading,
            "want_to_read": self.want_to_read,
            "average_rating": self.average_rating,
            "average_rating_label": self.average_rating_label,
            "reading_goal": self.reading_goal,
            "goal_progress": round(self.goal_progress, 1),
            "books_to_go": self.books_to_go,
            "favorite_genres": self.favorite_genres,
        }


def compute_reading_stats(books: Iterable[Book], reading_goal: int) -> ReadingStats:
    books = list(books)
    statuses = Counter(b.status for b in books)
    ratings = [b.rating for b in books if b.rating is not None]
    genres = Counter(
        category
        for b in books if b.enrichment
        for category in b.enrichment.categories
    )

    return ReadingStats(
        total_books=len(books),
        books_read=statuses[READ],
        currently_reading=statuses[READING],
        want_to_read=statuses[WANT_TO_READ],
        average_rating=round(sum(ratings) / len(ratings), 1) if ratings else None,
        reading_goal=reading_goal,
        favorite_genres=[name for name, _ in genres.most_common(3)],
    )
