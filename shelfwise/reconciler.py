"""Derives the single "currently reading" book from edit recency.

The reading book is never stored separately: after any change to a book's
``last_edited`` the library re-runs :func:`reconcile_reading_status` over the
whole collection.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from shelfwise.book import Book, READ, READING

logger = logging.getLogger(__name__)


def most_recent_book(books: Iterable[Book]) -> Optional[Book]:
    """Book with the latest ``last_edited``; the earliest inserted wins ties."""
    latest: Optional[Book] = None
    for book in books:
        if latest is None or book.last_edited > latest.last_edited:
            latest = book
    return latest


def reconcile_reading_status(books: Sequence[Book]) -> List[Book]:
    """Promote the most recently edited book to ``reading``.

    Any other book still marked ``reading`` is demoted to ``read``; books that
    are ``want-to-read`` and not the most recent are left alone. The books are
    updated in place and the ones that changed are returned, so running this
    twice on the same collection returns an empty list the second time.
    """
    latest = most_recent_book(books)
    if latest is None:
        return []

    changed: List[Book] = []
    if latest.status != READING:
        logger.debug("Promoting %s to reading (was %s)", latest.id, latest.status)
        latest.status = READING
        changed.append(latest)

    for book in books:
        if book is not latest and book.status == READING:
            book.status = READ
            changed.append(book)

    return changed
