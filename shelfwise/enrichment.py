"""On-demand metadata lookup for the selected book.

Selecting a book that has an ISBN but no enrichment yet starts one background
lookup. The library stays fully usable while it runs; the result is attached
only if the book still exists when it arrives.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from shelfwise.book import Book, GoogleBookData
from shelfwise.library import Library
from shelfwise.services.google_books_service import GoogleBooksAPIError, GoogleBooksService

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Awaitable[Optional[GoogleBookData]]]


class MetadataEnricher:
    """Runs at most one outstanding lookup per book."""

    def __init__(self, library: Library, lookup: Optional[Lookup] = None) -> None:
        self.library = library
        self.lookup: Lookup = lookup or GoogleBooksService().fetch_book_by_isbn
        self._inflight: Dict[str, asyncio.Task] = {}

    def select(self, book_id: str) -> Book:
        """Mark a book as viewed and start its lookup if one is due."""
        book = self.library.touch_book(book_id)
        self.request(book_id)
        return book

    def request(self, book_id: str) -> Optional[asyncio.Task]:
        """Schedule a lookup; returns the task, or None when nothing is needed.

        Must be called from a running event loop.
        """
        if book_id in self._inflight:
            return self._inflight[book_id]

        book = self.library.find_book(book_id)
        if book is None or not book.isbn or book.enrichment is not None:
            return None

        task = asyncio.get_running_loop().create_task(self._run(book_id, book.isbn))
        self._inflight[book_id] = task
        task.add_done_callback(lambda _t, bid=book_id: self._inflight.pop(bid, None))
        logger.debug("Enrichment lookup scheduled for %s (ISBN %s)", book_id, book.isbn)
        return task

    async def _run(self, book_id: str, isbn: str) -> Optional[GoogleBookData]:
        try:
            record = await self.lookup(isbn)
        except GoogleBooksAPIError as e:
            logger.warning("Metadata lookup for ISBN %s failed: %s", isbn, e)
            return None
        except Exception:
            logger.exception("Unexpected error looking up ISBN %s", isbn)
            return None

        if record is None:
            logger.info("No metadata found for ISBN %s", isbn)
            return None

        if not self.library.attach_enrichment(book_id, record):
            return None
        logger.info("Attached metadata to book %s", book_id)
        return record

    def pending(self) -> List[str]:
        return list(self._inflight)

    async def drain(self) -> None:
        """Wait for every outstanding lookup to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
