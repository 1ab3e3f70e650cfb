"""
Bulk import of externally sourced reading history.

Reads Goodreads-style CSV exports (uploaded text, a file on disk, or the CSV
export of a connected account) into ImportedRecord objects and appends them to
the library as new books in a single batch.
"""

import asyncio
import csv
import io
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Tuple

import httpx

from shelfwise.book import READ, READING, WANT_TO_READ
from shelfwise.config import settings
from shelfwise.library import Library, ValidationError
from shelfwise.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

TITLE_COLUMNS = ("Title", "title")
AUTHOR_COLUMNS = ("Author", "author")
STAR_RATING_COLUMNS = ("My Rating",)
RATING_COLUMNS = ("rating", "Rating")
DATE_COLUMNS = ("Date Read", "date_read", "date")
SHELF_COLUMNS = ("Exclusive Shelf", "status")
ISBN_COLUMNS = ("ISBN13", "ISBN", "isbn")

DATE_FORMATS = (
    "%Y/%m/%d",     # 2024/11/28
    "%Y-%m-%d",     # 2024-11-28
    "%m/%d/%Y",     # 11/28/2024
    "%Y/%m",        # 2024/11
    "%Y",           # 2024
)

SHELF_STATUSES = {
    "read": READ,
    "currently-reading": READING,
    "reading": READING,
    "to-read": WANT_TO_READ,
    "want-to-read": WANT_TO_READ,
}


class ImportFailed(Exception):
    """The import could not run; nothing was merged."""


class ImportPayloadError(ImportFailed):
    """The payload is empty or is not a recognizable export."""


class ImportStatus(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ImportedRecord:
    title: str
    author: str
    rating: Optional[int] = None
    date_read: Optional[date] = None
    status: Optional[str] = None
    isbn: Optional[str] = None


@dataclass
class ImportResult:
    status: ImportStatus
    count: int = 0
    skipped: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "count": self.count,
            "skipped": self.skipped,
            "error": self.error,
        }


# ------------------------- Parsing ------------------------- #
def _pick(row: dict, columns: Tuple[str, ...]) -> Optional[str]:
    for column in columns:
        value = row.get(column)
        if value is not None and value.strip():
            return value.strip()
    return None


def _pick_isbn(row: dict) -> Optional[str]:
    """First ISBN column holding an actual number once spreadsheet quoting is stripped."""
    for column in ISBN_COLUMNS:
        isbn = ISBNValidator.normalize_isbn(row.get(column))
        if isbn:
            return isbn
    return None


def _whole_number(value: str) -> int:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"rating is not a finite number: {value}")
    return int(number)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    logger.warning(f"Could not parse date: {value}")
    return None


def _parse_rating(row: dict) -> Optional[int]:
    """Goodreads stars (1-5, 0 = unrated) become 20-100; plain ratings are already 0-100."""
    stars = _pick(row, STAR_RATING_COLUMNS)
    if stars is not None:
        value = _whole_number(stars)
        if not 0 <= value <= 5:
            raise ValueError(f"star rating out of range: {stars}")
        return value * 20 if value else None

    raw = _pick(row, RATING_COLUMNS)
    if raw is None:
        return None
    value = _whole_number(raw)
    if not 0 <= value <= 100:
        raise ValueError(f"rating out of range: {raw}")
    return value


def _row_to_record(row: dict) -> ImportedRecord:
    if None in row:
        raise ValueError("row has more cells than the header")
    title = _pick(row, TITLE_COLUMNS)
    author = _pick(row, AUTHOR_COLUMNS)
    if not title or not author:
        raise ValueError("title and author are required")

    date_read = _parse_date(_pick(row, DATE_COLUMNS))
    shelf = _pick(row, SHELF_COLUMNS)
    status = SHELF_STATUSES.get(shelf.lower()) if shelf else None
    if status is None:
        status = READ if date_read else WANT_TO_READ

    isbn = _pick_isbn(row)
    if isbn and not ISBNValidator.is_valid_isbn(isbn):
        logger.debug(f"Dropping invalid ISBN {isbn} for {title}")
        isbn = None

    return ImportedRecord(
        title=title,
        author=author,
        rating=_parse_rating(row),
        date_read=date_read,
        status=status,
        isbn=isbn,
    )


def parse_goodreads_csv(payload: str) -> Tuple[List[ImportedRecord], int]:
    """
    Parse a CSV export into records.

    Args:
        payload: CSV text with a header row

    Returns:
        (records, skipped) where skipped counts malformed rows

    Raises:
        ImportPayloadError: the payload is empty or has no title/author columns
    """
    if TextValidator.is_blank(payload):
        raise ImportPayloadError("Import file is empty.")

    try:
        reader = csv.DictReader(io.StringIO(payload.lstrip("\ufeff")))
        fieldnames = [name.strip() for name in reader.fieldnames or []]
        reader.fieldnames = fieldnames
        if not any(c in fieldnames for c in TITLE_COLUMNS) or not any(c in fieldnames for c in AUTHOR_COLUMNS):
            raise ImportPayloadError("Import file has no Title/Author columns.")

        records: List[ImportedRecord] = []
        skipped = 0
        for line_no, row in enumerate(reader, start=2):
            if not any((v or "").strip() for k, v in row.items() if k is not None):
                continue
            try:
                records.append(_row_to_record(row))
            except ValueError as e:
                skipped += 1
                logger.warning(f"Skipping import row {line_no}: {e}")
    except csv.Error as e:
        raise ImportPayloadError(f"Import file is not valid CSV: {e}") from e

    logger.info(f"Parsed {len(records)} record(s), skipped {skipped}")
    return records, skipped


# ------------------------- Sources ------------------------- #
class AccountSource(Protocol):
    """A connected external account that can hand over its reading history."""

    async def fetch_export(self) -> str: ...


class GoodreadsExportSource:
    """Downloads the CSV export of a connected Goodreads account."""

    def __init__(self, export_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.export_url = export_url or settings.goodreads_export_url
        self.timeout = timeout or settings.import_timeout
        self._transport = transport

    async def fetch_export(self) -> str:
        if not self.export_url:
            raise ImportFailed("No connected account is configured.")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True,
                                         transport=self._transport) as client:
                response = await client.get(self.export_url)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            raise ImportFailed(f"Could not download account export: {e}") from e


# ------------------------- Pipeline ------------------------- #
class ImportReconciler:
    """
    Runs imports against a library and reports their progress.

    Status moves idle -> in_progress -> succeeded | failed. Parsing and
    downloading happen off the store's lock, so the library keeps serving
    other mutations while an import is running; the parsed batch is applied
    in one step.
    """

    def __init__(self, library: Library, shelf_id: Optional[str] = None,
                 skip_duplicates: Optional[bool] = None,
                 listener: Optional[Callable[[ImportResult], None]] = None) -> None:
        self.library = library
        self.shelf_id = shelf_id
        self.skip_duplicates = settings.import_skip_duplicates if skip_duplicates is None else skip_duplicates
        self.listener = listener
        self.last_result = ImportResult(ImportStatus.IDLE)

    @property
    def status(self) -> ImportStatus:
        return self.last_result.status

    def _report(self, result: ImportResult) -> ImportResult:
        self.last_result = result
        if self.listener:
            self.listener(result)
        return result

    async def import_csv(self, payload: str) -> ImportResult:
        return await self._run(lambda: asyncio.to_thread(parse_goodreads_csv, payload))

    async def import_file(self, path: str) -> ImportResult:
        async def load():
            try:
                text = await asyncio.to_thread(Path(path).read_text, encoding="utf-8-sig")
            except OSError as e:
                raise ImportFailed(f"Could not read {path}: {e}") from e
            return await asyncio.to_thread(parse_goodreads_csv, text)

        return await self._run(load)

    async def import_from_account(self, source: Optional[AccountSource] = None) -> ImportResult:
        source = source or GoodreadsExportSource()

        async def load():
            text = await source.fetch_export()
            return await asyncio.to_thread(parse_goodreads_csv, text)

        return await self._run(load)

    async def _run(self, load) -> ImportResult:
        if self.status == ImportStatus.IN_PROGRESS:
            raise ImportFailed("An import is already running.")
        self._report(ImportResult(ImportStatus.IN_PROGRESS))

        try:
            records, skipped = await load()
            books = self.library.import_records(records, shelf_id=self.shelf_id,
                                                skip_duplicates=self.skip_duplicates)
        except (ImportFailed, ValidationError) as e:
            logger.error(f"Import failed: {e}")
            return self._report(ImportResult(ImportStatus.FAILED, error=str(e)))
        except Exception as e:
            self._report(ImportResult(ImportStatus.FAILED, error=str(e)))
            raise

        skipped += len(records) - len(books)
        logger.info(f"Import succeeded: {len(books)} book(s) added, {skipped} skipped")
        return self._report(ImportResult(ImportStatus.SUCCEEDED, count=len(books), skipped=skipped))
