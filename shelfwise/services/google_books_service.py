import logging
from typing import Any, Dict, Optional

import httpx

from shelfwise.book import GoogleBookData
from shelfwise.config import settings
from shelfwise.services.http_client import OptimizedHTTPClient, get_http_client
from shelfwise.validators import ISBNValidator

logger = logging.getLogger(__name__)

IMAGE_LINK_KEYS = ("thumbnail", "small", "medium", "large")


class GoogleBooksAPIError(Exception):
    """Transport or server failure talking to Google Books"""
    pass


class RateLimitExceeded(GoogleBooksAPIError):
    """Exception raised when rate limit is exceeded"""
    pass


class GoogleBooksService:
    """Looks up descriptive book metadata on the Google Books API"""

    def __init__(self, api_key: Optional[str] = None, http_client: Optional[OptimizedHTTPClient] = None,
                 enabled: Optional[bool] = None):
        self.api_key = api_key or settings.google_books_api_key
        self.base_url = "https://www.googleapis.com/books/v1"
        self.timeout = settings.google_books_timeout
        self.enabled = settings.enable_google_books if enabled is None else enabled
        self._http_client = http_client

    def is_available(self) -> bool:
        return self.enabled

    async def _client(self) -> OptimizedHTTPClient:
        if self._http_client is None:
            self._http_client = await get_http_client()
        return self._http_client

    async def _make_api_request(self, endpoint: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Returns the decoded body, or None when Google Books has no such resource."""
        url = f"{self.base_url}/{endpoint}"
        if self.api_key:
            params["key"] = self.api_key

        client = await self._client()
        try:
            response = await client.get_with_retry(url, params=params, timeout=self.timeout)
        except httpx.RequestError as e:
            logger.error(f"Google Books request failed: {e}")
            raise GoogleBooksAPIError(f"Could not reach Google Books: {e}") from e

        if response.status_code == 200:
            try:
                return response.json()
            except ValueError as e:
                logger.error(f"Google Books returned a body that is not JSON: {e}")
                raise GoogleBooksAPIError("Google Books returned an unreadable response") from e
        if response.status_code == 404:
            return None
        if response.status_code == 429:
            logger.warning("Rate limit exceeded for Google Books API")
            raise RateLimitExceeded("Rate limit exceeded")
        logger.error(f"API request failed: {response.status_code} - {response.text}")
        raise GoogleBooksAPIError(f"Google Books returned HTTP {response.status_code}")

    def _parse_volume_info(self, volume_data: Dict[str, Any], isbn: str) -> GoogleBookData:
        """Parse volume info from Google Books API response"""
        volume_info = volume_data.get("volumeInfo", {})
        image_links = volume_info.get("imageLinks", {}) or {}

        return GoogleBookData(
            isbn=isbn,
            title=volume_info.get("title", ""),
            authors=volume_info.get("authors", []),
            description=volume_info.get("description", ""),
            published_date=volume_info.get("publishedDate"),
            page_count=volume_info.get("pageCount"),
            categories=volume_info.get("categories", []),
            image_links={key: image_links[key] for key in IMAGE_LINK_KEYS if image_links.get(key)},
            average_rating=volume_info.get("averageRating"),
            ratings_count=volume_info.get("ratingsCount"),
            language=volume_info.get("language", "en"),
            publisher=volume_info.get("publisher"),
        )

    async def fetch_book_by_isbn(self, isbn: str) -> Optional[GoogleBookData]:
        """
        Fetch book data by ISBN from Google Books API

        Args:
            isbn: Book ISBN (10 or 13 digits)

        Returns:
            GoogleBookData object or None if not found

        Raises:
            GoogleBooksAPIError: the service could not be reached or answered with an error
        """
        clean_isbn = ISBNValidator.normalize_isbn(isbn)
        if not clean_isbn:
            logger.warning("Empty ISBN provided")
            return None

        if not self.is_available():
            logger.debug("Google Books lookups are disabled")
            return None

        response = await self._make_api_request("volumes", {"q": f"isbn:{clean_isbn}", "maxResults": 1})
        items = (response or {}).get("items") or []
        if not items:
            logger.info(f"Book not found in Google Books: ISBN {clean_isbn}")
            return None

        book_data = self._parse_volume_info(items[0], clean_isbn)
        logger.info(f"Book found via Google Books: {book_data.title} by {', '.join(book_data.authors)}")
        return book_data
