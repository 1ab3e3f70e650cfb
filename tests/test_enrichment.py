import asyncio

from shelfwise.book import GoogleBookData, READING
from shelfwise.enrichment import MetadataEnricher
from shelfwise.services.google_books_service import GoogleBooksAPIError

ISBN = "9780441172719"


class FakeLookup:
    """Records calls and optionally blocks until released."""

    def __init__(self, record=None, error=None, gate=None):
        self.calls = []
        self.record = record
        self.error = error
        self.gate = gate

    async def __call__(self, isbn):
        self.calls.append(isbn)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.record


def _dune_record():
    return GoogleBookData(isbn=ISBN, title="Dune", authors=["Frank Herbert"],
                          page_count=412, categories=["Fiction"], publisher="Chilton")


def test_selecting_twice_issues_one_lookup(lib):
    book = lib.add_book(lib.active_shelf_id, "Dune", "Frank Herbert", isbn=ISBN)
    lookup = FakeLookup(record=_dune_record())

    async def scenario():
        enricher = MetadataEnricher(lib, lookup=lookup)
        enricher.select(book.id)
        enricher.select(book.id)
        assert enricher.pending() == [book.id]
        await enricher.drain()
        assert enricher.pending() == []

    asyncio.run(scenario())

    assert lookup.calls == [ISBN]
    assert lib.find_book(book.id).enrichment.publisher == "Chilton"


def test_enriched_book_is_not_looked_up_again(lib):
    book = lib.add_book(lib.active_shelf_id, "Dune", "Frank Herbert", isbn=ISBN)
    lookup = FakeLookup(record=_dune_record())

    async def scenario():
        enricher = MetadataEnricher(lib, lookup=lookup)
        enricher.select(book.id)
        await enricher.drain()
        enricher.select(book.id)
        assert enricher.request(book.id) is None

    asyncio.run(scenario())
    assert len(lookup.calls) == 1


def test_select_without_isbn_only_touches(lib):
    first = lib.add_book(lib.active_shelf_id, "No ISBN", "Author")
    lib.add_book(lib.active_shelf_id, "Newer", "Author")
    lookup = FakeLookup(record=_dune_record())

    async def scenario():
        enricher = MetadataEnricher(lib, lookup=lookup)
        selected = enricher.select(first.id)
        assert selected.status == READING
        assert enricher.pending() == []

    asyncio.run(scenario())
    assert lookup.calls == []


def test_book_stays_usable_while_lookup_runs(lib):
    book = lib.add_book(lib.active_shelf_id, "Dune", "Frank Herbert", isbn=ISBN)

    async def scenario():
        lookup = FakeLookup(record=_dune_record(), gate=asyncio.Event())
        enricher = MetadataEnricher(lib, lookup=lookup)
        enricher.select(book.id)
        await asyncio.sleep(0)
        lib.edit_book(book.id, rating=70)
        assert lib.find_book(book.id).enrichment is None
        lookup.gate.set()
        await enricher.drain()

    asyncio.run(scenario())

    stored = lib.find_book(book.id)
    assert stored.rating == 70
    assert stored.enrichment.title == "Dune"


def test_result_for_deleted_book_is_discarded(lib):
    book = lib.add_book(lib.active_shelf_id, "Dune", "Frank Herbert", isbn=ISBN)

    async def scenario():
        lookup = FakeLookup(record=_dune_record(), gate=asyncio.Event())
        enricher = MetadataEnricher(lib, lookup=lookup)
        enricher.select(book.id)
        task = enricher.request(book.id)
        await asyncio.sleep(0)
        lib.remove_book(book.id)
        lookup.gate.set()
        return await task

    assert asyncio.run(scenario()) is None
    assert lib.find_book(book.id) is None
    assert lib.list_books() == []


def test_not_found_attaches_nothing(lib):
    book = lib.add_book(lib.active_shelf_id, "Obscure", "Nobody", isbn="0000000000")
    lookup = FakeLookup(record=None)

    async def scenario():
        enricher = MetadataEnricher(lib, lookup=lookup)
        enricher.select(book.id)
        await enricher.drain()

    asyncio.run(scenario())
    assert lib.find_book(book.id).enrichment is None


def test_lookup_failure_is_logged_and_retryable(lib, caplog):
    book = lib.add_book(lib.active_shelf_id, "Dune", "Frank Herbert", isbn=ISBN)
    lookup = FakeLookup(error=GoogleBooksAPIError("boom"))

    async def scenario():
        enricher = MetadataEnricher(lib, lookup=lookup)
        enricher.select(book.id)
        await enricher.drain()
        lookup.error = None
        lookup.record = _dune_record()
        enricher.select(book.id)
        await enricher.drain()

    asyncio.run(scenario())

    assert len(lookup.calls) == 2
    assert "Metadata lookup for ISBN" in caplog.text
    assert lib.find_book(book.id).enrichment is not None


def test_unexpected_lookup_error_is_logged_not_raised(lib, caplog):
    book = lib.add_book(lib.active_shelf_id, "Dune", "Frank Herbert", isbn=ISBN)
    lookup = FakeLookup(error=RuntimeError("malformed volume"))

    async def scenario():
        enricher = MetadataEnricher(lib, lookup=lookup)
        task = enricher.request(book.id)
        await enricher.drain()
        return task

    task = asyncio.run(scenario())

    assert task.result() is None
    assert "Unexpected error looking up ISBN" in caplog.text
    assert "malformed volume" in caplog.text
    assert lib.find_book(book.id).enrichment is None


def test_cancel_all_stops_outstanding_lookups(lib):
    book = lib.add_book(lib.active_shelf_id, "Dune", "Frank Herbert", isbn=ISBN)

    async def scenario():
        lookup = FakeLookup(record=_dune_record(), gate=asyncio.Event())
        enricher = MetadataEnricher(lib, lookup=lookup)
        task = enricher.request(book.id)
        await asyncio.sleep(0)
        await enricher.cancel_all()
        assert task.cancelled()
        assert enricher.pending() == []

    asyncio.run(scenario())
    assert lib.find_book(book.id).enrichment is None
