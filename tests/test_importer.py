import asyncio
from datetime import date

import httpx
import pytest

from shelfwise.book import READ, READING, WANT_TO_READ
from shelfwise.importer import (
    GoodreadsExportSource,
    ImportFailed,
    ImportPayloadError,
    ImportReconciler,
    ImportResult,
    ImportStatus,
    parse_goodreads_csv,
)

GOODREADS_EXPORT = (
    "Book Id,Title,Author,ISBN13,My Rating,Date Read,Exclusive Shelf\n"
    '234225,Dune,Frank Herbert,"=""9780441172719""",5,2024/01/15,read\n'
    "6185,Emma,Jane Austen,,0,,to-read\n"
    "22328,Neuromancer,William Gibson,,3,,currently-reading\n"
    "999,Broken Row,,,4,,read\n"
)


def test_parse_goodreads_export():
    records, skipped = parse_goodreads_csv(GOODREADS_EXPORT)

    assert skipped == 1
    assert [r.title for r in records] == ["Dune", "Emma", "Neuromancer"]
    dune, emma, neuromancer = records
    assert dune.rating == 100
    assert dune.date_read == date(2024, 1, 15)
    assert dune.status == READ
    assert dune.isbn == "9780441172719"
    assert emma.rating is None
    assert emma.status == WANT_TO_READ
    assert neuromancer.rating == 60
    assert neuromancer.status == READING


def test_parse_generic_columns():
    payload = "title,author,rating,date\nDune,Frank Herbert,85,2023-05-01\nEmma,Jane Austen,,\n"
    records, skipped = parse_goodreads_csv(payload)

    assert skipped == 0
    assert records[0].rating == 85
    assert records[0].status == READ
    assert records[1].status == WANT_TO_READ


def test_parse_skips_out_of_range_and_ragged_rows():
    payload = (
        "Title,Author,My Rating\n"
        "Dune,Frank Herbert,7\n"
        "Emma,Jane Austen,3,extra\n"
        "Neuromancer,William Gibson,4\n"
        "Moby Dick,Herman Melville,inf\n"
        ",,\n"
    )
    records, skipped = parse_goodreads_csv(payload)

    assert [r.title for r in records] == ["Neuromancer"]
    assert skipped == 3


def test_parse_handles_byte_order_mark():
    records, _ = parse_goodreads_csv("\ufeffTitle,Author\nDune,Frank Herbert\n")
    assert records[0].title == "Dune"


@pytest.mark.parametrize("payload", ["", "   \n", "just some text\nwithout columns\n"])
def test_parse_rejects_unrecognizable_payload(payload):
    with pytest.raises(ImportPayloadError):
        parse_goodreads_csv(payload)


def test_import_three_good_rows_and_one_malformed(lib):
    reconciler = ImportReconciler(lib)
    result = asyncio.run(reconciler.import_csv(GOODREADS_EXPORT))

    assert result.status == ImportStatus.SUCCEEDED
    assert result.count == 3
    assert result.skipped == 1
    assert len(lib.list_books()) == 3
    assert lib.currently_reading().title == "Neuromancer"
    assert reconciler.status == ImportStatus.SUCCEEDED


def test_header_only_payload_succeeds_with_zero(lib):
    result = asyncio.run(ImportReconciler(lib).import_csv("Title,Author,My Rating\n"))

    assert result.status == ImportStatus.SUCCEEDED
    assert result.count == 0
    assert lib.list_books() == []


def test_empty_payload_fails(lib):
    result = asyncio.run(ImportReconciler(lib).import_csv(""))

    assert result.status == ImportStatus.FAILED
    assert result.count == 0
    assert result.error
    assert lib.list_books() == []


def test_listener_sees_progress(lib):
    seen = []
    reconciler = ImportReconciler(lib, listener=lambda r: seen.append(r.status))
    asyncio.run(reconciler.import_csv(GOODREADS_EXPORT))

    assert seen == [ImportStatus.IN_PROGRESS, ImportStatus.SUCCEEDED]


def test_import_into_specific_shelf(lib):
    target = lib.list_shelves()[2]
    asyncio.run(ImportReconciler(lib, shelf_id=target.id).import_csv(GOODREADS_EXPORT))

    assert len(lib.list_books(target.id)) == 3


def test_import_into_unknown_shelf_fails(lib):
    result = asyncio.run(ImportReconciler(lib, shelf_id="missing").import_csv(GOODREADS_EXPORT))

    assert result.status == ImportStatus.FAILED
    assert lib.list_books() == []


def test_reimport_is_not_deduplicated_by_default(lib):
    reconciler = ImportReconciler(lib, skip_duplicates=False)
    asyncio.run(reconciler.import_csv(GOODREADS_EXPORT))
    asyncio.run(reconciler.import_csv(GOODREADS_EXPORT))

    assert len(lib.list_books()) == 6


def test_reimport_with_duplicate_skipping(lib):
    reconciler = ImportReconciler(lib, skip_duplicates=True)
    asyncio.run(reconciler.import_csv(GOODREADS_EXPORT))
    result = asyncio.run(reconciler.import_csv(GOODREADS_EXPORT))

    assert result.count == 0
    assert result.skipped == 4
    assert len(lib.list_books()) == 3


def test_second_import_while_running_is_rejected(lib):
    reconciler = ImportReconciler(lib)
    reconciler.last_result = ImportResult(ImportStatus.IN_PROGRESS)

    with pytest.raises(ImportFailed):
        asyncio.run(reconciler.import_csv(GOODREADS_EXPORT))
    assert lib.list_books() == []


def test_store_stays_usable_during_import(lib):
    gate = asyncio.Event()

    class SlowSource:
        async def fetch_export(self):
            await gate.wait()
            return GOODREADS_EXPORT

    async def scenario():
        reconciler = ImportReconciler(lib)
        task = asyncio.ensure_future(reconciler.import_from_account(SlowSource()))
        await asyncio.sleep(0)
        assert reconciler.status == ImportStatus.IN_PROGRESS
        lib.add_book(lib.active_shelf_id, "Added Meanwhile", "Someone")
        gate.set()
        return await task

    result = asyncio.run(scenario())

    assert result.count == 3
    assert [b.title for b in lib.list_books()][0] == "Added Meanwhile"


def test_import_file(lib, tmp_path):
    path = tmp_path / "goodreads_library_export.csv"
    path.write_text(GOODREADS_EXPORT, encoding="utf-8")

    result = asyncio.run(ImportReconciler(lib).import_file(str(path)))
    assert result.count == 3


def test_import_missing_file_fails(lib, tmp_path):
    result = asyncio.run(ImportReconciler(lib).import_file(str(tmp_path / "nope.csv")))

    assert result.status == ImportStatus.FAILED
    assert "nope.csv" in result.error


def test_account_import_downloads_export(lib):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, text=GOODREADS_EXPORT)

    source = GoodreadsExportSource(export_url="https://www.goodreads.com/review_porter/export/1.csv",
                                   transport=httpx.MockTransport(handler))
    result = asyncio.run(ImportReconciler(lib).import_from_account(source))

    assert result.status == ImportStatus.SUCCEEDED
    assert result.count == 3
    assert requested == ["https://www.goodreads.com/review_porter/export/1.csv"]


def test_account_import_transport_failure(lib):
    source = GoodreadsExportSource(export_url="https://www.goodreads.com/export.csv",
                                   transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    result = asyncio.run(ImportReconciler(lib).import_from_account(source))

    assert result.status == ImportStatus.FAILED
    assert lib.list_books() == []


def test_account_import_without_connection_fails(lib, monkeypatch):
    monkeypatch.setattr("shelfwise.importer.settings.goodreads_export_url", None)
    result = asyncio.run(ImportReconciler(lib).import_from_account())

    assert result.status == ImportStatus.FAILED
    assert "No connected account" in result.error


def test_result_to_dict():
    result = ImportResult(ImportStatus.SUCCEEDED, count=2, skipped=1)
    assert result.to_dict() == {"status": "succeeded", "count": 2, "skipped": 1, "error": None}


def test_invalid_isbn_is_dropped_not_fatal():
    records, skipped = parse_goodreads_csv('Title,Author,ISBN\nDune,Frank Herbert,"=""12345"""\n')

    assert skipped == 0
    assert records[0].isbn is None


@pytest.mark.parametrize("rating_column,value", [("My Rating", "inf"), ("rating", "1e999"), ("rating", "nan")])
def test_non_finite_rating_skips_row_without_failing_import(lib, rating_column, value):
    payload = (
        f"Title,Author,{rating_column}\n"
        "Dune,Frank Herbert,\n"
        "Emma,Jane Austen,\n"
        "Neuromancer,William Gibson,\n"
        f"Broken Row,Someone,{value}\n"
    )
    result = asyncio.run(ImportReconciler(lib).import_csv(payload))

    assert result.status == ImportStatus.SUCCEEDED
    assert result.count == 3
    assert result.skipped == 1
    assert "Broken Row" not in [b.title for b in lib.list_books()]


def test_blank_isbn13_falls_back_to_isbn_column():
    payload = 'Title,Author,ISBN,ISBN13\nDune,Frank Herbert,"=""0441172717""","="""""\n'
    records, _ = parse_goodreads_csv(payload)

    assert records[0].isbn == "0441172717"
