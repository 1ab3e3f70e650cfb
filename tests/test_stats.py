from shelfwise.book import GoogleBookData, READ, READING, WANT_TO_READ
from shelfwise.stats import ReadingStats, compute_reading_stats


def _enriched(*categories):
    return GoogleBookData(isbn="0", title="x", categories=list(categories))


def test_compute_reading_stats(make_book):
    books = [
        make_book("A", status=READ, rating=90, enrichment=_enriched("Fiction", "Classics")),
        make_book("B", status=READ, rating=45, enrichment=_enriched("Fiction")),
        make_book("C", status=READING, enrichment=_enriched("History")),
        make_book("D", status=WANT_TO_READ, enrichment=_enriched("Fiction", "History", "Poetry")),
        make_book("E", status=WANT_TO_READ),
    ]

    stats = compute_reading_stats(books, reading_goal=10)

    assert stats.total_books == 5
    assert stats.books_read == 2
    assert stats.currently_reading == 1
    assert stats.want_to_read == 2
    assert stats.average_rating == 67.5
    assert stats.average_rating_label == "Great"
    assert stats.favorite_genres == ["Fiction", "History", "Classics"]
    assert stats.goal_progress == 20.0
    assert stats.books_to_go == 8


def test_empty_library():
    stats = compute_reading_stats([], reading_goal=50)

    assert stats.total_books == 0
    assert stats.average_rating is None
    assert stats.average_rating_label is None
    assert stats.goal_progress == 0.0
    assert stats.books_to_go == 50
    assert stats.favorite_genres == []


def test_goal_progress_is_capped():
    stats = ReadingStats(total_books=60, books_read=60, currently_reading=0, want_to_read=0,
                         average_rating=None, reading_goal=50)
    assert stats.goal_progress == 100.0
    assert stats.books_to_go == 0


def test_zero_goal_counts_as_reached():
    stats = ReadingStats(total_books=0, books_read=0, currently_reading=0, want_to_read=0,
                         average_rating=None, reading_goal=0)
    assert stats.goal_progress == 100.0


def test_to_dict_rounds_progress():
    stats = ReadingStats(total_books=3, books_read=1, currently_reading=1, want_to_read=1,
                         average_rating=80.0, reading_goal=3)
    data = stats.to_dict()

    assert data["goal_progress"] == 33.3
    assert data["average_rating_label"] == "Loved"
    assert data["books_to_go"] == 2
