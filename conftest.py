import random
from datetime import datetime, timedelta, timezone

import pytest

from shelfwise.book import Book, WANT_TO_READ
from shelfwise.library import Library
from shelfwise.repository import SqliteRepository
from shelfwise.ui_helpers import OUTPUT_MODE_ENV


class TickingClock:
    """Clock that moves forward by a fixed step on every read."""

    def __init__(self, start=None, step=timedelta(minutes=1)):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # CLI output mode is kept in the environment; reset it for every test
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def lib(clock):
    library = Library(clock=clock, rng=random.Random(0))
    yield library
    library.close()


@pytest.fixture
def sqlite_lib(tmp_path, request, clock):
    # Unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    library = Library(repository=SqliteRepository(db_file), clock=clock, rng=random.Random(0))
    yield library
    library.close()


@pytest.fixture
def make_book():
    counter = {"n": 0}

    def _make(title="Untitled", status=WANT_TO_READ, minutes=0, shelf_id="shelf-1", **kwargs):
        counter["n"] += 1
        return Book(
            id=kwargs.pop("id", f"book-{counter['n']}"),
            title=title,
            author=kwargs.pop("author", "Anonymous"),
            shelf_id=shelf_id,
            spine_text=title.upper(),
            spine_color="#8B4513",
            spine_texture="cloth",
            last_edited=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
            status=status,
            **kwargs,
        )

    return _make
