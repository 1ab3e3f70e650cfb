import asyncio
import os
import subprocess
import sys
import webbrowser
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from shelfwise.config import configure_logging, settings
from shelfwise.enrichment import MetadataEnricher
from shelfwise.importer import ImportReconciler, ImportStatus
from shelfwise.library import Library, ValidationError
from shelfwise.repository import SqliteRepository
from shelfwise.services.http_client import cleanup_http_client
from shelfwise.spine import rating_label, spine_height
from shelfwise.ui_helpers import (
    get_output_mode,
    print_list_result,
    print_reviews_result,
    print_shelves_result,
    print_stats_result,
    set_output_mode,
)

APP_NAME = "Shelfwise CLI"

console = Console()


def _db_file() -> str:
    return (
        os.environ.get("LIBRARY_DB_FILE")
        or settings.database_file
        or str(Path.home() / ".shelfwise" / "library.db")
    )


class LibraryManager:
    """Hands out one Library per database file."""
    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_db = _db_file()
        if cls._instance is None or current_db != cls._db_file_snapshot:
            cls._instance = Library(
                repository=SqliteRepository(current_db),
                seed_default_shelves=settings.seed_default_shelves,
            )
            cls._db_file_snapshot = current_db
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None
        cls._db_file_snapshot = None


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/] {escape(message)}")
    raise typer.Exit(code=1)


def _success(message: str) -> None:
    if get_output_mode() == "rich":
        console.print(Panel.fit(f"[green]{escape(message)}[/]", border_style="green"))
    else:
        print(message)


# --- Typer CLI Application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    configure_logging("DEBUG" if settings.debug else "WARNING")
    if output:
        set_output_mode(output)


# ------------------------- Shelves ------------------------- #
@app.command("shelves")
def cli_shelves():
    """List shelves with their book counts; the active shelf is starred."""
    lib = LibraryManager.get_instance()
    print_shelves_result(lib.list_shelves(), lib.shelf_book_counts(), lib.active_shelf_id)


@app.command("add-shelf")
def cli_add_shelf(name: str):
    """Create a new shelf."""
    lib = LibraryManager.get_instance()
    try:
        shelf = lib.add_shelf(name)
    except ValidationError as e:
        _fail(str(e))
    _success(f"Created shelf: {shelf.name} ({shelf.id})")


@app.command("rename-shelf")
def cli_rename_shelf(shelf_id: str, name: str):
    """Rename a shelf."""
    lib = LibraryManager.get_instance()
    try:
        shelf = lib.rename_shelf(shelf_id, name)
    except ValidationError as e:
        _fail(str(e))
    if shelf is None:
        _fail(f"Shelf {shelf_id} not found.")
    _success(f"Renamed shelf to: {shelf.name}")


@app.command("delete-shelf")
def cli_delete_shelf(
    shelf_id: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a shelf together with every book on it."""
    lib = LibraryManager.get_instance()
    count = lib.shelf_book_counts().get(shelf_id, 0)
    if not yes and count and not typer.confirm(f"Delete the shelf and its {count} book(s)?"):
        print("Cancelled.")
        return
    try:
        removed = lib.delete_shelf(shelf_id)
    except ValidationError as e:
        _fail(str(e))
    _success(f"Deleted shelf {shelf_id} and {len(removed)} book(s).")


# ------------------------- Books ------------------------- #
@app.command("list")
def cli_list(
    shelf: Optional[str] = typer.Option(None, "--shelf", "-s", help="Shelf id (default: active shelf)"),
    all_shelves: bool = typer.Option(False, "--all", "-a", help="List books on every shelf"),
):
    """List the books on a shelf."""
    lib = LibraryManager.get_instance()
    books = lib.list_books() if all_shelves else lib.list_books(shelf or lib.active_shelf_id)
    print_list_result(books)


@app.command("add")
def cli_add(
    title: str,
    author: str,
    shelf: Optional[str] = typer.Option(None, "--shelf", "-s", help="Shelf id (default: active shelf)"),
    isbn: Optional[str] = typer.Option(None, "--isbn", help="ISBN-10 or ISBN-13"),
    cover: Optional[str] = typer.Option(None, "--cover", help="Cover image URL"),
):
    """Add a book to a shelf."""
    lib = LibraryManager.get_instance()
    try:
        book = lib.add_book(shelf or lib.active_shelf_id, title, author, isbn=isbn, cover_image=cover)
    except ValidationError as e:
        _fail(str(e))
    _success(f"Successfully added: {book.title} by {book.author} ({book.id})")


@app.command("edit")
def cli_edit(
    book_id: str,
    title: Optional[str] = typer.Option(None, "--title"),
    author: Optional[str] = typer.Option(None, "--author"),
    status: Optional[str] = typer.Option(None, "--status", help="read | reading | want-to-read"),
    rating: Optional[int] = typer.Option(None, "--rating", help="0-100"),
    shelf: Optional[str] = typer.Option(None, "--shelf", help="Move to shelf id"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
):
    """Edit a book's fields."""
    patch = {
        name: value
        for name, value in (("title", title), ("author", author), ("status", status),
                            ("rating", rating), ("shelf_id", shelf), ("isbn", isbn))
        if value is not None
    }
    if not patch:
        _fail("Nothing to update.")
    lib = LibraryManager.get_instance()
    try:
        book = lib.edit_book(book_id, **patch)
    except ValidationError as e:
        _fail(str(e))
    _success(f"Updated: {book.title} by {book.author} [{book.status}]")


@app.command("remove")
def cli_remove(book_id: str):
    """Remove a book and its reviews."""
    lib = LibraryManager.get_instance()
    if lib.remove_book(book_id):
        _success(f"Book {book_id} has been removed.")
    else:
        _fail(f"Book {book_id} not found.")


@app.command("select")
def cli_select(book_id: str):
    """Open a book: marks it as currently reading and fetches its metadata."""
    lib = LibraryManager.get_instance()

    async def run():
        enricher = MetadataEnricher(lib)
        try:
            enricher.select(book_id)
            await enricher.drain()
        finally:
            await cleanup_http_client()

    try:
        asyncio.run(run())
    except ValidationError as e:
        _fail(str(e))

    book = lib.find_book(book_id)
    if get_output_mode() == "json":
        print_list_result([book])
        return
    print(f"Title: {book.title}")
    print(f"Author: {book.author}")
    print(f"Status: {book.status}")
    print(f"Spine: {book.spine_text} ({book.spine_color}, {book.spine_texture}, {spine_height(book.id)}px)")
    if book.rating is not None:
        print(f"Rating: {book.rating} ({rating_label(book.rating)})")
    if book.enrichment:
        data = book.enrichment
        print(f"Publisher: {data.publisher or '-'}")
        print(f"Pages: {data.page_count or '-'}")
        print(f"Genres: {', '.join(data.categories) or '-'}")
        if data.description:
            print(f"Description: {data.description}")


# ------------------------- Reviews ------------------------- #
@app.command("review")
def cli_review(book_id: str, rating: int, comment: str):
    """Post a review (rating 0-100)."""
    lib = LibraryManager.get_instance()
    try:
        review = lib.add_review(book_id, rating, comment)
    except ValidationError as e:
        _fail(str(e))
    _success(f"Review posted: {rating_label(review.rating)}")


@app.command("reviews")
def cli_reviews(book_id: str):
    """Show the reviews of a book."""
    lib = LibraryManager.get_instance()
    print_reviews_result(lib.reviews_for_book(book_id))


# ------------------------- Import / stats ------------------------- #
@app.command("import-csv")
def cli_import_csv(
    file_path: str,
    shelf: Optional[str] = typer.Option(None, "--shelf", "-s", help="Target shelf id (default: active shelf)"),
):
    """Import a Goodreads CSV export."""
    lib = LibraryManager.get_instance()
    reconciler = ImportReconciler(lib, shelf_id=shelf)
    result = asyncio.run(reconciler.import_file(file_path))
    if result.status is not ImportStatus.SUCCEEDED:
        _fail(f"Import failed: {result.error}")
    _success(f"Import complete: {result.count} added, {result.skipped} skipped")


@app.command("stats")
def cli_stats(goal: Optional[int] = typer.Option(None, "--goal", "-g", help="Reading goal (default from settings)")):
    """Show reading statistics and goal progress."""
    lib = LibraryManager.get_instance()
    stats = lib.get_statistics(goal if goal is not None else settings.reading_goal)
    print_stats_result(stats.to_dict())


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Start the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")

    try:
        webbrowser.open(url)
    except Exception:
        console.print("[yellow]Could not open a web browser automatically.[/]")

    try:
        subprocess.run([sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)])
    except FileNotFoundError:
        _fail("`uvicorn` was not found. Make sure it is installed in your environment.")


if __name__ == "__main__":
    app()
