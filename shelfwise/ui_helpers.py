import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shelfwise.book import Book, Bookshelf, Review
from shelfwise.spine import rating_label

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _rating_text(rating) -> str:
    return f"{rating} ({rating_label(rating)})" if rating is not None else "-"


def print_list_result(books: List[Book]) -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author [status]' lines, or 'No books on this shelf.'
    - json: array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books on this shelf.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("Spine", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Status", style="green")
        table.add_column("Rating", style="yellow")
        for b in books:
            table.add_row(f"[on {b.spine_color}] {b.spine_text} [/]", b.title, b.author, b.status,
                          _rating_text(b.rating))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.status}]")


def print_shelves_result(shelves: List[Bookshelf], counts: Dict[str, int], active_id: str) -> None:
    mode = get_output_mode()

    if mode == "json":
        payload = [dict(s.to_dict(), books=counts.get(s.id, 0), active=s.id == active_id) for s in shelves]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="🗂 Shelves", header_style="bold cyan")
        table.add_column("Id", style="dim", no_wrap=True)
        table.add_column("Name")
        table.add_column("Books", justify="right")
        for s in shelves:
            marker = " *" if s.id == active_id else ""
            table.add_row(s.id, f"[{s.color}]●[/] {s.name}{marker}", str(counts.get(s.id, 0)))
        _console.print(table)
    else:
        for s in shelves:
            marker = " *" if s.id == active_id else ""
            print(f"{s.id} - {s.name} ({counts.get(s.id, 0)}){marker}")


def print_reviews_result(reviews: List[Review]) -> None:
    mode = get_output_mode()

    if not reviews:
        print("No reviews yet.")
        return

    if mode == "json":
        print(json.dumps([r.to_dict() for r in reviews], ensure_ascii=False))
    else:
        for r in reviews:
            print(f"{r.date} {r.user_name} - {rating_label(r.rating)}: {r.comment}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print reading statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the key metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
        return

    lines = [
        ("Total Books", stats["total_books"]),
        ("Read", stats["books_read"]),
        ("Currently Reading", stats["currently_reading"]),
        ("Want to Read", stats["want_to_read"]),
        ("Average Rating", stats["average_rating_label"] or "-"),
        ("Reading Goal", f"{stats['books_read']} of {stats['reading_goal']} ({stats['goal_progress']}%)"),
        ("Books To Go", stats["books_to_go"]),
    ]
    if mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {value}" for label, value in lines)
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for label, value in lines:
            print(f"{label}: {value}")
