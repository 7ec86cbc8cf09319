"""Output and argument helpers shared by CLI commands."""
import json
from collections.abc import Iterable

from rich.console import Console
from rich.prompt import Confirm

from shiori.schemas.bookmark import BookmarkDTO

console = Console()
err_console = Console(stderr=True)


class InvalidIndexError(ValueError):
    """Raised when an index argument is not `N` or `N-M` with 1 <= N <= M."""

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"Invalid index: {token}")


def _positive(token: str, value: str) -> int:
    if not value.isdigit():
        raise InvalidIndexError(token)
    number = int(value)
    if number < 1:
        raise InvalidIndexError(token)
    return number


def parse_indices(args: Iterable[str]) -> list[int]:
    """
    Parse index arguments into sorted, unique bookmark ids.

    Each whitespace-separated token is `N` or an inclusive range `N-M`.
    An empty result means "all bookmarks".

    Raises:
        InvalidIndexError: For anything else, including `M < N` and zero.
    """
    ids: set[int] = set()
    for arg in args:
        for token in arg.split():
            if "-" in token:
                start_text, _, end_text = token.partition("-")
                start = _positive(token, start_text)
                end = _positive(token, end_text)
                if end < start:
                    raise InvalidIndexError(token)
                ids.update(range(start, end + 1))
            else:
                ids.add(_positive(token, token))
    return sorted(ids)


def confirm(question: str, assume_yes: bool = False) -> bool:
    """Ask a yes/no question unless `--yes` was given."""
    if assume_yes:
        return True
    return Confirm.ask(question, default=False, console=console)


def bookmark_json(bookmark: BookmarkDTO) -> dict:
    """JSON-ready dict of a bookmark, without its large text columns."""
    return bookmark.model_dump(mode="json", exclude={"content", "html"})


def print_bookmarks_json(bookmarks: list[BookmarkDTO]) -> None:
    print(json.dumps([bookmark_json(b) for b in bookmarks], indent=2, ensure_ascii=False))


def print_bookmarks(bookmarks: list[BookmarkDTO]) -> None:
    """Colored listing: id and title, URL, excerpt, tags."""
    for bookmark in bookmarks:
        console.print(f"[bold cyan]{bookmark.id}.[/bold cyan] [bold]{bookmark.title}[/bold]", highlight=False)
        console.print(f"    [yellow]{bookmark.url}[/yellow]", highlight=False)
        if bookmark.excerpt:
            console.print(f"    {bookmark.excerpt}", highlight=False, markup=False)
        if bookmark.tags:
            tags = " ".join(f"#{tag.name}" for tag in bookmark.tags)
            console.print(f"    [green]{tags}[/green]", highlight=False)
        console.print()


def print_error(message: str) -> None:
    err_console.print(f"[red]{message}[/red]", highlight=False)
