"""Command-line interface for Shiori."""
import argparse
import asyncio
import logging
import sys
import tempfile
import webbrowser
from collections.abc import Awaitable, Callable
from pathlib import Path

import uvicorn
from rich.prompt import Prompt
from rich.table import Table
from sqlalchemy.ext.asyncio import AsyncSession

from shiori import __version__
from shiori.api.main import create_app
from shiori.api.routers.system import version_info
from shiori.cli.utils import (
    confirm,
    console,
    parse_indices,
    print_bookmarks,
    print_bookmarks_json,
    print_error,
)
from shiori.core.config import Settings, get_settings
from shiori.core.dependencies import Dependencies
from shiori.core.logging_config import configure_logging
from shiori.models.bookmark import ARCHIVER_PDF
from shiori.schemas.account import AccountDTO
from shiori.schemas.bookmark import BookmarkCreate, BookmarkDTO, UpdateCacheRequest
from shiori.schemas.tag import TagDTO, normalize_tag_name
from shiori.services import account_service, bookmark_service, importers, processing
from shiori.services.archiver import ArchiveError, read_warc_record
from shiori.services.bookmark_service import GetBookmarksOptions, OrderMethod
from shiori.services.exceptions import AccountNotFoundError
from shiori.services.storage import archive_path
from shiori.services.url_cleaner import canonicalize_url
from shiori.services.url_scraper import check_url

logger = logging.getLogger(__name__)

Command = Callable[[Dependencies, argparse.Namespace], Awaitable[int]]

# Concurrent requests made by `shiori check`
CHECK_CONCURRENCY = 10


def _split_tags(values: list[str] | None) -> list[str]:
    """Flatten repeated and comma-separated --tags values into normalized names."""
    names = []
    for value in values or []:
        for raw in value.split(","):
            if raw.strip():
                # a leading "-" marks removal and survives normalization
                prefix = "-" if raw.strip().startswith("-") else ""
                names.append(prefix + normalize_tag_name(raw.strip().lstrip("-")))
    return list(dict.fromkeys(names))


async def _load_bookmarks(deps: Dependencies, options: GetBookmarksOptions) -> list[BookmarkDTO]:
    async with deps.database.reader() as db:
        bookmarks = await bookmark_service.get_bookmarks(db, options)
    return [deps.storage.with_file_flags(bookmark) for bookmark in bookmarks]


# =============
# Bookmarks
# =============

async def cmd_add(deps: Dependencies, args: argparse.Namespace) -> int:
    """Save a new bookmark."""
    request = BookmarkCreate(
        url=args.url,
        title=args.title or "",
        excerpt=args.excerpt or "",
        tags=[name for name in _split_tags(args.tags) if not name.startswith("-")],
        public=args.public,
        offline=args.offline,
        create_archive=not args.no_archival,
        create_ebook=args.ebook,
    )
    bookmark = await processing.create_bookmark(deps, request)
    print_bookmarks([bookmark])
    return 0


async def cmd_print(deps: Dependencies, args: argparse.Namespace) -> int:
    """Print bookmarks by index, or every bookmark."""
    options = GetBookmarksOptions(
        ids=parse_indices(args.indices),
        keyword=(getattr(args, "keyword", None) or "").strip(),
        tags=_split_tags(args.tags),
        excluded_tags=_split_tags(args.exclude_tags),
        order=OrderMethod(args.order),
    )
    bookmarks = await _load_bookmarks(deps, options)

    if args.json:
        print_bookmarks_json(bookmarks)
    elif args.index_only:
        print(" ".join(str(bookmark.id) for bookmark in bookmarks))
    else:
        print_bookmarks(bookmarks)
    return 0


def _edit_tags(current: list[TagDTO], names: list[str]) -> list[TagDTO]:
    """Add the given tag names; names prefixed with "-" are removed."""
    removed = {name[1:] for name in names if name.startswith("-")}
    known = {tag.name for tag in current}
    return [
        *(tag.model_copy(update={"deleted": tag.name in removed}) for tag in current),
        *(TagDTO(name=name) for name in names if not name.startswith("-") and name not in known),
    ]


async def _edit_bookmarks(
    deps: Dependencies,
    bookmark_ids: list[int],
    *,
    url: str | None = None,
    title: str | None = None,
    excerpt: str | None = None,
    tags: list[str] | None = None,
) -> None:
    async def edit(db: AsyncSession) -> None:
        for bookmark_id in bookmark_ids:
            bookmark = await bookmark_service.get_bookmark(db, bookmark_id=bookmark_id, with_content=True)
            if bookmark is None:
                continue
            changes: dict = {}
            if url:
                changes["url"] = canonicalize_url(url, deps.settings.tracking_params)
            if title:
                changes["title"] = processing.clean_title(title, changes.get("url", bookmark.url))
            if excerpt:
                changes["excerpt"] = excerpt.strip()
            if tags:
                changes["tags"] = _edit_tags(bookmark.tags, tags)
            await bookmark_service.save_bookmarks(db, False, bookmark.model_copy(update=changes))

    await deps.database.write(edit)


async def cmd_update(deps: Dependencies, args: argparse.Namespace) -> int:
    """
    Re-fetch bookmarks and optionally edit their fields.

    The page is fetched again unless --offline is given; manual title,
    excerpt and tag edits are applied after the fetch so they win.
    """
    ids = parse_indices(args.indices)
    if args.url and len(ids) != 1:
        print_error("--url can only be used with exactly one bookmark index")
        return 1
    if not ids and not confirm("Update ALL bookmarks?", args.yes):
        console.print("No bookmarks updated")
        return 0

    bookmarks = await _load_bookmarks(deps, GetBookmarksOptions(ids=ids))
    if not bookmarks:
        print_error("No matching bookmarks found")
        return 1
    bookmark_ids = [bookmark.id for bookmark in bookmarks]

    if args.url:
        await _edit_bookmarks(deps, bookmark_ids, url=args.url)

    if not args.offline:
        request = UpdateCacheRequest(
            ids=bookmark_ids,
            keep_metadata=args.dont_overwrite,
            create_archive=not args.no_archival,
            create_ebook=args.ebook,
        )
        with console.status(f"Updating {len(bookmark_ids)} bookmark(s)..."):
            result = await processing.update_cache(deps, request)
        for failure in result.failures:
            print_error(f"Failed to update bookmark {failure.id}: {failure.error}")

    tags = _split_tags(args.tags)
    if args.title or args.excerpt or tags:
        await _edit_bookmarks(deps, bookmark_ids, title=args.title, excerpt=args.excerpt, tags=tags)

    print_bookmarks(await _load_bookmarks(deps, GetBookmarksOptions(ids=bookmark_ids)))
    return 0


async def cmd_delete(deps: Dependencies, args: argparse.Namespace) -> int:
    """Delete bookmarks by index; no index deletes everything after confirmation."""
    ids = parse_indices(args.indices)
    if not ids and not confirm("Remove ALL bookmarks?", args.yes):
        console.print("No bookmarks deleted")
        return 0

    async def delete(db: AsyncSession) -> list[int]:
        return await bookmark_service.delete_bookmarks(db, *ids, truncate=not ids)

    deleted = await deps.database.write(delete)
    for bookmark_id in deleted:
        await asyncio.to_thread(deps.storage.remove_bookmark_files, bookmark_id)

    if not deleted:
        console.print("[yellow]No matching bookmarks found[/yellow]")
    else:
        console.print(f"[green]Deleted {len(deleted)} bookmark(s)[/green]")
    return 0


async def cmd_check(deps: Dependencies, args: argparse.Namespace) -> int:
    """Report bookmarks whose site no longer answers. Exits 1 if any is unreachable."""
    ids = parse_indices(args.indices)
    if not ids and not confirm("Check ALL bookmarks?", args.yes):
        console.print("No bookmarks checked")
        return 0

    bookmarks = await _load_bookmarks(deps, GetBookmarksOptions(ids=ids))
    semaphore = asyncio.Semaphore(CHECK_CONCURRENCY)
    unreachable: list[int] = []
    done = 0

    async def check(bookmark: BookmarkDTO) -> None:
        nonlocal done
        async with semaphore:
            problem = await check_url(bookmark.url, deps.settings.fetch_timeout)
        done += 1
        if problem is None:
            console.print(f"[{done}/{len(bookmarks)}] Reached {bookmark.url}", highlight=False)
        else:
            unreachable.append(bookmark.id)
            print_error(f"[{done}/{len(bookmarks)}] Failed to reach {bookmark.url}: {problem}")

    async with asyncio.TaskGroup() as group:
        for bookmark in bookmarks:
            group.create_task(check(bookmark))

    console.print()
    if not unreachable:
        console.print("[green]All bookmarks are reachable.[/green]")
        return 0
    print_error("Encountered some unreachable bookmarks:")
    print_error(" ".join(str(bookmark_id) for bookmark_id in sorted(unreachable)))
    return 1


def _print_text_cache(bookmarks: list[BookmarkDTO]) -> int:
    code = 0
    for bookmark in bookmarks:
        console.print(f"[bold cyan]{bookmark.id}.[/bold cyan] [bold]{bookmark.title}[/bold]", highlight=False)
        console.print()
        if bookmark.content:
            console.print(" ".join(bookmark.content.split()), markup=False, highlight=False)
        else:
            print_error("This bookmark doesn't have any cached content")
            code = 1
        console.print()
        console.print("=" * console.width, style="dim")
        console.print()
    return code


async def _open_archive(deps: Dependencies, bookmark: BookmarkDTO) -> int:
    if not bookmark.has_archive:
        print_error(f"Bookmark {bookmark.id} has no archive")
        return 1

    source = deps.storage.path(bookmark.archive_path or archive_path(bookmark.id))
    if bookmark.archiver == ARCHIVER_PDF:
        body, suffix = await asyncio.to_thread(source.read_bytes), ".pdf"
    else:
        try:
            resource = await asyncio.to_thread(read_warc_record, source)
        except ArchiveError as e:
            print_error(f"Failed to open archive: {e}")
            return 1
        if resource is None:
            print_error(f"Bookmark {bookmark.id} has an empty archive")
            return 1
        body, suffix = resource.body, ".html"

    with tempfile.NamedTemporaryFile(mode="wb", prefix=f"shiori-{bookmark.id}-", suffix=suffix, delete=False) as f:
        f.write(body)
    console.print(f"Archive extracted to {f.name}", highlight=False)

    if not webbrowser.open(Path(f.name).as_uri()):
        print_error("Failed to open browser")
        return 1
    return 0


async def cmd_open(deps: Dependencies, args: argparse.Namespace) -> int:
    """Open bookmarks in the browser, print their cached text or open their archive."""
    ids = parse_indices(args.indices)
    if args.archive and len(ids) != 1:
        print_error("In archive mode, exactly one bookmark is allowed")
        return 1
    if not ids and not confirm("Open ALL bookmarks?", args.yes):
        return 0

    bookmarks = await _load_bookmarks(deps, GetBookmarksOptions(ids=ids, with_content=args.text_cache))
    if not bookmarks:
        print_error("No matching index found" if ids else "No bookmarks saved yet")
        return 1

    if args.text_cache:
        return _print_text_cache(bookmarks)
    if args.archive:
        return await _open_archive(deps, bookmarks[0])

    code = 0
    for bookmark in bookmarks:
        if not webbrowser.open(bookmark.url):
            print_error(f"Failed to open {bookmark.url}")
            code = 1
    return code


# =============
# Import/Export
# =============

def _report_import(result: importers.ImportResult) -> None:
    console.print(f"[green]Imported {len(result.imported)} bookmark(s)[/green]")
    if result.skipped:
        console.print(f"[yellow]Skipped {len(result.skipped)} existing bookmark(s)[/yellow]")
    for url, reason in result.failed.items():
        print_error(f"Failed to import {url}: {reason}")


async def cmd_import(deps: Dependencies, args: argparse.Namespace) -> int:
    """Import a Netscape bookmark file."""
    records = importers.parse_netscape(Path(args.file).read_text(encoding="utf-8"))
    _report_import(await importers.import_records(deps, records, offline=not args.online))
    return 0


async def cmd_pocket(deps: Dependencies, args: argparse.Namespace) -> int:
    """Import a Pocket CSV export."""
    records = importers.parse_pocket_csv(Path(args.file).read_text(encoding="utf-8"))
    _report_import(await importers.import_records(deps, records, offline=not args.online))
    return 0


async def cmd_export(deps: Dependencies, args: argparse.Namespace) -> int:
    """Export every bookmark as a Netscape bookmark file."""
    bookmarks = await _load_bookmarks(deps, GetBookmarksOptions())
    Path(args.file).write_text(importers.export_netscape(bookmarks), encoding="utf-8")
    console.print(f"[green]Exported {len(bookmarks)} bookmark(s) to {args.file}[/green]")
    return 0


# =============
# Accounts
# =============

async def cmd_account_add(deps: Dependencies, args: argparse.Namespace) -> int:
    """Create an account, prompting for the password when not given."""
    password = args.password or Prompt.ask("Password", password=True, console=console)

    async def create(db: AsyncSession) -> AccountDTO:
        return await account_service.create_account(db, args.username, password, owner=args.owner)

    account = await deps.database.write(create)
    console.print(f"[green]Created account {account.username}[/green]")
    return 0


async def cmd_account_list(deps: Dependencies, args: argparse.Namespace) -> int:
    """List accounts."""
    async with deps.database.reader() as db:
        accounts = await account_service.list_accounts(db, keyword=args.search or "")

    table = Table(title="Accounts")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Username")
    table.add_column("Owner", justify="center")
    for account in accounts:
        table.add_row(str(account.id), account.username, "yes" if account.owner else "")
    console.print(table)
    return 0


async def cmd_account_delete(deps: Dependencies, args: argparse.Namespace) -> int:
    """Delete accounts by username."""
    if not confirm(f"Delete account(s) {', '.join(args.usernames)}?", args.yes):
        console.print("No accounts deleted")
        return 0

    async def delete(db: AsyncSession) -> None:
        for username in args.usernames:
            account = await account_service.get_account_by_username(db, username)
            if account is None:
                raise AccountNotFoundError(username=username)
            await account_service.delete_account(db, account.id)

    await deps.database.write(delete)
    console.print(f"[green]Deleted {len(args.usernames)} account(s)[/green]")
    return 0


# =============
# System
# =============

async def cmd_migrate(deps: Dependencies, args: argparse.Namespace) -> int:
    """Apply pending database migrations."""
    await deps.database.init()
    version = await deps.database.migrate()
    console.print(f"[green]Database schema is at version {version}[/green]")
    return 0


async def cmd_version(deps: Dependencies, args: argparse.Namespace) -> int:
    """Print version information."""
    info = version_info(deps.settings)
    console.print(f"Shiori {info.version} (commit {info.commit}, built {info.date})", highlight=False)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP server until interrupted."""
    overrides = {
        "http_port": args.port,
        "http_address": args.address,
        "http_root_path": args.root_path,
        "http_access_log": args.access_log,
    }
    settings = Settings(**{key: value for key, value in overrides.items() if value is not None})
    configure_logging(settings)

    app = create_app(Dependencies.from_settings(settings))
    host = settings.http_address or "0.0.0.0"  # noqa: S104
    logger.info("Serving Shiori %s on %s:%d", __version__, host, settings.http_port)
    # Request logging is done by RequestIdMiddleware. Forwarded headers are not
    # applied so the SSO trusted-proxy check sees the real peer address.
    uvicorn.run(
        app,
        host=host,
        port=settings.http_port,
        access_log=False,
        log_config=None,
        proxy_headers=False,
    )
    return 0


async def _prepare_database(deps: Dependencies) -> None:
    await deps.database.init()
    if deps.settings.db_auto_migrate:
        await deps.database.migrate()
    else:
        await deps.database.check_schema_version()


async def run_command(command: Command, args: argparse.Namespace, settings: Settings) -> int:
    """Build dependencies, bring the database up and run one command."""
    deps = Dependencies.from_settings(settings)
    try:
        if args.needs_database:
            await _prepare_database(deps)
        return await command(deps, args)
    finally:
        await deps.close()


def _add_index_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "indices",
        nargs="*",
        help="Bookmark indices: N or N-M (1-based). None means all bookmarks.",
    )


def _add_listing_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-j", "--json", action="store_true", help="Output data in JSON format")
    parser.add_argument("-i", "--index-only", action="store_true", help="Only print the index of bookmarks")
    parser.add_argument("-t", "--tags", action="append", help="Only bookmarks with these tags (comma-separated)")
    parser.add_argument("-e", "--exclude-tags", action="append", help="Skip bookmarks with these tags")
    parser.add_argument(
        "--order",
        choices=[order.value for order in OrderMethod],
        default=OrderMethod.DEFAULT.value,
        help="Sort order",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    parser = argparse.ArgumentParser(
        prog="shiori",
        description="Shiori - simple bookmark manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  shiori add https://example.com -t python,web
  shiori print 1-5 --json
  shiori search "static typing"
  shiori update 3 --offline --title "New title"
  shiori delete 4 7-9
  shiori serve --port 8080

Configuration is read from SHIORI_* environment variables (or a .env file).
        """,
    )
    parser.set_defaults(needs_database=True)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Serve the web interface and REST API")
    serve.add_argument("-p", "--port", type=int, help="Port used by the server")
    serve.add_argument("-a", "--address", help="Address the server listens to")
    serve.add_argument("-r", "--root-path", help="Path prefix when served behind a reverse proxy")
    serve.add_argument(
        "--access-log",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Log every HTTP request",
    )
    serve.set_defaults(func=None)

    migrate = subparsers.add_parser("migrate", help="Apply pending database migrations")
    migrate.set_defaults(func=cmd_migrate, needs_database=False)

    add = subparsers.add_parser("add", help="Bookmark the specified URL")
    add.add_argument("url", help="URL to bookmark")
    add.add_argument("-i", "--title", help="Custom title for this bookmark")
    add.add_argument("-e", "--excerpt", help="Custom excerpt for this bookmark")
    add.add_argument("-t", "--tags", action="append", help="Comma-separated tags for this bookmark")
    add.add_argument("-o", "--offline", action="store_true", help="Save without fetching the page")
    add.add_argument("-a", "--no-archival", action="store_true", help="Save without creating an offline archive")
    add.add_argument("--ebook", action="store_true", help="Also generate an EPUB ebook")
    add.add_argument("--public", action="store_true", help="Make the bookmark readable without login")
    add.set_defaults(func=cmd_add)

    print_parser = subparsers.add_parser("print", help="Print the saved bookmarks")
    _add_index_argument(print_parser)
    _add_listing_arguments(print_parser)
    print_parser.set_defaults(func=cmd_print)

    search = subparsers.add_parser("search", help="Search bookmarks by keyword")
    search.add_argument("keyword", nargs="?", default="", help="Keyword matched against title and content")
    _add_listing_arguments(search)
    search.set_defaults(func=cmd_print, indices=[])

    update = subparsers.add_parser("update", help="Update the saved bookmarks")
    _add_index_argument(update)
    update.add_argument("-u", "--url", help="New URL for this bookmark")
    update.add_argument("-i", "--title", help="New title for this bookmark")
    update.add_argument("-e", "--excerpt", help="New excerpt for this bookmark")
    update.add_argument("-t", "--tags", action="append", help="Tags to add; prefix a tag with - to remove it")
    update.add_argument("-o", "--offline", action="store_true", help="Update without fetching the page")
    update.add_argument("-y", "--yes", action="store_true", help="Skip confirmation when updating ALL bookmarks")
    update.add_argument("--dont-overwrite", action="store_true", help="Keep the current title and excerpt")
    update.add_argument("-a", "--no-archival", action="store_true", help="Don't create an offline archive")
    update.add_argument("--ebook", action="store_true", help="Also generate an EPUB ebook")
    update.set_defaults(func=cmd_update)

    delete = subparsers.add_parser("delete", help="Delete the saved bookmarks")
    _add_index_argument(delete)
    delete.add_argument("-y", "--yes", action="store_true", help="Skip confirmation when deleting ALL bookmarks")
    delete.set_defaults(func=cmd_delete)

    check = subparsers.add_parser("check", help="Find bookmarked sites that are no longer reachable")
    _add_index_argument(check)
    check.add_argument("-y", "--yes", action="store_true", help="Skip confirmation when checking ALL bookmarks")
    check.set_defaults(func=cmd_check)

    open_parser = subparsers.add_parser("open", help="Open the saved bookmarks in the browser")
    _add_index_argument(open_parser)
    open_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation when opening ALL bookmarks")
    open_parser.add_argument("-a", "--archive", action="store_true", help="Open the bookmark's offline archive")
    open_parser.add_argument(
        "-t", "--text-cache", action="store_true", help="Print the bookmark's cached text in the terminal",
    )
    open_parser.set_defaults(func=cmd_open)

    import_parser = subparsers.add_parser("import", help="Import bookmarks from a Netscape HTML file")
    import_parser.add_argument("file", help="Netscape bookmark file")
    import_parser.add_argument("--online", action="store_true", help="Fetch every imported page")
    import_parser.set_defaults(func=cmd_import)

    pocket = subparsers.add_parser("pocket", help="Import bookmarks from a Pocket CSV export")
    pocket.add_argument("file", help="Pocket CSV file")
    pocket.add_argument("--online", action="store_true", help="Fetch every imported page")
    pocket.set_defaults(func=cmd_pocket)

    export = subparsers.add_parser("export", help="Export bookmarks as a Netscape HTML file")
    export.add_argument("file", help="Destination file")
    export.set_defaults(func=cmd_export)

    account = subparsers.add_parser("account", help="Manage accounts")
    account_subparsers = account.add_subparsers(dest="account_command", required=True)

    account_add = account_subparsers.add_parser("add", help="Create a new account")
    account_add.add_argument("username")
    account_add.add_argument("-p", "--password", help="Password (prompted when omitted)")
    account_add.add_argument("--owner", action="store_true", help="Grant owner (admin) rights")
    account_add.set_defaults(func=cmd_account_add)

    account_list = account_subparsers.add_parser("list", help="List accounts")
    account_list.add_argument("-s", "--search", help="Only usernames containing this text")
    account_list.set_defaults(func=cmd_account_list)

    account_delete = account_subparsers.add_parser("delete", help="Delete accounts")
    account_delete.add_argument("usernames", nargs="+")
    account_delete.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompt")
    account_delete.set_defaults(func=cmd_account_delete)

    version = subparsers.add_parser("version", help="Print version information")
    version.set_defaults(func=cmd_version, needs_database=False)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        if args.command == "serve":
            sys.exit(cmd_serve(args))

        settings = get_settings()
        configure_logging(settings)
        code = asyncio.run(run_command(args.func, args, settings))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        print_error(f"Error: {e}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
