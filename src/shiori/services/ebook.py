"""EPUB generation from a bookmark's readable HTML."""
import html
import logging
from pathlib import Path

from ebooklib import epub

from shiori.schemas.bookmark import BookmarkDTO

logger = logging.getLogger(__name__)

CHAPTER_FILE = "content.xhtml"


class EbookError(Exception):
    """Raised when a bookmark has nothing to put in an ebook."""


def _chapter_body(bookmark: BookmarkDTO) -> str:
    if bookmark.html:
        return bookmark.html
    paragraphs = [p.strip() for p in bookmark.content.split("\n\n") if p.strip()]
    return "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)


def build_epub(bookmark: BookmarkDTO) -> epub.EpubBook:
    """
    Build a single-chapter EPUB for `bookmark`.

    Raises:
        EbookError: If the bookmark has neither HTML nor text content.
    """
    body = _chapter_body(bookmark)
    if not body:
        raise EbookError(f"Bookmark {bookmark.id} has no readable content")

    title = bookmark.title or bookmark.url
    book = epub.EpubBook()
    book.set_identifier(f"shiori-bookmark-{bookmark.id}")
    book.set_title(title)
    book.set_language("en")
    if bookmark.author:
        book.add_author(bookmark.author)
    for tag in bookmark.tags:
        book.add_metadata("DC", "subject", tag.name)

    chapter = epub.EpubHtml(title=title, file_name=CHAPTER_FILE, lang="en")
    chapter.content = (
        f"<h1>{html.escape(title)}</h1>"
        f'<p><a href="{html.escape(bookmark.url, quote=True)}">{html.escape(bookmark.url)}</a></p>'
        f"{body}"
    )
    book.add_item(chapter)

    book.toc = (epub.Link(CHAPTER_FILE, title, "content"),)
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = ["nav", chapter]
    return book


def write_epub(destination: Path, bookmark: BookmarkDTO) -> None:
    """Build and write the EPUB for `bookmark` to `destination`."""
    book = build_epub(bookmark)
    epub.write_epub(str(destination), book)
    logger.debug("Wrote ebook for bookmark %d", bookmark.id)
