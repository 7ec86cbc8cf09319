"""URL scraping service for fetching pages and extracting readable content."""
import logging
from dataclasses import dataclass, field
from io import BytesIO
from urllib.parse import urljoin

import httpx
import trafilatura
from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from shiori import __version__

logger = logging.getLogger(__name__)

USER_AGENT = f'Mozilla/5.0 (compatible; Shiori/{__version__}; +https://github.com/go-shiori/shiori)'
DEFAULT_TIMEOUT = 60.0
# Bodies above this size are cut off rather than buffered whole
MAX_CONTENT_BYTES = 25 * 1024 * 1024
MAX_IMAGE_BYTES = 10 * 1024 * 1024
EXCERPT_LENGTH = 300

HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')
PDF_CONTENT_TYPE = 'application/pdf'
THUMBNAIL_CONTENT_TYPES = ('image/jpeg', 'image/png', 'image/webp')


@dataclass
class FetchResult:
    """Result of fetching a URL (raw bytes before extraction)."""

    content: bytes | None
    final_url: str
    status_code: int | None
    content_type: str | None
    error: str | None
    headers: list[tuple[str, str]] = field(default_factory=list)
    reason_phrase: str = ''
    http_version: str = 'HTTP/1.1'
    charset: str | None = None

    @property
    def is_pdf(self) -> bool:
        """Check if the content type indicates a PDF."""
        return bool(self.content_type and PDF_CONTENT_TYPE in self.content_type.lower())

    @property
    def is_html(self) -> bool:
        """Check if the content type indicates HTML."""
        return bool(
            self.content_type
            and any(t in self.content_type.lower() for t in HTML_CONTENT_TYPES),
        )

    @property
    def text(self) -> str:
        """Body decoded with the declared charset, UTF-8 otherwise."""
        if not self.content:
            return ''
        try:
            return self.content.decode(self.charset or 'utf-8', errors='replace')
        except LookupError:
            return self.content.decode('utf-8', errors='replace')


@dataclass
class ExtractedMetadata:
    """Metadata read from HTML meta tags or PDF document info."""

    title: str | None
    description: str | None
    author: str | None = None
    image_url: str | None = None
    favicon_url: str | None = None


@dataclass
class ExtractedPage:
    """Readable view of a page, as consumed by the ingestion pipeline."""

    title: str = ''
    byline: str = ''
    text_content: str = ''
    content_html: str = ''
    excerpt: str = ''
    image_url: str = ''
    favicon_url: str = ''


def _error_result(url: str, error: str, status_code: int | None = None) -> FetchResult:
    return FetchResult(
        content=None,
        final_url=url,
        status_code=status_code,
        content_type=None,
        error=error,
    )


async def _read_limited(response: httpx.Response, limit: int) -> tuple[bytes, bool]:
    """Read a streamed body up to `limit` bytes. Returns (body, truncated)."""
    chunks = []
    size = 0
    async for chunk in response.aiter_bytes():
        size += len(chunk)
        if size > limit:
            chunks.append(chunk[: limit - (size - len(chunk))])
            return b''.join(chunks), True
        chunks.append(chunk)
    return b''.join(chunks), False


async def fetch_url(url: str, timeout: float = DEFAULT_TIMEOUT) -> FetchResult:  # noqa: ASYNC109
    """
    Fetch content from a URL (HTML or PDF).

    Best-effort fetch that returns error info on failure rather than raising.
    Follows redirects and captures the final URL. The body is streamed and
    capped at `MAX_CONTENT_BYTES`.

    Args:
        url:
            The URL to fetch.
        timeout:
            Request timeout in seconds.

    Returns:
        FetchResult containing the body bytes or error info.
    """
    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={'User-Agent': USER_AGENT},
            http2=True,
        ) as client, client.stream('GET', url) as response:
            final_url = str(response.url)
            content_type = response.headers.get('content-type', '')

            # Check for successful response (2xx status codes)
            if not response.is_success:
                return FetchResult(
                    content=None,
                    final_url=final_url,
                    status_code=response.status_code,
                    content_type=content_type,
                    error=f"HTTP {response.status_code}",
                )

            lowered = content_type.lower()
            if PDF_CONTENT_TYPE not in lowered and not any(t in lowered for t in HTML_CONTENT_TYPES):
                return FetchResult(
                    content=None,
                    final_url=final_url,
                    status_code=response.status_code,
                    content_type=content_type,
                    error=f"Unsupported content type: {content_type}",
                )

            body, truncated = await _read_limited(response, MAX_CONTENT_BYTES)
            if truncated:
                logger.warning('Response body of %s truncated at %d bytes', url, MAX_CONTENT_BYTES)

            return FetchResult(
                content=body,
                final_url=final_url,
                status_code=response.status_code,
                content_type=content_type,
                error=None,
                headers=list(response.headers.multi_items()),
                reason_phrase=response.reason_phrase,
                http_version=response.http_version,
                charset=response.charset_encoding,
            )
    except httpx.TimeoutException:
        return _error_result(url, "Request timed out")
    except httpx.RequestError as e:
        return _error_result(url, f"Request failed: {e}")


def _meta_content(soup: BeautifulSoup, *selectors: dict[str, str]) -> str | None:
    for attrs in selectors:
        tag = soup.find('meta', attrs=attrs)
        if tag and tag.get('content') and tag['content'].strip():
            return tag['content'].strip()
    return None


def extract_html_metadata(html: str, base_url: str = '') -> ExtractedMetadata:
    """
    Extract title, description, author, preview image and favicon from HTML.

    Pure function with no I/O. Uses BeautifulSoup for parsing.

    Title extraction priority:
    1. <title> tag
    2. <meta property="og:title">
    3. <meta name="twitter:title">

    Description extraction priority:
    1. <meta name="description">
    2. <meta property="og:description">
    3. <meta name="twitter:description">

    Relative image and favicon URLs are resolved against `base_url`.

    Args:
        html:
            Raw HTML string to parse.
        base_url:
            URL the page was fetched from.

    Returns:
        ExtractedMetadata (fields may be None if not found).
    """
    soup = BeautifulSoup(html, 'lxml')

    title = None
    title_tag = soup.find('title')
    if title_tag and title_tag.string:
        title = title_tag.string.strip() or None
    if not title:
        title = _meta_content(soup, {'property': 'og:title'}, {'name': 'twitter:title'})

    description = _meta_content(
        soup,
        {'name': 'description'},
        {'property': 'og:description'},
        {'name': 'twitter:description'},
    )
    author = _meta_content(soup, {'name': 'author'}, {'property': 'article:author'})

    image_url = _meta_content(
        soup,
        {'property': 'og:image'},
        {'name': 'twitter:image'},
        {'name': 'twitter:image:src'},
    )
    if image_url:
        image_url = urljoin(base_url, image_url)

    favicon_url = None
    for link in soup.find_all('link', href=True):
        rel = link.get('rel') or []
        rel = [rel] if isinstance(rel, str) else rel
        if 'icon' in (r.lower() for r in rel):
            favicon_url = urljoin(base_url, link['href'])
            break

    return ExtractedMetadata(
        title=title,
        description=description,
        author=author,
        image_url=image_url,
        favicon_url=favicon_url,
    )


def extract_html_content(html: str, url: str | None = None) -> str | None:
    """
    Extract main readable content from HTML as plain text using trafilatura.

    Pure function with no I/O. Strips navigation, scripts, styles, and
    other non-content elements.

    Returns:
        Extracted plain text content, or None if extraction fails.
    """
    return trafilatura.extract(html, url=url)


def extract_html_readable(html: str, url: str | None = None) -> str | None:
    """Same extraction as `extract_html_content`, rendered as simplified HTML."""
    return trafilatura.extract(
        html,
        url=url,
        output_format='html',
        include_images=True,
        include_links=True,
    )


def extract_pdf_metadata(pdf_bytes: bytes) -> ExtractedMetadata:
    """
    Extract title, description and author from PDF document metadata.

    Note: PDF metadata is often missing or auto-generated junk.
    Expect None values frequently.
    """
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        meta = reader.metadata
    except (PyPdfError, ValueError, OSError) as e:
        logger.debug('Unreadable PDF metadata: %s', e)
        return ExtractedMetadata(title=None, description=None)

    return ExtractedMetadata(
        title=meta.title if meta and meta.title else None,
        description=meta.subject if meta and meta.subject else None,
        author=meta.author if meta and meta.author else None,
    )


def extract_pdf_content(pdf_bytes: bytes) -> str | None:
    """
    Extract text content from all PDF pages.

    Returns concatenated text from all pages, or None if extraction fails
    or PDF contains no extractable text (e.g., scanned images).
    """
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        text_parts = [text for page in reader.pages if (text := page.extract_text())]
    except (PyPdfError, ValueError, OSError) as e:
        logger.debug('Unreadable PDF content: %s', e)
        return None
    return '\n'.join(text_parts) if text_parts else None


def make_excerpt(text: str, length: int = EXCERPT_LENGTH) -> str:
    """First paragraph of `text`, cut at a word boundary."""
    for paragraph in text.splitlines():
        paragraph = ' '.join(paragraph.split())
        if paragraph:
            if len(paragraph) <= length:
                return paragraph
            return paragraph[:length].rsplit(' ', 1)[0] + '...'
    return ''


def extract_page(result: FetchResult) -> ExtractedPage:
    """
    Turn a successful fetch into an `ExtractedPage`.

    Routes to the HTML or PDF extractor based on content type.
    """
    if not result.content:
        return ExtractedPage()

    if result.is_pdf:
        metadata = extract_pdf_metadata(result.content)
        text = extract_pdf_content(result.content) or ''
        html = ''
    else:
        raw_html = result.text
        metadata = extract_html_metadata(raw_html, result.final_url)
        text = extract_html_content(raw_html, result.final_url) or ''
        html = extract_html_readable(raw_html, result.final_url) or ''

    return ExtractedPage(
        title=metadata.title or '',
        byline=metadata.author or '',
        text_content=text,
        content_html=html,
        excerpt=metadata.description or make_excerpt(text),
        image_url=metadata.image_url or '',
        favicon_url=metadata.favicon_url or '',
    )


async def download_image(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes | None:  # noqa: ASYNC109
    """
    Download a thumbnail image.

    Only JPEG, PNG and WebP responses are accepted.

    Returns:
        The image bytes, or None if the download failed or the content type
        isn't an accepted image type.
    """
    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={'User-Agent': USER_AGENT},
            http2=True,
        ) as client, client.stream('GET', url) as response:
            if not response.is_success:
                logger.info('Thumbnail %s returned HTTP %d', url, response.status_code)
                return None
            content_type = response.headers.get('content-type', '').split(';')[0].strip().lower()
            if content_type not in THUMBNAIL_CONTENT_TYPES:
                logger.info('Thumbnail %s has unsupported type %r', url, content_type)
                return None
            body, truncated = await _read_limited(response, MAX_IMAGE_BYTES)
    except httpx.HTTPError as e:
        logger.info('Thumbnail download failed for %s: %s', url, e)
        return None

    if truncated:
        logger.info('Thumbnail %s exceeds %d bytes', url, MAX_IMAGE_BYTES)
        return None
    return body or None


async def check_url(url: str, timeout: float = DEFAULT_TIMEOUT) -> str | None:  # noqa: ASYNC109
    """
    Check that a URL still answers.

    Any response counts as reachable, as long as the server answers at all.

    Returns:
        None if the site answered, otherwise the reason it could not be reached.
    """
    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={'User-Agent': USER_AGENT},
            http2=True,
        ) as client, client.stream('GET', url):
            return None
    except httpx.TimeoutException:
        return 'Request timed out'
    except httpx.HTTPError as e:
        return f'Request failed: {e}'
