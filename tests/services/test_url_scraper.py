"""
Tests for URL scraper service.

Tests cover:
- fetch_url: HTTP fetching with mocked transports (success, redirects, timeout, errors,
    unsupported content types)
- extract_html_metadata: Pure function tests for title/description/image extraction
- extract_page: Routing between the HTML and PDF extractors
- download_image / check_url
"""
from io import BytesIO

import httpx
import pytest
import respx
from pypdf import PdfWriter

from shiori.services.url_scraper import (
    USER_AGENT,
    FetchResult,
    check_url,
    download_image,
    extract_html_metadata,
    extract_page,
    fetch_url,
    make_excerpt,
)

ARTICLE_HTML = """<html><head><title>Page Title</title>
<meta name="description" content="A short summary">
<meta property="og:image" content="/images/cover.png">
<link rel="icon" href="/favicon.ico">
</head><body><article>
<p>Long form writing survives because some ideas need room. A paragraph that develops a single
thought over several sentences gives the reader time to follow the argument and weigh it.</p>
<p>Readers who save articles for later usually come back to exactly this kind of text, which is why
a bookmark manager keeps the readable version around even when the original page disappears.</p>
</article></body></html>
"""


@pytest.fixture
def mock_web() -> respx.MockRouter:
    """Context manager for mocking remote sites."""
    with respx.mock(base_url="https://example.com", assert_all_called=False) as respx_mock:
        yield respx_mock


class TestFetchUrl:
    """Tests for fetch_url function."""

    async def test__fetch_url__success(self, mock_web: respx.MockRouter) -> None:
        """Successful fetch returns the body and response metadata."""
        route = mock_web.get("/page").mock(
            return_value=httpx.Response(
                200, content=b"<html>ok</html>", headers={"Content-Type": "text/html; charset=utf-8"},
            ),
        )

        result = await fetch_url("https://example.com/page")

        assert result.error is None
        assert result.content == b"<html>ok</html>"
        assert result.final_url == "https://example.com/page"
        assert result.status_code == 200
        assert result.is_html
        assert result.charset == "utf-8"
        assert route.calls[0].request.headers["user-agent"] == USER_AGENT

    async def test__fetch_url__follows_redirects(self, mock_web: respx.MockRouter) -> None:
        """The final URL after redirects is reported."""
        mock_web.get("/old").mock(
            return_value=httpx.Response(301, headers={"Location": "https://example.com/new"}),
        )
        mock_web.get("/new").mock(
            return_value=httpx.Response(200, content=b"<html/>", headers={"Content-Type": "text/html"}),
        )

        result = await fetch_url("https://example.com/old")

        assert result.error is None
        assert result.final_url == "https://example.com/new"

    async def test__fetch_url__http_error_status(self, mock_web: respx.MockRouter) -> None:
        """Non-2xx responses return an error without a body."""
        mock_web.get("/missing").mock(return_value=httpx.Response(404, headers={"Content-Type": "text/html"}))

        result = await fetch_url("https://example.com/missing")

        assert result.content is None
        assert result.status_code == 404
        assert result.error == "HTTP 404"

    async def test__fetch_url__unsupported_content_type(self, mock_web: respx.MockRouter) -> None:
        """Only HTML and PDF are accepted."""
        mock_web.get("/data.json").mock(
            return_value=httpx.Response(200, json={"a": 1}),
        )

        result = await fetch_url("https://example.com/data.json")

        assert result.content is None
        assert result.error == "Unsupported content type: application/json"

    async def test__fetch_url__timeout(self, mock_web: respx.MockRouter) -> None:
        """Timeout returns error info without raising."""
        mock_web.get("/slow").mock(side_effect=httpx.ConnectTimeout("Connection timed out"))

        result = await fetch_url("https://example.com/slow")

        assert result.content is None
        assert result.final_url == "https://example.com/slow"
        assert result.status_code is None
        assert result.error == "Request timed out"

    async def test__fetch_url__connection_error(self, mock_web: respx.MockRouter) -> None:
        """Connection error returns error info without raising."""
        mock_web.get("/down").mock(side_effect=httpx.ConnectError("Connection refused"))

        result = await fetch_url("https://example.com/down")

        assert result.error is not None
        assert result.error.startswith("Request failed:")


class TestExtractHtmlMetadata:
    """Tests for extract_html_metadata function."""

    def test__extract_html_metadata__title_description_image(self) -> None:
        metadata = extract_html_metadata(ARTICLE_HTML, "https://example.com/posts/1")
        assert metadata.title == "Page Title"
        assert metadata.description == "A short summary"
        assert metadata.image_url == "https://example.com/images/cover.png"
        assert metadata.favicon_url == "https://example.com/favicon.ico"

    def test__extract_html_metadata__og_title_fallback(self) -> None:
        html = '<html><head><meta property="og:title" content="OG Title"></head></html>'
        assert extract_html_metadata(html).title == "OG Title"

    def test__extract_html_metadata__og_description_fallback(self) -> None:
        html = '<html><head><meta property="og:description" content="OG description"></head></html>'
        assert extract_html_metadata(html).description == "OG description"

    def test__extract_html_metadata__empty_values_ignored(self) -> None:
        html = '<html><head><title>  </title><meta name="description" content="  "></head></html>'
        metadata = extract_html_metadata(html)
        assert metadata.title is None
        assert metadata.description is None

    def test__extract_html_metadata__author(self) -> None:
        html = '<html><head><meta name="author" content="Grace Hopper"></head></html>'
        assert extract_html_metadata(html).author == "Grace Hopper"


class TestExtractPage:
    """Tests for extract_page function."""

    def test__extract_page__html(self) -> None:
        result = FetchResult(
            content=ARTICLE_HTML.encode(),
            final_url="https://example.com/posts/1",
            status_code=200,
            content_type="text/html",
            error=None,
        )

        page = extract_page(result)

        assert page.title == "Page Title"
        assert page.excerpt == "A short summary"
        assert "Long form writing" in page.text_content
        assert "<p>" in page.content_html
        assert page.image_url == "https://example.com/images/cover.png"

    def test__extract_page__excerpt_falls_back_to_text(self) -> None:
        html = ARTICLE_HTML.replace('<meta name="description" content="A short summary">', "")
        result = FetchResult(
            content=html.encode(),
            final_url="https://example.com/posts/1",
            status_code=200,
            content_type="text/html",
            error=None,
        )
        assert extract_page(result).excerpt.startswith("Long form writing")

    def test__extract_page__pdf_metadata(self) -> None:
        writer = PdfWriter()
        writer.add_blank_page(width=200, height=200)
        writer.add_metadata({"/Title": "Annual Report", "/Author": "Finance Team", "/Subject": "Numbers"})
        buffer = BytesIO()
        writer.write(buffer)
        result = FetchResult(
            content=buffer.getvalue(),
            final_url="https://example.com/report.pdf",
            status_code=200,
            content_type="application/pdf",
            error=None,
        )

        page = extract_page(result)

        assert page.title == "Annual Report"
        assert page.byline == "Finance Team"
        assert page.excerpt == "Numbers"
        assert page.content_html == ""

    def test__extract_page__empty_body(self) -> None:
        result = FetchResult(
            content=b"", final_url="https://example.com", status_code=200, content_type="text/html", error=None,
        )
        assert extract_page(result).title == ""


class TestMakeExcerpt:
    """Tests for make_excerpt function."""

    def test__make_excerpt__first_paragraph(self) -> None:
        assert make_excerpt("\n\n  First   line \nSecond line") == "First line"

    def test__make_excerpt__cut_at_word_boundary(self) -> None:
        text = "word " * 100
        excerpt = make_excerpt(text, length=22)
        assert excerpt == "word word word word..."

    def test__make_excerpt__empty(self) -> None:
        assert make_excerpt("") == ""


class TestDownloadImage:
    """Tests for download_image function."""

    async def test__download_image__png(self, mock_web: respx.MockRouter) -> None:
        mock_web.get("/cover.png").mock(
            return_value=httpx.Response(200, content=b"png-bytes", headers={"Content-Type": "image/png"}),
        )
        assert await download_image("https://example.com/cover.png") == b"png-bytes"

    async def test__download_image__rejects_other_types(self, mock_web: respx.MockRouter) -> None:
        mock_web.get("/cover.svg").mock(
            return_value=httpx.Response(200, content=b"<svg/>", headers={"Content-Type": "image/svg+xml"}),
        )
        assert await download_image("https://example.com/cover.svg") is None

    async def test__download_image__http_error(self, mock_web: respx.MockRouter) -> None:
        mock_web.get("/gone.png").mock(return_value=httpx.Response(404))
        assert await download_image("https://example.com/gone.png") is None


class TestCheckUrl:
    """Tests for check_url function."""

    async def test__check_url__any_response_is_reachable(self, mock_web: respx.MockRouter) -> None:
        mock_web.get("/missing").mock(return_value=httpx.Response(404))
        assert await check_url("https://example.com/missing") is None

    async def test__check_url__connection_error(self, mock_web: respx.MockRouter) -> None:
        mock_web.get("/down").mock(side_effect=httpx.ConnectError("Connection refused"))
        assert (await check_url("https://example.com/down")).startswith("Request failed:")

    async def test__check_url__timeout(self, mock_web: respx.MockRouter) -> None:
        mock_web.get("/slow").mock(side_effect=httpx.ReadTimeout("too slow"))
        assert await check_url("https://example.com/slow") == "Request timed out"
