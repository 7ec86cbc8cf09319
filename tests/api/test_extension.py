"""Tests for the browser extension endpoints."""
from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shiori.core.dependencies import Dependencies
from shiori.services import bookmark_service
from shiori.services.url_scraper import FetchResult
from tests.conftest import create_bookmark

CAPTURED_HTML = """<html><head><title>Captured page</title>
<meta name="description" content="Captured by the extension"></head>
<body><article>
<p>This page was captured directly from the browser tab, including content that only appears for
logged in readers. The extension posts the rendered document so the server never needs to fetch it.</p>
<p>Because the document is already rendered, scripts have run and lazy images are resolved, which makes
the readable view much closer to what the reader actually saw in the browser at the time.</p>
</article></body></html>
"""


@pytest.fixture(autouse=True)
def mock_url_fetch() -> Generator[AsyncMock]:
    """Fetches fail unless a test says otherwise."""
    with patch(
        "shiori.services.processing.fetch_url",
        new_callable=AsyncMock,
        return_value=FetchResult(
            content=None,
            final_url="",
            status_code=None,
            content_type=None,
            error="Mocked - no network call",
        ),
    ) as mock, patch(
        "shiori.services.processing.download_image",
        new_callable=AsyncMock,
        return_value=None,
    ):
        yield mock


async def test__extension_save__new_url_uses_captured_html(
    client: AsyncClient,
    mock_url_fetch: AsyncMock,
) -> None:
    response = await client.post(
        "/api/bookmarks/ext",
        json={"url": "https://example.com/captured?utm_medium=social", "html": CAPTURED_HTML, "tags": ["read"]},
    )

    assert response.status_code == 200
    bookmark = response.json()["message"]
    assert bookmark["url"] == "https://example.com/captured"
    assert bookmark["title"] == "Captured page"
    assert bookmark["excerpt"] == "Captured by the extension"
    assert bookmark["has_content"] is True
    assert [t["name"] for t in bookmark["tags"]] == ["read"]
    mock_url_fetch.assert_not_awaited()


async def test__extension_save__existing_url_is_merged(
    client: AsyncClient,
    deps: Dependencies,
    db_session: AsyncSession,
) -> None:
    existing = await create_bookmark(
        deps, "https://example.com/captured", title="My title", tags=["old"], content="stale",
    )

    response = await client.post(
        "/api/bookmarks/ext",
        json={"url": "https://example.com/captured#section", "html": CAPTURED_HTML, "tags": ["new"]},
    )

    assert response.status_code == 200
    merged = response.json()["message"]
    assert merged["id"] == existing.id
    assert merged["title"] == "My title"
    assert [t["name"] for t in merged["tags"]] == ["new", "old"]

    stored = await bookmark_service.get_bookmark(db_session, bookmark_id=existing.id)
    assert "captured directly from the browser tab" in stored.content


async def test__extension_save__without_html_fetches(
    client: AsyncClient,
    mock_url_fetch: AsyncMock,
) -> None:
    response = await client.post("/api/bookmarks/ext", json={"url": "https://example.com/fetch-me"})

    assert response.status_code == 200
    assert response.json()["message"]["title"] == "https://example.com/fetch-me"
    mock_url_fetch.assert_awaited_once()


async def test__extension_delete__by_url(
    client: AsyncClient,
    deps: Dependencies,
    db_session: AsyncSession,
) -> None:
    bookmark = await create_bookmark(deps, "https://example.com/gone")

    response = await client.request(
        "DELETE", "/api/bookmarks/ext", json={"url": "https://example.com/gone?utm_source=x"},
    )

    assert response.status_code == 200
    assert await bookmark_service.get_bookmark(db_session, bookmark_id=bookmark.id) is None


async def test__extension_delete__unknown_url_404(client: AsyncClient) -> None:
    response = await client.request("DELETE", "/api/bookmarks/ext", json={"url": "https://example.com/none"})
    assert response.status_code == 404


async def test__extension__anonymous_401(anon_client: AsyncClient) -> None:
    response = await anon_client.post("/api/bookmarks/ext", json={"url": "https://example.com"})
    assert response.status_code == 401
