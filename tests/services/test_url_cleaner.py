"""Tests for URL canonicalization."""
import pytest

from shiori.services.exceptions import InvalidURLError
from shiori.services.url_cleaner import canonicalize_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://example.com/page#section", "https://example.com/page"),
        ("https://example.com/?b=2&a=1", "https://example.com/?a=1&b=2"),
        ("https://example.com/?utm_source=x&utm_MEDIUM=y&id=7", "https://example.com/?id=7"),
        ("https://example.com/?fbclid=abc&gclid=def", "https://example.com/"),
        ("https://example.com/?flag&x=1", "https://example.com/?flag&x=1"),
        ("HTTPS://Example.com/Path", "https://Example.com/Path"),
        ("  https://example.com/trim  ", "https://example.com/trim"),
        ("https://example.com/?q=a%20b", "https://example.com/?q=a%20b"),
    ],
)
def test__canonicalize_url(url: str, expected: str) -> None:
    assert canonicalize_url(url) == expected


def test__canonicalize_url__is_idempotent() -> None:
    once = canonicalize_url("https://example.com/?z=1&utm_campaign=c&a=2#top")
    assert canonicalize_url(once) == once


def test__canonicalize_url__custom_tracking_params() -> None:
    url = "https://example.com/?ref=newsletter&fbclid=1"
    assert canonicalize_url(url, frozenset({"ref"})) == "https://example.com/?fbclid=1"


@pytest.mark.parametrize("url", ["example.com/page", "https://", "", "/relative/path"])
def test__canonicalize_url__invalid(url: str) -> None:
    with pytest.raises(InvalidURLError) as exc_info:
        canonicalize_url(url)
    assert "url" in exc_info.value.errors
