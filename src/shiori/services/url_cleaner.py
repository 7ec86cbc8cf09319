"""Canonical form of bookmark URLs."""
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from shiori.services.exceptions import InvalidURLError

DEFAULT_TRACKING_PARAMS = frozenset({"fbclid", "gclid", "mc_cid", "mc_eid"})


def _is_tracking_param(key: str, tracking_params: frozenset[str]) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in tracking_params


def _encode_query(pairs: list[tuple[str, str]]) -> str:
    parts = []
    for key, value in sorted(pairs, key=lambda pair: pair[0]):
        encoded_key = quote(key, safe="")
        parts.append(f"{encoded_key}={quote(value, safe='')}" if value else encoded_key)
    return "&".join(parts)


def canonicalize_url(
    url: str,
    tracking_params: frozenset[str] = DEFAULT_TRACKING_PARAMS,
) -> str:
    """
    Normalize a URL before it is stored or looked up.

    The fragment is dropped, `utm_*` parameters and the configured tracking
    keys are removed and the remaining query parameters are sorted by key.
    Keys without a value are kept bare (`?flag`).

    Raises:
        InvalidURLError: If the URL has no scheme or no host.
    """
    url = url.strip()
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise InvalidURLError(url, str(e)) from e

    if not parts.scheme:
        raise InvalidURLError(url, "URL scheme is missing")
    if not parts.netloc:
        raise InvalidURLError(url, "URL host is missing")

    pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key, tracking_params)
    ]

    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path, _encode_query(pairs), ""))
