"""Tests for CLI helpers."""
import pytest

from shiori.cli.utils import InvalidIndexError, confirm, parse_indices


@pytest.mark.parametrize(
    ("args", "expected"),
    [
        ([], []),
        (["3"], [3]),
        (["5", "1", "3"], [1, 3, 5]),
        (["2-4"], [2, 3, 4]),
        (["4-4"], [4]),
        (["1-3", "2", "7"], [1, 2, 3, 7]),
        (["1 5-6"], [1, 5, 6]),
    ],
)
def test__parse_indices__valid(args: list[str], expected: list[int]) -> None:
    assert parse_indices(args) == expected


@pytest.mark.parametrize("token", ["0", "-1", "3-1", "a", "1-", "1-2-3", "1.5", "0-2"])
def test__parse_indices__invalid(token: str) -> None:
    with pytest.raises(InvalidIndexError) as exc_info:
        parse_indices(["1", token])
    assert exc_info.value.token == token
    assert str(exc_info.value) == f"Invalid index: {token}"


def test__confirm__assume_yes_skips_prompt() -> None:
    assert confirm("Really?", assume_yes=True) is True
