import pytest

from batchline.config_manager.helpers import parse_bytes


@pytest.mark.parametrize(
    "value, expected",
    [
        ("0b", 0),
        ("1b", 1),
        ("1", 1),
        ("1k", 1024),
        ("1kb", 1024),
        ("475kb", 475 * 1024),
        ("1mb", 1024 * 1024),
        ("300m", 300 * 1024 * 1024),
        ("1gb", 1024 * 1024 * 1024),
        ("475000", 475_000),
        (500_000, 500_000),
        (0, 0),
    ],
)
def test_parse_bytes_valid(value, expected: int) -> None:
    assert parse_bytes(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("  1kb  ", 1024),
        ("1KB", 1024),
        ("2 mb", 2 * 1024 * 1024),
    ],
)
def test_parse_bytes_tolerates_case_and_whitespace(value: str, expected: int) -> None:
    assert parse_bytes(value) == expected


@pytest.mark.parametrize(
    "value",
    [
        "",
        "   ",
        "nope",
        "kb",
        "1KiB",
        "1gbps",
        "-1kb",
        "1.5gb",
        -1,
        True,
    ],
)
def test_parse_bytes_invalid_raises(value) -> None:
    with pytest.raises(ValueError):
        parse_bytes(value)
