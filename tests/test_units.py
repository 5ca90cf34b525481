import pytest

from jfroffload.units import parse_duration_seconds, parse_size_bytes


def test_parse_size_bytes_accepts_plain_integer() -> None:
    assert parse_size_bytes("1000000000", 1) == 1000000000
    assert parse_size_bytes(4096, 1) == 4096


def test_parse_size_bytes_accepts_decimal_and_binary_units() -> None:
    assert parse_size_bytes("200MB", 1) == 200_000_000
    assert parse_size_bytes("100MiB", 1) == 104_857_600
    assert parse_size_bytes("1 GiB", 1) == 1_073_741_824


def test_parse_size_bytes_falls_back_to_default() -> None:
    assert parse_size_bytes("", 123) == 123
    assert parse_size_bytes(None, 123) == 123
    assert parse_size_bytes("0", 123) == 123
    assert parse_size_bytes(-5, 123) == 123
    assert parse_size_bytes("10XB", 123) == 123


def test_parse_duration_seconds_units() -> None:
    assert parse_duration_seconds("500ms") == 0.5
    assert parse_duration_seconds("5s") == 5.0
    assert parse_duration_seconds("2m") == 120.0
    assert parse_duration_seconds("1H") == 3600.0
    assert parse_duration_seconds("30") == 30.0
    assert parse_duration_seconds(1.5) == 1.5


@pytest.mark.parametrize("raw", ["", None, "soon", "5 days", "-1s", -1, True])
def test_parse_duration_seconds_rejects_invalid(raw) -> None:
    with pytest.raises(ValueError):
        parse_duration_seconds(raw)
