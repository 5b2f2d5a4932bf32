"""Tests for Go-style duration parsing."""

from datetime import timedelta

import pytest

from core.utils.durations import format_duration, parse_duration


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("30s", timedelta(seconds=30)),
        ("5m", timedelta(minutes=5)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(minutes=90)),
        ("500ms", timedelta(milliseconds=500)),
        ("2m0.5s", timedelta(minutes=2, milliseconds=500)),
        ("0", timedelta(0)),
    ],
)
def test_parse_duration_accepts_go_syntax(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "30", "5 minutes", "-5s", "1d", "s", "10sx"])
def test_parse_duration_rejects_malformed_strings(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_format_duration_renders_compact_units():
    assert format_duration(timedelta(hours=1, minutes=2, seconds=3)) == "1h2m3s"
    assert format_duration(timedelta(minutes=5)) == "5m0s"
    assert format_duration(timedelta(seconds=45)) == "45s"
    assert format_duration(timedelta(seconds=1.5)) == "1.5s"
    assert format_duration(timedelta(milliseconds=250)) == "250ms"


def test_parse_duration_rejects_values_beyond_timedelta_range():
    with pytest.raises(ValueError, match="invalid duration"):
        parse_duration("99999999999h")


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(seconds=119.97), "2m0s"),
        (timedelta(seconds=3599.97), "1h0m0s"),
        (timedelta(seconds=0.9996), "1s"),
        (timedelta(seconds=59.96), "1m0s"),
    ],
)
def test_format_duration_carries_rounding_into_larger_units(delta, expected):
    assert format_duration(delta) == expected
