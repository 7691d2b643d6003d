"""
Unit tests for core/sanitize.py

The validators never raise: bad input becomes a default, a clamped number
or a truncated string.
"""
import math

import pytest

from core.sanitize import (
    stringify_value,
    validate_bool,
    validate_color,
    validate_custom_value,
    validate_number,
    validate_optional_number,
    validate_string,
)


def test_validate_string_truncates_and_logs(caplog):
    """
    Validate string bounding.

    Verifies:
    - None becomes the default
    - Non-strings are stringified
    - Long strings are truncated with a warning
    """
    assert validate_string(None, default="x") == "x"
    assert validate_string(12) == "12"

    with caplog.at_level("WARNING", logger="core.sanitize"):
        assert validate_string("abcdef", max_length=3) == "abc"

    assert "Truncating" in caplog.text


@pytest.mark.parametrize(
    "value, expected",
    [
        (50, 50),
        (-3, 1),
        (500, 100),
        ("42", 42.0),
        ("lots", 10),
        (None, 10),
        (True, 10),
        (math.nan, 10),
        (math.inf, 10),
        ([1], 10),
    ],
)
def test_validate_number(value, expected):
    assert validate_number(value, 1, 100, 10) == expected


def test_validate_optional_number():
    assert validate_optional_number(None) is None
    assert validate_optional_number("nope") is None
    assert validate_optional_number(math.nan) is None
    assert validate_optional_number(3) == 3.0
    assert validate_optional_number(1e12) == 1_000_000.0


@pytest.mark.parametrize(
    "value, expected",
    [
        ("#A1b2C3", "#A1b2C3"),
        ("#abc", "#3498db"),
        ("red", "#3498db"),
        ("#1234567", "#3498db"),
        (None, "#3498db"),
    ],
)
def test_validate_color(value, expected):
    assert validate_color(value) == expected


def test_validate_bool_accepts_only_booleans():
    assert validate_bool(False, True) is False
    assert validate_bool("false", True) is True
    assert validate_bool(0, True) is True


def test_validate_custom_value():
    """
    Validate custom property bounding.

    Verifies:
    - Scalars pass through
    - Non-finite floats become None
    - Containers are flattened to strings
    """
    assert validate_custom_value(True) is True
    assert validate_custom_value(7) == 7
    assert validate_custom_value(math.inf) is None
    assert validate_custom_value({"a": 1}) == "{'a': 1}"
    assert validate_custom_value("x" * 20, max_length=5) == "xxxxx"


@pytest.mark.parametrize(
    "value, expected",
    [(None, "null"), (True, "true"), (False, "false"), (3.0, "3"), (2.5, "2.5"), ("a", "a")],
)
def test_stringify_value(value, expected):
    assert stringify_value(value) == expected
