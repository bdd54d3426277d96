from __future__ import annotations

import math

import pytest

from lexer import CabsiParseError
from parser import (
    NULL,
    TYPE_FLT,
    TYPE_INT,
    TYPE_STR,
    Value,
    code_point,
    from_code_point,
    parse_literal,
    render_stack,
    to_display,
    to_float,
    to_int,
    to_text,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("42", Value(TYPE_INT, 42)),
        ("-7", Value(TYPE_INT, -7)),
        ("2.5", Value(TYPE_FLT, 2.5)),
        ('"hi, there"', Value(TYPE_STR, "hi, there")),
        ("true", Value(TYPE_INT, 1)),
        ("false", Value(TYPE_INT, 0)),
        ("null", NULL),
        ("NULL", NULL),
    ],
)
def test_parse_literal(raw, expected):
    assert parse_literal(raw) == expected


def test_doubled_quote_is_an_escaped_quote():
    assert parse_literal('"say ""hi"""') == Value(TYPE_STR, 'say "hi"')


@pytest.mark.parametrize("raw", ["abc", "Null", "[1, 2]", '{"a": 1}', "NaN", "Infinity", "", '"open'])
def test_malformed_literal_raises(raw):
    with pytest.raises(CabsiParseError):
        parse_literal(raw)


def test_makei_truncates_toward_zero():
    assert to_int(Value(TYPE_FLT, 3.9)) == Value(TYPE_INT, 3)
    assert to_int(Value(TYPE_FLT, -3.9)) == Value(TYPE_INT, -3)
    assert to_int(Value(TYPE_INT, 5)) == Value(TYPE_INT, 5)


def test_makei_parses_decimal_prefix():
    assert to_int(Value(TYPE_STR, "  42abc")) == Value(TYPE_INT, 42)
    assert to_int(Value(TYPE_STR, "-08")) == Value(TYPE_INT, -8)
    assert to_int(Value(TYPE_STR, "abc")) == NULL
    assert to_int(NULL) == NULL
    assert to_int(Value(TYPE_FLT, math.inf)) == NULL


def test_makef_parses_text_and_keeps_numbers():
    assert to_float(Value(TYPE_STR, "2.5e1x")) == Value(TYPE_FLT, 25.0)
    assert to_float(Value(TYPE_STR, ".5")) == Value(TYPE_FLT, 0.5)
    assert to_float(Value(TYPE_STR, "-Infinity")) == Value(TYPE_FLT, -math.inf)
    assert to_float(Value(TYPE_INT, 3)) == Value(TYPE_INT, 3)
    assert to_float(Value(TYPE_STR, "x")) == NULL


def test_makes_stringifies():
    assert to_text(Value(TYPE_INT, 12)) == Value(TYPE_STR, "12")
    assert to_text(Value(TYPE_FLT, 2.0)) == Value(TYPE_STR, "2")
    assert to_text(NULL) == Value(TYPE_STR, "null")


def test_ord_and_chr():
    assert code_point(Value(TYPE_STR, "A")) == Value(TYPE_INT, 65)
    assert code_point(Value(TYPE_STR, "")) == NULL
    assert code_point(Value(TYPE_INT, 65)) == NULL
    assert from_code_point(Value(TYPE_INT, 97)) == Value(TYPE_STR, "a")
    assert from_code_point(Value(TYPE_FLT, 98.0)) == Value(TYPE_STR, "b")
    assert from_code_point(Value(TYPE_INT, -1)) == NULL
    assert from_code_point(Value(TYPE_STR, "a")) == NULL


def test_display_of_floats():
    assert to_display(Value(TYPE_FLT, 0.5)) == "0.5"
    assert to_display(Value(TYPE_FLT, math.inf)) == "Infinity"
    assert to_display(Value(TYPE_FLT, -math.inf)) == "-Infinity"
    assert to_display(Value(TYPE_FLT, math.nan)) == "NaN"


@pytest.mark.parametrize(
    "number, text",
    [
        (1e-7, "1e-7"),
        (1.5e-5, "0.000015"),
        (-2.5e-6, "-0.0000025"),
        (0.0001, "0.0001"),
        (1e21, "1e+21"),
        (1.5e300, "1.5e+300"),
        (-1.25e-300, "-1.25e-300"),
    ],
)
def test_display_exponent_forms(number, text):
    assert to_display(Value(TYPE_FLT, number)) == text


def test_render_stack_quotes_text():
    assert render_stack([Value(TYPE_INT, 1), Value(TYPE_STR, "a"), NULL]) == '[1, "a", null]'
