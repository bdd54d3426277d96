"""Literal grammar and the runtime value model.

Parameters reach this module as raw text. A literal is a JSON scalar
(integer, float, double-quoted string, ``true``/``false``, ``null``) or the
bare token ``NULL``. Booleans become the integers 1 and 0.

The conversion helpers here are total: input outside their domain yields
``NULL`` rather than raising.
"""

from __future__ import annotations
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from lexer import CabsiParseError


TYPE_INT = "INT"
TYPE_FLT = "FLT"
TYPE_STR = "STR"
TYPE_NULL = "NULL"

NULL_TOKEN = "NULL"

Number = Union[int, float]


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    @property
    def is_null(self) -> bool:
        return self.type == TYPE_NULL

    @property
    def is_numeric(self) -> bool:
        return self.type in (TYPE_INT, TYPE_FLT)

    def __str__(self) -> str:
        return to_display(self)


NULL = Value(TYPE_NULL, None)
TRUE = Value(TYPE_INT, 1)
FALSE = Value(TYPE_INT, 0)


def make_int(value: int) -> Value:
    return Value(TYPE_INT, int(value))


def make_flt(value: float) -> Value:
    return Value(TYPE_FLT, float(value))


def make_str(value: str) -> Value:
    return Value(TYPE_STR, str(value))


def make_bool(flag: bool) -> Value:
    return TRUE if flag else FALSE


def make_number(value: Number) -> Value:
    if isinstance(value, bool):
        return make_bool(value)
    if isinstance(value, int):
        return make_int(value)
    return make_flt(value)


def from_python(obj: Any) -> Value:
    """Wrap a decoded JSON scalar."""
    if obj is None:
        return NULL
    if isinstance(obj, bool):
        return make_bool(obj)
    if isinstance(obj, int):
        return make_int(obj)
    if isinstance(obj, float):
        return make_flt(obj)
    if isinstance(obj, str):
        return make_str(obj)
    raise CabsiParseError(f"Unsupported literal of type {type(obj).__name__}")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a literal")


def parse_literal(raw: str) -> Value:
    text = raw.strip()
    if text == NULL_TOKEN:
        return NULL
    try:
        decoded = json.loads(text, parse_constant=_reject_constant)
    except ValueError as exc:
        # Source text escapes a quote by doubling it inside a quoted run.
        if text.startswith('"') and text.endswith('"') and '""' in text[1:-1]:
            inner = text[1:-1].replace('""', '\\"')
            return parse_literal(f'"{inner}"')
        raise CabsiParseError(f"Malformed literal {raw!r}: {exc}", text=raw) from exc
    try:
        return from_python(decoded)
    except CabsiParseError as exc:
        raise CabsiParseError(f"Malformed literal {raw!r}: {exc.message}", text=raw) from exc


# ---- numeric text prefixes ----

_INT_PREFIX_RE = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX_RE = re.compile(
    r"\s*([+-]?(?:Infinity|\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?))"
)


def parse_int_prefix(text: str) -> Optional[int]:
    match = _INT_PREFIX_RE.match(text)
    if match is None:
        return None
    return int(match.group(1), 10)


def parse_float_prefix(text: str) -> Optional[float]:
    match = _FLOAT_PREFIX_RE.match(text)
    if match is None:
        return None
    token = match.group(1)
    if token.lstrip("+-") == "Infinity":
        return -math.inf if token.startswith("-") else math.inf
    return float(token)


# ---- conversions ----

def to_int(value: Value) -> Value:
    if value.type == TYPE_INT:
        return value
    if value.type == TYPE_FLT:
        if not math.isfinite(value.value):
            return NULL
        return make_int(math.trunc(value.value))
    if value.type == TYPE_STR:
        parsed = parse_int_prefix(value.value)
        return NULL if parsed is None else make_int(parsed)
    return NULL


def to_float(value: Value) -> Value:
    if value.is_numeric:
        return value
    if value.type == TYPE_STR:
        parsed = parse_float_prefix(value.value)
        return NULL if parsed is None else make_flt(parsed)
    return NULL


def to_text(value: Value) -> Value:
    return make_str(to_display(value))


def code_point(value: Value) -> Value:
    if value.type != TYPE_STR or not value.value:
        return NULL
    return make_int(ord(value.value[0]))


def from_code_point(value: Value) -> Value:
    if value.type == TYPE_INT:
        point = value.value
    elif value.type == TYPE_FLT and math.isfinite(value.value) and value.value.is_integer():
        point = int(value.value)
    else:
        return NULL
    if not 0 <= point <= 0x10FFFF:
        return NULL
    return make_str(chr(point))


def _format_float(x: float) -> str:
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "-Infinity" if x < 0 else "Infinity"
    if x.is_integer() and abs(x) < 1e21:
        return str(int(x))
    text = repr(x)
    mantissa, sep, exponent = text.partition("e")
    if not sep:
        return text
    power = int(exponent)
    if -7 < power < 0:
        # Down to 1e-6 is written out in full.
        sign = "-" if mantissa.startswith("-") else ""
        digits = mantissa.lstrip("-").replace(".", "")
        return f"{sign}0.{'0' * (-power - 1)}{digits}"
    return f"{mantissa}e{'+' if power > 0 else '-'}{abs(power)}"


def to_display(value: Value) -> str:
    if value.type == TYPE_INT:
        return str(value.value)
    if value.type == TYPE_FLT:
        return _format_float(value.value)
    if value.type == TYPE_STR:
        return value.value
    return "null"


def to_literal(value: Value) -> str:
    """Render a value the way it would be written as a literal."""
    if value.type == TYPE_STR:
        return json.dumps(value.value)
    return to_display(value)


def render_stack(values: Iterable[Value]) -> str:
    return "[" + ", ".join(to_literal(v) for v in values) + "]"
