"""
Value semantics for Squared's operators.

Truthiness
    null, false, 0, NaN and "" are falsy. Everything else is truthy,
    including empty arrays and objects.

to_number
    number -> itself, true/false -> 1/0, null -> 0,
    string -> its trimmed text as a decimal numeral ("" -> 0, otherwise NaN),
    arrays, objects and callables -> NaN.

Loose equality (== and !=)
    =====================  ===========================================
    operands               rule
    =====================  ===========================================
    null, null             equal
    null, anything else    not equal
    bool, bool             equal when both are the same
    bool, other            the bool becomes 1/0, then compare again
    number, number         numeric equality (NaN is never equal)
    string, string         same characters
    number, string         number == to_number(string)
    array/object/callable  identity
    other mixed kinds      not equal
    =====================  ===========================================

Relational (< > <= >=)
    Two strings compare lexicographically. Otherwise both sides go through
    to_number; a NaN on either side makes the comparison false.

Arithmetic
    `+` concatenates when either side is a string (Printer text of both sides)
    and concatenates two arrays into a new array. Any other array, object or
    callable operand is an OperandError. Otherwise `+ - * /` are IEEE-754
    double arithmetic on to_number of both sides. Division by zero yields
    +/-Infinity by the signs of the operands, and NaN for 0/0.
"""
import math
import re
from typing import Any

from squared.sq_datatypes import ScriptObject, ScriptFunction
from squared.sq_errors import OperandError
from squared.sq_printer import Printer

INF = float("inf")
NAN = float("nan")

_NUMERAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|[+-]?Infinity")

_printer = Printer()


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if is_number(value):
        return float(value)
    if value is None:
        return 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _NUMERAL_RE.fullmatch(text):
            return float(text.replace("Infinity", "inf"))
        return NAN
    return NAN


def type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, ScriptObject):
        return "object"
    if isinstance(value, ScriptFunction):
        return "function"
    if callable(value):
        return "builtin"
    return type(value).__name__


def loose_equals(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool) and isinstance(b, bool):
        return a == b
    if isinstance(a, bool):
        return loose_equals(to_number(a), b)
    if isinstance(b, bool):
        return loose_equals(a, to_number(b))
    if is_number(a) and is_number(b):
        return float(a) == float(b)
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if is_number(a) and isinstance(b, str):
        return float(a) == to_number(b)
    if isinstance(a, str) and is_number(b):
        return to_number(a) == float(b)
    return a is b


def compare(op: str, a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        x, y = a, b
    else:
        x, y = to_number(a), to_number(b)
        if math.isnan(x) or math.isnan(y):
            return False
    match op:
        case "<":
            return x < y
        case ">":
            return x > y
        case "<=":
            return x <= y
        case ">=":
            return x >= y
    raise ValueError(f"Unknown comparison operator {op!r}")


def _is_structured(value: Any) -> bool:
    return isinstance(value, list) or (value is not None and not isinstance(value, (bool, int, float, str)))


def add(a: Any, b: Any) -> Any:
    if isinstance(a, str) or isinstance(b, str):
        return _printer.pformat(a) + _printer.pformat(b)
    if isinstance(a, list) and isinstance(b, list):
        return a + b
    if _is_structured(a) or _is_structured(b):
        raise OperandError(f"Cannot add {type_name(a)} and {type_name(b)}")
    return to_number(a) + to_number(b)


def divide(a: Any, b: Any) -> float:
    x, y = to_number(a), to_number(b)
    if y == 0:
        if x == 0 or math.isnan(x):
            return NAN
        return math.copysign(INF, x) * math.copysign(1.0, y)
    return x / y


def apply_binary(op: str, a: Any, b: Any) -> Any:
    """Applies a non-short-circuiting binary operator to two evaluated operands."""
    match op:
        case "+":
            return add(a, b)
        case "-":
            return to_number(a) - to_number(b)
        case "*":
            return to_number(a) * to_number(b)
        case "/":
            return divide(a, b)
        case "==":
            return loose_equals(a, b)
        case "!=":
            return not loose_equals(a, b)
        case "<" | ">" | "<=" | ">=":
            return compare(op, a, b)
    raise OperandError(f"Unknown operator {op!r}")


COMPOUND_OPERATORS = {"+=": "+", "-=": "-", "*=": "*", "/=": "/"}
