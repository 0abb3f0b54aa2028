import math
import pytest

from squared.sq_operators import truthy, to_number, loose_equals, compare, add, divide, apply_binary
from squared.sq_datatypes import ScriptObject
from squared.sq_errors import OperandError


@pytest.mark.parametrize("value, expected", [
    (None, False), (False, False), (0.0, False), (float("nan"), False), ("", False),
    (True, True), (1.0, True), (-0.5, True), ("0", True), ([], True), (ScriptObject(), True),
])
def test_truthiness(value, expected):
    assert truthy(value) is expected


@pytest.mark.parametrize("value, expected", [
    (3.5, 3.5), (True, 1.0), (False, 0.0), (None, 0.0),
    ("  42 ", 42.0), ("", 0.0), ("1e3", 1000.0), ("-2.5", -2.5), ("Infinity", math.inf),
])
def test_to_number(value, expected):
    assert to_number(value) == expected


@pytest.mark.parametrize("value", ["abc", "1_000", "inf", "nan", [1.0], ScriptObject()])
def test_to_number_nan(value):
    assert math.isnan(to_number(value))


@pytest.mark.parametrize("a, b, expected", [
    (None, None, True),
    (None, False, False),
    (None, 0.0, False),
    (True, True, True),
    (True, 1.0, True),
    (False, "0", True),
    (1.0, "1", True),
    ("1.0", 1.0, True),
    ("a", "a", True),
    ("a", "b", False),
    (float("nan"), float("nan"), False),
    ([1.0], [1.0], False),
    ("1", [1.0], False),
])
def test_loose_equality(a, b, expected):
    assert loose_equals(a, b) is expected
    assert loose_equals(b, a) is expected


def test_loose_equality_by_identity_for_containers():
    arr = [1.0]
    obj = ScriptObject()
    assert loose_equals(arr, arr)
    assert loose_equals(obj, obj)


def test_relational_comparisons():
    assert compare("<", "abc", "abd")
    assert compare(">", "b", "a")
    assert compare("<=", 2.0, "2")
    assert compare(">=", True, 1.0)
    assert not compare("<", "x", 1.0)
    assert not compare(">=", "x", 1.0)


def test_add_concatenates_strings_with_printer_text():
    assert add("n=", 2.0) == "n=2"
    assert add(1.5, "!") == "1.5!"
    assert add("v: ", None) == "v: null"
    assert add("", [1.0, "a"]) == "[1, a]"


def test_add_arrays_makes_a_new_array():
    a, b = [1.0], [2.0]
    result = add(a, b)
    assert result == [1.0, 2.0]
    assert result is not a


@pytest.mark.parametrize("a, b", [([1.0], 1.0), (ScriptObject(), 1.0), (print, 1.0)])
def test_add_rejects_structured_operands(a, b):
    with pytest.raises(OperandError):
        add(a, b)


def test_add_numeric_coercion():
    assert add(True, None) == 1.0
    assert add(2.0, 3.0) == 5.0


def test_division_by_zero_follows_ieee():
    assert divide(1.0, 0.0) == math.inf
    assert divide(-1.0, 0.0) == -math.inf
    assert divide(1.0, -0.0) == -math.inf
    assert math.isnan(divide(0.0, 0.0))
    assert divide(7.0, 2.0) == 3.5


def test_apply_binary_dispatch():
    assert apply_binary("-", "5", 2.0) == 3.0
    assert apply_binary("*", True, 4.0) == 4.0
    assert apply_binary("!=", 1.0, "2") is True
    with pytest.raises(OperandError):
        apply_binary("%", 1.0, 2.0)
