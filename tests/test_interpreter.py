import math
import pytest
from textwrap import dedent

from squared import ScriptRunner


async def run_sq(src: str, runner: ScriptRunner | None = None):
    runner = runner or ScriptRunner()
    return await runner.handle_script(dedent(src))


def assert_ok(res, expected=None):
    assert res.status == 'success', res.format_error()
    if expected is not None:
        assert res.value == expected


def assert_error(res, kind: str, contains: str | None = None):
    assert res.status == 'error', f"expected error, got success: {res.value!r}"
    assert res.error_kind == kind, res.format_error()
    if contains is not None:
        assert contains in (res.error_message or ""), f"error did not contain {contains!r}: {res.error_message!r}"


# --- Basic Evaluation ---

@pytest.mark.asyncio
async def test_var_declaration_then_print():
    res = await run_sq("""
        var[x] = 5
        print(x)
    """)
    assert_ok(res)
    assert res.stdout == ["5"]


@pytest.mark.asyncio
async def test_program_value_is_last_statement_value():
    assert_ok(await run_sq("1 + 2 * 3"), 7)
    assert_ok(await run_sq("x = 4"), 4)


@pytest.mark.asyncio
async def test_print_joins_arguments_with_spaces():
    res = await run_sq('print("a", 1, null, [1, "b"], true)')
    assert res.stdout == ["a 1 null [1, b] true"]


@pytest.mark.asyncio
async def test_string_concatenation_and_arrays():
    assert_ok(await run_sq('"n=" + 2.5'), "n=2.5")
    assert_ok(await run_sq("[1, 2] + [3]"), [1, 2, 3])


@pytest.mark.asyncio
async def test_division_by_zero():
    assert_ok(await run_sq("1 / 0"), math.inf)
    assert_ok(await run_sq("!-1! / 0"), -math.inf)
    res = await run_sq("0 / 0")
    assert_ok(res)
    assert math.isnan(res.value)


@pytest.mark.asyncio
async def test_loose_comparisons():
    assert_ok(await run_sq('1 == "1"'), True)
    assert_ok(await run_sq("null == false"), False)
    assert_ok(await run_sq("true == 1"), True)
    assert_ok(await run_sq('"abc" < "abd"'), True)
    assert_ok(await run_sq('"x" < 1'), False)


@pytest.mark.asyncio
async def test_logical_operators_return_deciding_operand():
    assert_ok(await run_sq('0 or "b"'), "b")
    assert_ok(await run_sq('"a" and 0'), 0)


@pytest.mark.asyncio
async def test_short_circuit_never_calls_right_side():
    res = await run_sq("""
        function f()
            print("called")
            return true
        false and f()
        true or f()
    """)
    assert_ok(res, True)
    assert res.stdout == []


@pytest.mark.asyncio
async def test_array_elements_evaluate_left_to_right():
    res = await run_sq("""
        function note(x)
            print(x)
            return x
        [note(1), note(2), note(3)]
    """)
    assert_ok(res, [1, 2, 3])
    assert res.stdout == ["1", "2", "3"]


@pytest.mark.asyncio
async def test_length_property_of_strings_and_arrays():
    assert_ok(await run_sq('"abc".length'), 3)
    assert_ok(await run_sq("[1, 2].length"), 2)


# --- Functions and Closures ---

@pytest.mark.asyncio
async def test_closure_sees_later_mutation_of_outer_variable():
    res = await run_sq("""
        var[n] = 1
        function show()
            return n
        n = 2
        show()
    """)
    assert_ok(res, 2)


@pytest.mark.asyncio
async def test_counter_closure_keeps_its_frame():
    res = await run_sq("""
        function make_counter()
            var[count] = 0
            function next()
                count += 1
                return count
            return next
        var[c] = make_counter()
        c()
        c()
    """)
    assert_ok(res, 2)


@pytest.mark.asyncio
async def test_missing_argument_is_null():
    res = await run_sq("""
        function pair(a, b)
            print(b)
            return b == null
        pair(1)
    """)
    assert_ok(res, True)
    assert res.stdout == ["null"]


@pytest.mark.asyncio
async def test_extra_arguments_are_ignored():
    res = await run_sq("""
        function first(a)
            return a
        first(1, 2, 3)
    """)
    assert_ok(res, 1)


@pytest.mark.asyncio
async def test_function_without_return_yields_null():
    res = await run_sq("""
        function noop()
            var[x] = 1
        noop()
    """)
    assert_ok(res)
    assert res.value is None


@pytest.mark.asyncio
async def test_recursion():
    res = await run_sq("""
        function fact(n)
            if n <= 1
                return 1
            return n * fact(n - 1)
        fact(5)
    """)
    assert_ok(res, 120)


@pytest.mark.asyncio
async def test_var_shadows_inside_function():
    res = await run_sq("""
        var[x] = 1
        function f()
            var[x] = 2
            return x
        [f(), x]
    """)
    assert_ok(res, [2, 1])


@pytest.mark.asyncio
async def test_assignment_inside_function_mutates_global():
    res = await run_sq("""
        var[total] = 0
        function add(n)
            total += n
        add(2)
        add(3)
        total
    """)
    assert_ok(res, 5)


@pytest.mark.asyncio
async def test_compound_assignment_on_unbound_name_starts_from_zero():
    assert_ok(await run_sq("hits += 1"), 1)


# --- Builtins ---

@pytest.mark.asyncio
async def test_collection_builtins():
    res = await run_sq("""
        var[a] = [1]
        push(a, 2)
        [len(a), at(a, 1), at(a, 5), at(a, !-1!), len("abc")]
    """)
    assert_ok(res, [2, 2, None, 2, 3])


@pytest.mark.asyncio
async def test_printing_self_containing_values():
    res = await run_sq("""
        var[a] = [1]
        push(a, a)
        print(a)
        #Point# = [
            x = 1
        ]
        Point.me = Point
        print(Point)
        "a is " + a
    """)
    assert_ok(res, "a is [1, [...]]")
    assert res.stdout == ["[1, [...]]", '{"x":1,"me":"{...}"}']


@pytest.mark.asyncio
async def test_keys_and_serialize():
    res = await run_sq("""
        #Point# = [
            x = 1
            label = "p"
        ]
        [keys(Point), serialize(Point)]
    """)
    assert_ok(res, [["x", "label"], '{"x":1,"label":"p"}'])


@pytest.mark.asyncio
async def test_builtin_misuse_is_an_operand_error():
    assert_error(await run_sq("push(1, 2)"), "OperandError", "push")


@pytest.mark.asyncio
async def test_assigning_a_builtin_name_shadows_it():
    runner = ScriptRunner()
    assert_ok(await run_sq("print = 5", runner), 5)
    assert callable(runner.builtins_scope.bindings["print"])
    assert runner.root_scope.bindings["print"] == 5


@pytest.mark.asyncio
async def test_input_uses_host_provider():
    prompts = []

    async def provide(prompt):
        prompts.append(prompt)
        return "Ada"

    runner = ScriptRunner(input_provider=provide)
    res = await run_sq('var[name] = input("Name? ")\n"Hi " + name', runner)
    assert_ok(res, "Hi Ada")
    assert prompts == ["Name? "]


@pytest.mark.asyncio
async def test_input_without_provider_is_empty_string():
    assert_ok(await run_sq('input("x")'), "")


@pytest.mark.asyncio
async def test_host_callables_may_be_async():
    runner = ScriptRunner()

    async def double(x):
        return x * 2

    runner.define("double", double)
    assert_ok(await run_sq("double(21)", runner), 42)


# --- Runtime Errors ---

@pytest.mark.asyncio
async def test_undefined_variable():
    res = await run_sq("print(y)")
    assert_error(res, "UndefinedVariable", "y")
    assert res.error_location == {"line": 1, "col": 7}


@pytest.mark.asyncio
async def test_calling_a_non_callable_names_the_target():
    res = await run_sq("""
        var[x] = 3
        x()
    """)
    assert_error(res, "NotCallable", "'x'")


@pytest.mark.asyncio
async def test_member_access_on_null_names_the_property():
    res = await run_sq("""
        var[o] = null
        o.name
    """)
    assert_error(res, "NullPropertyAccess", "name")
    assert res.error_location["line"] == 3


@pytest.mark.asyncio
async def test_adding_an_array_to_a_number():
    res = await run_sq("[1] + 1")
    assert_error(res, "OperandError")
    assert res.error_location["line"] == 1


@pytest.mark.asyncio
async def test_runtime_error_aborts_the_rest_of_the_program():
    res = await run_sq("""
        print("before")
        missing()
        print("after")
    """)
    assert_error(res, "UndefinedVariable", "missing")
    assert res.stdout == ["before"]
