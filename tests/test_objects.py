import pytest
from textwrap import dedent

from squared import ScriptRunner, ScriptObject


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


@pytest.mark.asyncio
async def test_child_copies_parent_properties_once():
    res = await run_sq("""
        #Base# = [
            x = 1
        ]
        Child #Base# = [
            y = 2
        ]
        Base.x = 9
        print(Child.x, Child.y)
    """)
    assert_ok(res)
    assert res.stdout == ["1 2"]


@pytest.mark.asyncio
async def test_child_overrides_do_not_touch_parent():
    res = await run_sq("""
        #Base# = [
            x = 1
        ]
        Child #Base# = [
            x = 5
        ]
        [Base.x, Child.x]
    """)
    assert_ok(res, [1, 5])


@pytest.mark.asyncio
async def test_object_value_is_a_script_object():
    runner = ScriptRunner()
    res = await run_sq("""
        #Point# = [
            x = 1
            y = 2
        ]
    """, runner)
    assert_ok(res)
    point = runner.root_scope["Point"]
    assert isinstance(point, ScriptObject)
    assert point.name == "Point"
    assert dict(point) == {"x": 1.0, "y": 2.0}
    assert res.value is point


@pytest.mark.asyncio
async def test_empty_object_body():
    res = await run_sq("""
        #Empty# = [ ]
        keys(Empty)
    """)
    assert_ok(res, [])


@pytest.mark.asyncio
async def test_undefined_parent():
    res = await run_sq("""
        Child #Nope# = [
            y = 2
        ]
    """)
    assert_error(res, "UndefinedVariable", "Nope")


@pytest.mark.asyncio
async def test_parent_must_be_an_object():
    res = await run_sq("""
        var[Num] = 3
        Child #Num# = [
            y = 2
        ]
    """)
    assert_error(res, "NotAnObject", "Num")


@pytest.mark.asyncio
async def test_body_cannot_see_user_bindings():
    res = await run_sq("""
        var[secret] = 42
        #Probe# = [
            value = secret
        ]
    """)
    assert_error(res, "UndefinedVariable", "secret")


@pytest.mark.asyncio
async def test_body_sees_builtins_and_its_own_properties():
    res = await run_sq("""
        #Box# = [
            items = [1, 2, 3]
            size = len(items)
        ]
        Box.size
    """)
    assert_ok(res, 3)


@pytest.mark.asyncio
async def test_body_assignments_stay_on_the_object():
    runner = ScriptRunner()
    res = await run_sq("""
        #Counter# = [
            count = 0
            count += 1
        ]
        Counter.count
    """, runner)
    assert_ok(res, 1)
    assert "count" not in runner.root_scope.bindings


@pytest.mark.asyncio
async def test_methods_close_over_the_property_frame():
    res = await run_sq("""
        #Counter# = [
            count = 0
            function bump()
                count += 1
                return count
        ]
        Counter.bump()
        Counter.bump()
        Counter.count
    """)
    assert_ok(res, 2)


@pytest.mark.asyncio
async def test_missing_property_reads_as_null():
    res = await run_sq("""
        #Thing# = [
            a = 1
        ]
        Thing.nothing == null
    """)
    assert_ok(res, True)


@pytest.mark.asyncio
async def test_print_object_as_json_without_functions():
    res = await run_sq("""
        #Shape# = [
            w = 2
            h = 3
            function area()
                return w * h
        ]
        print(Shape)
        Shape.area()
    """)
    assert_ok(res, 6)
    assert res.stdout == ['{"w":2,"h":3}']


@pytest.mark.asyncio
async def test_member_assignment_and_compound_from_zero():
    res = await run_sq("""
        #Stats# = [ ]
        Stats.name = "s"
        Stats.hits += 2
        Stats.hits *= 5
        [Stats.name, Stats.hits]
    """)
    assert_ok(res, ["s", 10])


@pytest.mark.asyncio
async def test_member_assignment_on_non_object():
    res = await run_sq("""
        var[n] = 4
        n.x = 1
    """)
    assert_error(res, "NotAnObject", "x")


@pytest.mark.asyncio
async def test_member_assignment_on_null():
    res = await run_sq("""
        var[n] = null
        n.x = 1
    """)
    assert_error(res, "NullPropertyAccess", "x")


@pytest.mark.asyncio
async def test_objects_compare_by_identity():
    res = await run_sq("""
        #A# = [
            v = 1
        ]
        B #A# = [ ]
        var[alias] = A
        [A == alias, A == B]
    """)
    assert_ok(res, [True, False])
