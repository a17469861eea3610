"""
Tests for ExecutionContext.set_arguments
Path: tests/test_arguments.py
"""


def test_positional_slots(make_context):
    ctx = make_context()
    ctx.set_arguments(["a", "b", "c"])

    assert ctx["$0"] == "a"
    assert ctx["$1"] == "b"
    assert ctx["$2"] == "c"
    assert all(ctx[f"${i}"] == "" for i in range(3, 99))
    assert "$99" not in ctx


def test_aggregate_aliases(make_context):
    ctx = make_context()
    ctx.set_arguments(["a", "b", "c"])

    assert ctx.arguments == ["a", "b", "c"]
    assert ctx["$$"] == ["a", "b", "c"]
    assert ctx["$$"] is ctx["arguments"]


def test_resetting_clears_previous_arguments(make_context):
    ctx = make_context()
    ctx.set_arguments(["x", "y"])
    ctx.set_arguments(["z"])

    assert ctx["$0"] == "z"
    assert ctx["$1"] == ""
    assert ctx.arguments == ["z"]


def test_empty_and_missing_arguments(make_context):
    ctx = make_context()

    assert ctx.set_arguments(None) is ctx
    assert ctx.arguments == []
    assert ctx["$0"] == ""


def test_fresh_context_has_empty_slots(make_context):
    ctx = make_context()

    assert ctx["$98"] == ""
    assert ctx["$$"] == []


def test_set_vars_installs_case_variants(make_context):
    ctx = make_context()
    ctx.set_vars({"pageTitle": "Intro"})

    assert ctx.pageTitle == "Intro"
    assert ctx["pagetitle"] == "Intro"
    assert ctx["PageTitle"] == "Intro"
