"""
Tests for case-variant name aliasing.
Path: tests/test_aliasing.py
"""

from kumascript.aliasing import case_variants, set_case_variant_aliases


def test_capitalized_name_reachable_lowercased():
    """A name like Foo is installed as-is and lower-cased"""
    namespace = {}
    set_case_variant_aliases(namespace, "Foo", 42)

    assert namespace["Foo"] == 42
    assert namespace["foo"] == 42
    assert set(namespace) == {"Foo", "foo"}


def test_camel_case_name_gets_three_variants():
    namespace = {}
    value = object()
    set_case_variant_aliases(namespace, "htmlEscape", value)

    assert namespace == {"htmlEscape": value, "htmlescape": value, "HtmlEscape": value}


def test_reinstalling_is_idempotent():
    namespace = {}
    set_case_variant_aliases(namespace, "location", "x")
    before = dict(namespace)
    set_case_variant_aliases(namespace, "location", "x")

    assert namespace == before


def test_reinstalling_replaces_every_variant():
    namespace = {}
    set_case_variant_aliases(namespace, "page", "old")
    set_case_variant_aliases(namespace, "page", "new")

    assert namespace["page"] == "new"
    assert namespace["Page"] == "new"


def test_case_variants_order_and_dedup():
    assert case_variants("fooBar") == ["fooBar", "foobar", "FooBar"]
    assert case_variants("x") == ["x", "X"]
    assert case_variants("") == [""]
