"""
Case-variant name aliasing for script namespaces.
Path: kumascript/aliasing.py

Legacy DekiScript templates are lenient about identifier casing, so
``page.location``, ``Page.location`` and ``page.Location`` all have to work.
Rather than doing case-insensitive lookups at call sites, every name is
installed eagerly under the few variants those templates actually use.
"""

from typing import Any, List, MutableMapping


def case_variants(name: str) -> List[str]:
    """
    Return the distinct names a value is installed under.

    Args:
        name: Name as given by the caller

    Returns:
        The name as-is, fully lower-cased, and with its first character
        upper-cased, without duplicates and in that order
    """
    variants = [name, name.lower(), name[:1].upper() + name[1:]]
    return list(dict.fromkeys(variants))


def set_case_variant_aliases(target: MutableMapping[str, Any], name: str, value: Any) -> None:
    """
    Install value on target under every case variant of name.

    Args:
        target: Namespace mapping to install into
        name: Name to install under
        value: Value to install
    """
    for variant in case_variants(name):
        target[variant] = value
