"""
Namespaced helper APIs exposed to template scripts.
Path: kumascript/api.py

These started life as a subset of the MindTouch DekiScript API used by
legacy MDN templates. Each sub-API is installed into an execution context
under a namespace name; scripts reach it as ``ctx.kuma.html_escape(...)``
or ``ctx["kuma"]["html_escape"](...)``.
"""

import urllib.parse
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, Iterator

from kumascript.aliasing import set_case_variant_aliases
from kumascript.utils.logging import get_logger

if TYPE_CHECKING:
    from kumascript.context import ExecutionContext

logger = get_logger()

FAKE_PAGE_URI = "http://example.com/en/HTML/FakePage"
FAKE_PAGE_LANGUAGE = "en"


class BaseAPI(Mapping):
    """
    Base container for a namespaced sub-API.

    Every public method and class field is installed as a member under its
    case-variant aliases when the API is constructed.
    """

    # Mapping's own interface, not API members
    _RESERVED = frozenset(("get", "items", "keys", "values"))

    def __init__(self, parent: "ExecutionContext"):
        self.parent = parent
        self._members: Dict[str, Any] = {}
        for name in dir(type(self)):
            if name.startswith("_") or name in self._RESERVED:
                continue
            set_case_variant_aliases(self._members, name, getattr(self, name))

    def set_vars(self, vars: Mapping) -> None:
        """Copy the entries of vars onto this API."""
        for name, value in vars.items():
            set_case_variant_aliases(self._members, name, value)

    def __getitem__(self, name: str) -> Any:
        return self._members[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __getattr__(self, name: str) -> Any:
        members = self.__dict__.get("_members")
        if members is not None and name in members:
            return members[name]
        raise AttributeError(f"{type(self).__name__} has no member '{name}'")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} members={sorted(set(self._members))}>"


class KumaAPI(BaseAPI):
    """
    Grab bag of Kuma-specific helpers.

    Lives here rather than in an auto-required template because it hands out
    stdlib modules that template code cannot import itself.
    """

    url = urllib.parse

    def debug(self, message: Any, **fields: Any) -> None:
        logger.debug("kuma.debug", message=str(message), **fields)

    def html_escape(self, s: Any) -> str:
        """Escape the given value for HTML inclusion."""
        return (str(s).replace("&", "&amp;")
                .replace(">", "&gt;")
                .replace("<", "&lt;")
                .replace('"', "&quot;"))


class PageAPI(BaseAPI):
    """Details of the page the macros are being evaluated for."""

    def __init__(self, parent: "ExecutionContext"):
        super().__init__(parent)
        env = getattr(parent, "env", None) or {}
        self.set_vars({
            "uri": env.get("url", FAKE_PAGE_URI),
            "language": env.get("locale", FAKE_PAGE_LANGUAGE)
        })
