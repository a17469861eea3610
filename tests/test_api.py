"""
Tests for sub-APIs and their installation
Path: tests/test_api.py
"""

import urllib.parse

import pytest
import requests

from kumascript.api import FAKE_PAGE_URI, BaseAPI, KumaAPI, PageAPI


class GreetingAPI(BaseAPI):
    salutation = "Hello"

    def greet(self, who):
        return f"{self.salutation}, {who}"


def test_html_escape(make_context):
    ctx = make_context()

    assert ctx.kuma.html_escape('<a href="x">&</a>') == "&lt;a href=&quot;x&quot;&gt;&amp;&lt;/a&gt;"
    assert ctx.kuma.html_escape(5) == "5"


def test_kuma_members_have_case_variants(make_context):
    kuma = make_context().kuma

    assert kuma["Html_escape"]("<") == "&lt;"
    assert kuma.Debug is not None
    assert kuma.url is urllib.parse
    assert kuma["Url"] is urllib.parse


def test_kuma_debug_does_not_raise(make_context):
    assert make_context().kuma.debug("message", extra=1) is None


def test_default_apis_installed_with_aliases(make_context):
    ctx = make_context()

    assert isinstance(ctx.kuma, KumaAPI)
    assert ctx["Kuma"] is ctx.kuma
    assert isinstance(ctx.Page, PageAPI)
    assert ctx.BaseAPI is BaseAPI
    assert ctx.request is requests


def test_page_defaults_and_env_override(make_context):
    page = make_context().page
    assert page.uri == FAKE_PAGE_URI
    assert page.Language == "en"

    page = make_context(env={"url": "https://example.org/fr/docs/CSS", "locale": "fr"}).page
    assert page.Uri == "https://example.org/fr/docs/CSS"
    assert page.language == "fr"


def test_env_is_read_only(make_context):
    ctx = make_context(env={"locale": "de"})

    assert ctx.env["locale"] == "de"
    with pytest.raises(TypeError):
        ctx.env["locale"] = "fr"


def test_install_api(make_context):
    ctx = make_context(apis={})
    api = ctx.install_api(GreetingAPI, "Greeting")

    assert ctx.greeting is api
    assert ctx["Greeting"] is api
    assert api.parent is ctx
    assert api.Greet("world") == "Hello, world"
    assert api["salutation"] == "Hello"
    assert "kuma" not in ctx


def test_build_api_is_not_installed(make_context):
    ctx = make_context()
    api = ctx.build_api({
        "base": 10,
        "add": lambda self, n: self.base + n
    })

    assert isinstance(api, BaseAPI)
    assert api.add(5) == 15
    assert api.Add(1) == 11
    assert api.parent is ctx
    assert "add" not in ctx


def test_set_vars_on_api(make_context):
    api = make_context().install_api(GreetingAPI, "greeting")
    api.set_vars({"siteName": "MDN"})

    assert api.siteName == "MDN"
    assert api["sitename"] == "MDN"
    assert api["SiteName"] == "MDN"


def test_api_is_a_mapping(make_context):
    api = make_context().install_api(GreetingAPI, "greeting")

    assert "greet" in api
    assert "get" not in api
    assert set(api) >= {"greet", "Greet", "salutation", "Salutation", "set_vars"}
    with pytest.raises(AttributeError):
        api.missing_member
