"""
Unit tests for server options handling
Path: tests/test_config.py
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from kumascript.config import (
    ConfigNode,
    deep_merge,
    expand_env_vars,
    load_config,
    load_server_options,
    validate_server_options,
)
from kumascript.errors import ConfigValidationError


class TestServerOptions(unittest.TestCase):
    """Test cases for loading and validating server options"""

    def setUp(self):
        """Set up a temporary options file"""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.options_path = Path(self.tmpdir.name) / "server.yml"
        with open(self.options_path, "w") as f:
            yaml.safe_dump({
                "cache": {"url": "${KS_TEST_REDIS_URL}", "key_prefix": "mdn:"},
                "autorequire": {"mdn": "MDN:Common", "wiki": "DekiScript:Wiki"},
                "call_timeout": 30
            }, f)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_load_merges_defaults_file_and_overrides(self):
        with patch.dict(os.environ, {"KS_TEST_REDIS_URL": "redis://localhost:6379/1"}):
            options = load_server_options(self.options_path, {"call_timeout": 5})

        self.assertEqual(options["cache"]["url"], "redis://localhost:6379/1")
        self.assertEqual(options["autorequire"]["wiki"], "DekiScript:Wiki")
        self.assertEqual(options["call_timeout"], 5)
        self.assertEqual(options["autorequire_concurrency"], 4)

    def test_load_without_file_gives_defaults(self):
        options = load_server_options()

        self.assertEqual(options["autorequire"], {})
        self.assertIsNone(options["call_timeout"])

    def test_invalid_options_raise(self):
        with self.assertRaises(ConfigValidationError) as context:
            load_server_options(overrides={"autorequire_concurrency": 0})

        self.assertIn("autorequire_concurrency", str(context.exception))

    def test_autorequire_values_must_be_template_names(self):
        with self.assertRaises(ConfigValidationError):
            validate_server_options({"autorequire": {"mdn": 12}})

    def test_missing_file_loads_empty(self):
        self.assertEqual(load_config(Path(self.tmpdir.name) / "absent.yml"), {})


class TestConfigHelpers(unittest.TestCase):
    """Test cases for the dictionary helpers"""

    def test_deep_merge(self):
        base = {"cache": {"url": "redis://a", "key_prefix": "x:"}, "call_timeout": 3}
        merged = deep_merge(base, {"cache": {"url": "redis://b"}, "call_timeout": None})

        self.assertEqual(merged, {"cache": {"url": "redis://b", "key_prefix": "x:"}})
        self.assertEqual(base["cache"]["url"], "redis://a")

    def test_config_node_paths(self):
        node = ConfigNode({"cache": {"url": "redis://a"}, "autorequire_concurrency": 2})

        self.assertEqual(node.get_value("cache.url"), "redis://a")
        self.assertEqual(node["autorequire_concurrency"], 2)
        self.assertIsNone(node.get_value("cache.missing.deeper"))
        self.assertIsNone(node.get_value("cache.url.deeper"))
        self.assertEqual(node.get_value("cache.key_prefix", "kumascript:"), "kumascript:")
        self.assertIn("cache.url", node)
        self.assertNotIn("call_timeout", node)

    def test_expand_env_vars(self):
        with patch.dict(os.environ, {"KS_HOST": "cache.internal"}):
            expanded = expand_env_vars({"cache": {"url": "redis://${KS_HOST}:6379", "key_prefix": "$KS_HOST"}})

        self.assertEqual(expanded["cache"]["url"], "redis://cache.internal:6379")
        self.assertEqual(expanded["cache"]["key_prefix"], "cache.internal")

    def test_expand_env_vars_unset_and_nested(self):
        with patch.dict(os.environ, {}, clear=True):
            expanded = expand_env_vars({
                "cache": {"url": "redis://${KS_MISSING}host", "key_prefix": "$KS_MISSING"},
                "hosts": [{"name": "${KS_MISSING}"}, 3]
            })

        self.assertEqual(expanded["cache"]["url"], "redis://host")
        self.assertEqual(expanded["cache"]["key_prefix"], "$KS_MISSING")
        self.assertEqual(expanded["hosts"], [{"name": ""}, 3])


if __name__ == "__main__":
    unittest.main()
