"""
Server options handling with dictionary path access and schema validation.
Path: kumascript/config.py
"""
import collections.abc
import os
import re
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema
import structlog
import yaml

from kumascript.errors import ConfigValidationError

logger = structlog.get_logger()

DEFAULT_SERVER_OPTIONS: Dict[str, Any] = {
    "autorequire": {},
    "autorequire_concurrency": 4,
    "call_timeout": None,
    "template_timeout": None
}

SERVER_OPTIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "cache": {
            "type": ["object", "null"],
            "properties": {
                "url": {"type": ["string", "null"]},
                "key_prefix": {"type": "string"}
            }
        },
        "autorequire": {
            "type": ["object", "null"],
            "additionalProperties": {"type": "string"}
        },
        "autorequire_concurrency": {"type": "integer", "minimum": 1},
        "call_timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
        "template_timeout": {"type": ["number", "null"], "exclusiveMinimum": 0}
    }
}


class ConfigNode:
    """Read-only dotted-path view over server options, e.g. ``options.get_value("cache.url")``."""

    def __init__(self, data: Dict[str, Any]):
        self.data = data

    def get_value(self, path: str, default: Any = None) -> Any:
        """
        Look up a dot-delimited path.

        Args:
            path: Path such as ``"cache.key_prefix"``; empty for the whole mapping
            default: Returned when any segment is missing

        Returns:
            The value at path, or default
        """
        current: Any = self.data
        for key in filter(None, path.split('.')):
            if not isinstance(current, collections.abc.Mapping) or key not in current:
                return default
            current = current[key]
        return current

    def __getitem__(self, path: str) -> Any:
        return self.get_value(path)

    def __contains__(self, path: str) -> bool:
        return self.get_value(path) is not None


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge dictionaries.
    Rules:
    1. Override values take precedence.
    2. Dictionaries merged recursively.
    3. Lists from override replace lists from base.
    4. None values in override delete keys from base.

    Args:
        base: Base configuration dictionary
        override: Override configuration dictionary

    Returns:
        Merged configuration dictionary
    """
    result = deepcopy(base)
    for key, value in override.items():
        if value is None:
            result.pop(key, None)
        elif key in result and isinstance(result[key], collections.abc.Mapping) and isinstance(value, collections.abc.Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)
    return result


def load_config(path: Path) -> Dict[str, Any]:
    """Load configuration from a YAML file, returning {} when missing or unreadable"""
    try:
        logger.info("config.load.starting", path=str(path))
        if not path.exists():
            logger.error("config.load.file_not_found", path=str(path))
            return {}
        with open(path) as f:
            config = yaml.safe_load(f) or {}
        logger.info("config.load.success", path=str(path), keys=list(config.keys()))
        return config
    except yaml.YAMLError as e:
        logger.error("config.load.yaml_error", path=str(path), error=str(e))
        return {}


_ENV_REFERENCE = re.compile(r'\$\{([^}]+)\}')
_WHOLE_ENV_REFERENCE = re.compile(r'^\$(\w+)$')


def expand_env_vars(value: Any) -> Any:
    """Expand ``${VAR}`` references, or a whole-value ``$VAR``, in option strings at any depth.

    An unset ``${VAR}`` expands to ""; an unset whole-value ``$VAR`` is left as written.
    """
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value
    whole = _WHOLE_ENV_REFERENCE.match(value)
    if whole:
        return os.environ.get(whole.group(1)) or value
    return _ENV_REFERENCE.sub(lambda m: os.environ.get(m.group(1), ""), value)


def validate_server_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate server options against SERVER_OPTIONS_SCHEMA.

    Args:
        options: Server options to validate

    Returns:
        The options, unchanged

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        jsonschema.validate(instance=options, schema=SERVER_OPTIONS_SCHEMA)
    except jsonschema.exceptions.ValidationError as e:
        path_string = ".".join(str(p) for p in e.path) if e.path else "root"
        logger.error("config.validation.failed", path=path_string, error=e.message)
        raise ConfigValidationError(f"Invalid server options at '{path_string}': {e.message}") from e
    logger.debug("config.validation.passed", keys=list(options.keys()))
    return options


def load_server_options(path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build effective server options from defaults, a YAML file and overrides.

    Args:
        path: Optional YAML file with server options
        overrides: Optional options taking precedence over the file

    Returns:
        Validated server options

    Raises:
        ConfigValidationError: If the merged options are invalid
    """
    options = deepcopy(DEFAULT_SERVER_OPTIONS)
    if path is not None:
        options = deep_merge(options, load_config(Path(path)))
    if overrides:
        options = deep_merge(options, overrides)
    options = expand_env_vars(options)
    logger.info("config.server_options.loaded",
                autorequire=len(options.get("autorequire") or {}),
                cache_configured=bool(ConfigNode(options).get_value("cache.url")))
    return validate_server_options(options)
