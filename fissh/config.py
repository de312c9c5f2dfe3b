# Copyright 2025 icecake0141
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review required for correctness, security, and licensing.

"""
Config file and environment support for fissh.

This module handles loading settings from ~/.fissh.conf (YAML or INI) and
from environment variables.

Priority order: CLI args > environment > ~/.fissh.conf > hardcoded defaults
"""

import configparser
import logging
import os
import re
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.expanduser("~/.fissh.conf")

# Mapping of config field names to their expected Python types
_CONFIG_FIELD_TYPES: Dict[str, type] = {
    "host": str,
    "port": int,
    "host_key_path": str,
    "art_dir": str,
    "display_window": str,
    "always_show_art": bool,
    "default_timezone": str,
    "ipinfo_token": str,
    "lookup_timeout": float,
    "tick_interval": float,
    "shutdown_grace": float,
    "log_level": str,
    "log_file": str,
}

# Environment variable names for fields that can be set that way
ENV_FIELDS: Dict[str, str] = {
    "HOST": "host",
    "PORT": "port",
    "FISSH_HOST_KEY": "host_key_path",
    "FISSH_ART_DIR": "art_dir",
    "FISSH_DISPLAY_WINDOW": "display_window",
    "FISSH_DEFAULT_TIMEZONE": "default_timezone",
    "IPINFO_TOKEN": "ipinfo_token",
}

_BOOL_TRUE_VALUES = frozenset(("true", "yes", "1", "on"))
_BOOL_FALSE_VALUES = frozenset(("false", "no", "0", "off"))

_DISPLAY_WINDOW_RE = re.compile(r"^(\d{2}):(\d{2})$")


def _parse_bool(value: str) -> bool:
    """Parse a boolean value from a string representation."""
    lower = value.lower()
    if lower in _BOOL_TRUE_VALUES:
        return True
    if lower in _BOOL_FALSE_VALUES:
        return False
    raise ValueError(f"Cannot parse '{value}' as a boolean. Use true/false, yes/no, 1/0, or on/off.")


def _coerce_field(key: str, raw_value: Any) -> Any:
    """Coerce a raw config value to the expected type for the given field name."""
    if key not in _CONFIG_FIELD_TYPES:
        return raw_value
    field_type = _CONFIG_FIELD_TYPES[key]
    if isinstance(raw_value, bool) and field_type in (int, float):
        raise ValueError(f"Invalid value for config field '{key}': expected {field_type.__name__}, got {raw_value!r}")
    if isinstance(raw_value, field_type):
        return raw_value
    try:
        if field_type is bool:
            return _parse_bool(str(raw_value))
        return field_type(raw_value)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Invalid value for config field '{key}': expected {field_type.__name__}, got {raw_value!r}") from exc


def parse_display_window(value: str) -> str:
    """
    Validate a display window time of day.

    The window is compared against a 12-hour clock, so hours run 01-12.

    Raises:
        ValueError: If the value is not ``hh:mm`` with 01 <= hh <= 12
    """
    match = _DISPLAY_WINDOW_RE.match(value.strip())
    if not match:
        raise ValueError(f"Display window '{value}' must look like hh:mm (e.g. 11:11).")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if not 1 <= hours <= 12 or not 0 <= minutes <= 59:
        raise ValueError(f"Display window '{value}' must be a 12-hour time between 01:00 and 12:59.")
    return f"{hours:02d}:{minutes:02d}"


def load_ini_config(path: str) -> Dict[str, Any]:
    """
    Load and parse an INI-format config file.

    Only ``=`` separates keys from values. Only the ``[default]``
    section is read.

    Args:
        path: Path to the INI config file.

    Returns:
        Dictionary of config values.

    Raises:
        ValueError: On parse errors or invalid field values.
    """
    # The display window itself contains ':', so only '=' separates keys here.
    parser = configparser.ConfigParser(delimiters=("=",), interpolation=None)
    try:
        read_files = parser.read(path, encoding="utf-8")
    except configparser.Error as exc:
        raise ValueError(f"Invalid config file '{path}': {exc}") from exc

    if not read_files:
        raise ValueError(f"Config file '{path}' could not be read.")

    result: Dict[str, Any] = {}

    if parser.has_section("default"):
        for key, raw_value in parser.items("default"):
            if key not in _CONFIG_FIELD_TYPES:
                logger.warning("Unknown config key '%s' in [default] section of '%s'; ignoring.", key, path)
                continue
            result[key] = _coerce_field(key, raw_value)

    return result


def load_yaml_config(path: str) -> Dict[str, Any]:
    """
    Load and parse a YAML-format config file.

    Uses ``yaml.safe_load`` to prevent arbitrary code execution.

    Args:
        path: Path to the YAML config file.

    Returns:
        Dictionary of config values.

    Raises:
        ValueError: On parse errors or invalid file content.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in config file '{path}': {exc}") from exc
    except OSError as exc:
        raise ValueError(f"Cannot read config file '{path}': {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{path}' must contain a YAML mapping at the top level, got {type(data).__name__}.")

    result: Dict[str, Any] = {}

    default_section = data.get("default") or {}
    if not isinstance(default_section, dict):
        raise ValueError(f"The 'default' section in '{path}' must be a YAML mapping.")
    for key, value in default_section.items():
        if key not in _CONFIG_FIELD_TYPES:
            logger.warning("Unknown config key '%s' in 'default' section of '%s'; ignoring.", key, path)
            continue
        if value is None:
            continue
        result[key] = _coerce_field(key, value)

    return result


def _is_yaml_file(path: str) -> bool:
    """
    Heuristically determine whether a config file uses YAML or INI format.

    INI files begin with a ``[section]`` header on the first non-blank,
    non-comment line.  Anything else is treated as YAML.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            for line in fh:
                stripped = line.strip()
                if stripped and not stripped.startswith("#"):
                    return not stripped.startswith("[")
    except OSError:
        pass
    return False


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load persistent settings from a config file.

    Auto-detects whether the file uses YAML or INI format.
    Returns an empty dict if the config file does not exist.

    Args:
        path: Path to the config file.  Defaults to ``~/.fissh.conf``.

    Returns:
        Dictionary of config values.

    Raises:
        ValueError: If the file exists but cannot be parsed.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH

    if not os.path.exists(path):
        return {}

    if _is_yaml_file(path):
        logger.debug("Loading YAML config from '%s'.", path)
        return load_yaml_config(path)

    logger.debug("Loading INI config from '%s'.", path)
    return load_ini_config(path)


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Read settings from environment variables.

    ``ALWAYSFISH=1`` turns on ``always_show_art``; any other value leaves it
    unset. Empty variables are ignored.

    Raises:
        ValueError: If a variable holds a value of the wrong type.
    """
    if environ is None:
        environ = os.environ

    result: Dict[str, Any] = {}
    for env_name, field in ENV_FIELDS.items():
        value = environ.get(env_name)
        if value:
            result[field] = _coerce_field(field, value)
    if environ.get("ALWAYSFISH") == "1":
        result["always_show_art"] = True
    return result
