"""
Configuration file system for skos-explorer.

Supports loading configuration from multiple locations, merged with precedence:
1. /etc/skos-explorer/config.yaml or config.json (lowest priority)
2. ~/.config/skos-explorer/config.yaml or config.json
3. ./config.yaml, ./config.json, ./skos-explorer.yaml or ./skos-explorer.json

All found config files are merged, with later files overriding earlier ones.
YAML is checked before JSON at each location. Environment variables
(SKOS_EXPLORER_*) have the highest priority.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .capabilities import Capabilities
from .labels import LanguagePreference
from .orphans import STRATEGIES

# Config filenames for current working directory (project-local config)
CONFIG_FILENAMES = ["config.yaml", "config.json", "skos-explorer.yaml", "skos-explorer.json"]
# Config filenames for system/user config directories
CONFIG_USER_FILENAMES = ["config.yaml", "config.json"]

ENV_PREFIX = "SKOS_EXPLORER_"

DEFAULTS: dict[str, Any] = {
    "lang": None,  # Override language; falls back to language_priorities
    "language_priorities": ["en"],
    "endpoint": {
        "url": None,
        "timeout": 60.0,
        "retries": 3,
        "retry_delay": 1.0,
        "auth": {"type": "none"},
    },
    "labels": {
        "threshold": 5,
        "max_language_iterations": 5,
    },
    "orphans": {
        "strategy": "auto",
        "page_size": 5000,
    },
    "tree": {
        "page_size": 200,
    },
    # Pre-analysed capabilities (analysis JSON), skips endpoint analysis
    "capabilities": None,
}


def _get_config_dirs() -> list[Path]:
    """Get list of config directories to search, in merge order (lowest priority first)."""
    return [
        Path("/etc/skos-explorer"),
        Path.home() / ".config" / "skos-explorer",
        Path.cwd(),
    ]


def find_config_files() -> list[Path]:
    """Find all existing config files, in merge order (lowest priority first).

    Returns list of found files. At each location, only the first found
    file (YAML before JSON) is included.
    """
    found_files = []
    for dir_path in _get_config_dirs():
        filenames = CONFIG_FILENAMES if dir_path == Path.cwd() else CONFIG_USER_FILENAMES
        for filename in filenames:
            path = dir_path / filename
            if path.exists():
                found_files.append(path)
                break  # Only use first found file at each location
    return found_files


def find_config_file() -> Path | None:
    """Find the highest-priority existing config file, or None."""
    files = find_config_files()
    return files[-1] if files else None


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base dict, modifying base in place."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _deep_copy(d: dict) -> dict:
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _load_config_file(path: Path) -> dict[str, Any]:
    """Load a single config file and return its contents.

    Args:
        path: Path to config file (YAML or JSON).

    Returns:
        Parsed configuration dictionary.

    Raises:
        ImportError: If YAML config is found but PyYAML is not installed.
        json.JSONDecodeError: If JSON config file is malformed.
    """
    if path.suffix in (".yaml", ".yml"):
        try:
            import yaml
        except ImportError as e:
            raise ImportError(
                "PyYAML required for .yaml config files. Install with: pip install skos-explorer[yaml]"
            ) from e
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load config from file(s), merging with defaults.

    Args:
        path: Optional explicit path to config file. If provided, only this
              file is loaded (plus defaults and env vars). If None, all
              standard locations are searched and merged.

    Returns:
        Merged configuration dictionary with defaults applied.
    """
    config = _deep_copy(DEFAULTS)

    if path is not None:
        if path.exists():
            _deep_merge(config, _load_config_file(path))
    else:
        for config_path in find_config_files():
            _deep_merge(config, _load_config_file(config_path))

    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: dict[str, Any]) -> None:
    """Apply environment variable overrides to config.

    Environment variables are named SKOS_EXPLORER_<KEY> where nested
    keys use double underscore, e.g., SKOS_EXPLORER_ENDPOINT__TIMEOUT=120
    """
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            config_key = key[len(ENV_PREFIX) :].lower()
            _set_nested_value(config, config_key, value)


def _set_nested_value(config: dict, key: str, value: str) -> None:
    """Set a nested config value using double-underscore notation.

    e.g., "orphans__strategy" sets config["orphans"]["strategy"]
    """
    parts = key.split("__")
    target = config
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = _convert_value(value)


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    # Comma separated lists, e.g. SKOS_EXPLORER_LANGUAGE_PRIORITIES=en,de
    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def get_config_value(config: dict[str, Any], key: str, default: Any = None) -> Any:
    """Get a config value using dot notation.

    Args:
        config: Configuration dictionary.
        key: Dot-separated key, e.g., "endpoint.timeout" or "lang".
        default: Default value if key not found.

    Returns:
        The config value, or default if not found.
    """
    target = config
    for part in key.split("."):
        if isinstance(target, dict) and part in target:
            target = target[part]
        else:
            return default
    return target


class Config:
    """Configuration holder with convenient access methods."""

    def __init__(self, path: Path | None = None):
        """Initialize config, loading from file(s).

        Args:
            path: Optional explicit path to config file. If provided, only
                  this file is loaded. Otherwise, all standard locations
                  are searched and merged.
        """
        if path is not None:
            self._paths = [path] if path.exists() else []
        else:
            self._paths = find_config_files()
        self._data = load_config(path)

    @property
    def path(self) -> Path | None:
        """Return the highest-priority loaded config file, or None."""
        return self._paths[-1] if self._paths else None

    @property
    def paths(self) -> list[Path]:
        """Return all loaded config file paths, in merge order."""
        return self._paths.copy()

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value using dot notation."""
        return get_config_value(self._data, key, default)

    @property
    def lang(self) -> str | None:
        """Override language, or None to use the priority list only."""
        value = self.get("lang")
        # YAML parses bare 'no' as boolean False
        if value is False:
            return "no"
        return str(value) if value else None

    @property
    def language_priorities(self) -> list[str]:
        value = self.get("language_priorities") or []
        if isinstance(value, str):
            value = [value]
        return ["no" if lang is False else str(lang) for lang in value]

    @property
    def endpoint_url(self) -> str | None:
        return self.get("endpoint.url")

    @property
    def endpoint_timeout(self) -> float:
        return float(self.get("endpoint.timeout", 60.0))

    @property
    def endpoint_retries(self) -> int:
        return int(self.get("endpoint.retries", 3))

    @property
    def endpoint_retry_delay(self) -> float:
        return float(self.get("endpoint.retry_delay", 1.0))

    @property
    def endpoint_auth(self) -> dict[str, Any]:
        return self.get("endpoint.auth") or {"type": "none"}

    @property
    def label_threshold(self) -> int:
        return int(self.get("labels.threshold", 5))

    @property
    def max_language_iterations(self) -> int:
        return int(self.get("labels.max_language_iterations", 5))

    @property
    def orphan_strategy(self) -> str:
        """Orphan detection strategy: fast, slow or auto.

        Raises:
            ValueError: If the configured strategy is unknown.
        """
        value = str(self.get("orphans.strategy", "auto")).lower()
        if value not in STRATEGIES:
            raise ValueError(
                f"Invalid orphans.strategy {value!r}, expected one of: {', '.join(STRATEGIES)}"
            )
        return value

    @property
    def orphan_page_size(self) -> int:
        return int(self.get("orphans.page_size", 5000))

    @property
    def tree_page_size(self) -> int:
        return int(self.get("tree.page_size", 200))

    @property
    def capabilities(self) -> Capabilities | None:
        """Pre-analysed capabilities from config, or None."""
        data = self.get("capabilities")
        return Capabilities.from_dict(data) if data else None

    def language_preference(self, override: str | None = None) -> LanguagePreference:
        """Build the language preference.

        Args:
            override: Language taking precedence over the configured ``lang``
                      (e.g. from the command line).
        """
        return LanguagePreference(
            preferred=override or self.lang,
            priorities=tuple(self.language_priorities),
        )
