"""YAML + environment variable config loader."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from couchsnap.config.models import PlatformConfig
from couchsnap.errors import ConfigError

DEFAULTS_DIR = Path(__file__).parent / "defaults"

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")

# Credentials are only ever taken from the environment, never from defaults.
_SERVER_ENV_VARS = {
    "COUCH_USERNAME": "username",
    "COUCH_PASSWORD": "password",
    "COUCH_TOKEN": "auth_token",
}


def _substitute(value: str) -> str:
    """Expand ``${VAR}`` / ``${VAR:-default}`` references in one string."""

    def _lookup(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        if name in os.environ:
            return os.environ[name]
        if default is None:
            msg = f"${{{name}}} is unset and has no default"
            raise ValueError(msg)
        return default.replace("\\}", "}")

    return _ENV_PATTERN.sub(_lookup, value)


def resolve_env_vars(data: Any) -> Any:
    """Expand environment references in every string of parsed YAML data."""
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(value) for value in data]
    return _substitute(data) if isinstance(data, str) else data


def load_defaults(name: str = "platform") -> dict[str, Any]:
    """Read a built-in defaults file, e.g. ``defaults/platform.yaml``."""
    path = DEFAULTS_DIR / f"{name}.yaml"
    if not path.is_file():
        msg = f"No built-in defaults named '{name}' in {DEFAULTS_DIR}"
        raise FileNotFoundError(msg)
    with path.open() as f:
        return yaml.safe_load(f) or {}


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Return *base* with *overrides* merged in; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = merge_configs(current, value)
        merged[key] = value
    return merged


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a user config file; an empty file is an empty mapping."""
    source = Path(path)
    if not source.is_file():
        msg = f"Config file not found: {source}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(source.read_text())
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" (line {mark.line + 1}, column {mark.column + 1})" if mark else ""
        msg = f"Cannot parse {source}{where}: {exc}"
        raise ValueError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{source} must hold a YAML mapping, not {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def server_env_overrides() -> dict[str, Any]:
    """Collect server credentials from COUCH_* environment variables."""
    server = {
        field: os.environ[var]
        for var, field in _SERVER_ENV_VARS.items()
        if os.environ.get(var)
    }
    return {"server": server} if server else {}


def load_platform_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> PlatformConfig:
    """Build a PlatformConfig from defaults, env credentials, a YAML file and overrides.

    Later sources win: built-in defaults < environment credentials < YAML file
    < explicit *overrides* (typically CLI flags).
    """
    try:
        base = resolve_env_vars(load_defaults("platform"))
        base = merge_configs(base, server_env_overrides())
        if path is not None:
            base = merge_configs(base, load_yaml(path))
    except (OSError, TypeError, ValueError) as exc:
        raise ConfigError(str(exc)) from exc
    if overrides:
        base = merge_configs(base, overrides)
    try:
        return PlatformConfig.model_validate(base)
    except ValidationError as exc:
        source = path or "built-in defaults"
        msg = f"Invalid config ({source}):\n{exc}"
        raise ConfigError(msg) from exc
