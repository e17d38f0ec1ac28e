"""YAML + environment variable config loader."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from kafka_retry.config.defaults import load_defaults, merge_configs
from kafka_retry.config.models import RetryConfig
from kafka_retry.errors import ConfigError

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")


def _resolve_env_str(value: str) -> str:
    """Replace all ${VAR} / ${VAR:-default} references in a string."""

    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default.replace("\\}", "}")
        msg = f"Environment variable '{var_name}' is not set and no default provided"
        raise ConfigError(msg)

    return _ENV_PATTERN.sub(_replace, value)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve ${VAR} and ${VAR:-default} in parsed YAML data."""
    if isinstance(data, str):
        return _resolve_env_str(data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        with p.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {p}"
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            msg += f" at line {mark.line + 1}, column {mark.column + 1}"
        msg += f": {exc}"
        raise ConfigError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise ConfigError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def build_retry_config(overrides: dict[str, Any]) -> RetryConfig:
    """Validate *overrides* merged over the built-in defaults."""
    merged = merge_configs(load_defaults("retry"), overrides)
    return RetryConfig.model_validate(merged)


def load_retry_config(path: str | Path | None = None) -> RetryConfig:
    """Load retry config from built-in defaults, optionally merged with a file.

    The top-level ``kafka_retry`` key is unwrapped when present so the engine
    section can live inside a larger application config file.
    """
    overrides: dict[str, Any] = {}
    if path is not None:
        overrides = load_yaml(path)
        nested = overrides.get("kafka_retry")
        if isinstance(nested, dict):
            overrides = nested
    try:
        return build_retry_config(overrides)
    except ValidationError as exc:
        source = path or "built-in defaults"
        msg = f"Invalid retry config ({source}):\n{exc}"
        raise ConfigError(msg) from exc
