"""YAML + environment variable config loader."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from pg_migrate.config.models import MigrationConfig

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")

# Endpoint fields read from SOURCE_DB_* / TARGET_DB_* variables.
ENDPOINT_ENV_FIELDS: dict[str, str] = {
    "HOST": "host",
    "PORT": "port",
    "USER": "user",
    "PASSWORD": "password",
    "NAME": "database",
    "SSLMODE": "sslmode",
}


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively deep-merge *overrides* into *base* (non-mutating)."""
    merged: dict[str, Any] = {**base}
    for key, value in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


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
        raise ValueError(msg)

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
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def endpoint_env_overrides(prefix: str) -> dict[str, str]:
    """Collect ``{PREFIX}_DB_*`` variables for one endpoint.

    Empty variables are treated as unset.
    """
    overrides: dict[str, str] = {}
    for suffix, field in ENDPOINT_ENV_FIELDS.items():
        value = os.environ.get(f"{prefix}_DB_{suffix}")
        if value:
            overrides[field] = value
    return overrides


def load_migration_config(
    path: str | Path | None = None,
    *,
    source: dict[str, Any] | None = None,
    target: dict[str, Any] | None = None,
) -> MigrationConfig:
    """Resolve the migration config from every layer.

    Precedence, lowest first: model defaults, the YAML file at *path*,
    ``SOURCE_DB_*`` / ``TARGET_DB_*`` environment variables, then the
    explicit *source* / *target* overrides (CLI flags).  ``None`` values in
    the explicit overrides are ignored.
    """
    data = load_yaml(path) if path is not None else {}
    layers = {
        "source": (endpoint_env_overrides("SOURCE"), source or {}),
        "target": (endpoint_env_overrides("TARGET"), target or {}),
    }
    for endpoint, (env_layer, flag_layer) in layers.items():
        explicit = {k: v for k, v in flag_layer.items() if v is not None}
        data = merge_configs(data, {endpoint: {**env_layer, **explicit}})
    try:
        return MigrationConfig.model_validate(data)
    except ValidationError as exc:
        origin = path or "environment and flags"
        msg = f"Invalid migration config ({origin}):\n{exc}"
        raise ValueError(msg) from exc
