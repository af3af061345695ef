from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml


DEFAULT_SETTINGS: dict[str, Any] = {
    "log_level": "WARNING",
    # Insert persisted edges through add_edge instead of restoring them verbatim.
    "strict_load": False,
    # Refuse to complete a node whose prerequisites are incomplete.
    "enforce_sequence": False,
    # Report a node as blocked when any ancestor (not only a direct prerequisite) is incomplete.
    "transitive_blocking": False,
}

ENV_PREFIX = "PLAN_DAG_"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SettingsError(ValueError):
    pass


def load_settings_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Format:
      log_level: INFO
      strict_load: true
      enforce_sequence: false
      transitive_blocking: false

    Returns only the keys present in the file, validated.
    """
    p = Path(path)
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SettingsError("settings file must be a mapping of name -> value")
    return _checked(raw)


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Read PLAN_DAG_<NAME> environment variables for every known setting."""
    env = os.environ if environ is None else environ
    out: dict[str, Any] = {}
    for key, default in DEFAULT_SETTINGS.items():
        value = env.get(ENV_PREFIX + key.upper())
        if value is None or value == "":
            continue
        if isinstance(default, bool):
            out[key] = _parse_bool(key, value)
        else:
            out[key] = value
    return _checked(out)


def merged_settings(*overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Return DEFAULT_SETTINGS updated by each override mapping in turn."""
    merged = dict(DEFAULT_SETTINGS)
    for o in overrides:
        if o:
            merged.update(o)
    return merged


def load_and_merge(settings_file: str | None, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    file_overrides = load_settings_file(settings_file) if settings_file else None
    return merged_settings(file_overrides, env_overrides(environ))


def _checked(raw: Mapping[Any, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k not in DEFAULT_SETTINGS:
            raise SettingsError(f"unknown setting: {k}")
        if isinstance(DEFAULT_SETTINGS[k], bool):
            if not isinstance(v, bool):
                raise SettingsError(f"setting '{k}' must be a boolean")
        elif k == "log_level":
            if not isinstance(v, str) or v.upper() not in LOG_LEVELS:
                raise SettingsError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
            v = v.upper()
        out[k] = v
    return out


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise SettingsError(f"{ENV_PREFIX}{key.upper()} must be a boolean, got: {value}")
