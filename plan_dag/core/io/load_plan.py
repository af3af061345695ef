from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import yaml

from plan_dag.core.errors import PlanLoadError


# Top-level keys carried through to the validator; anything else is dropped.
PLAN_KEYS = ("schema_version", "id", "name", "version", "sequence_enforcement", "nodes")

_PARSERS: dict[str, tuple[str, Callable[[str], Any], tuple[type[Exception], ...]]] = {
    ".yaml": ("E_YAML_PARSE", yaml.safe_load, (yaml.YAMLError,)),
    ".yml": ("E_YAML_PARSE", yaml.safe_load, (yaml.YAMLError,)),
    ".json": ("E_JSON_PARSE", json.loads, (json.JSONDecodeError,)),
}


def load_plan(path: str) -> dict[str, Any]:
    """Read a plan document from a .yaml/.yml/.json file.

    The result holds schema_version and nodes (possibly None) plus any of the
    optional plan keys that are present, ``__file__`` with the source path, and
    ``__extra__`` holding every other top-level key.
    Values are not coerced; validate_plan owns shape checking.
    """
    p = Path(path)
    file = str(p)

    if not p.is_file():
        raise PlanLoadError(code="E_FILE_NOT_FOUND", message="file does not exist", file=file)

    parser = _PARSERS.get(p.suffix.lower())
    if parser is None:
        raise PlanLoadError(
            code="E_UNSUPPORTED_FORMAT",
            message=f"cannot read '{p.suffix or p.name}'; use .yaml, .yml or .json",
            file=file,
        )
    parse_code, parse, parse_errors = parser

    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PlanLoadError(code="E_FILE_READ", message=str(e), file=file) from e

    try:
        data = parse(text)
    except parse_errors as e:
        raise PlanLoadError(code=parse_code, message=str(e), file=file) from e

    if not isinstance(data, dict):
        raise PlanLoadError(
            code="E_INVALID_TOP_LEVEL",
            message=f"top-level document must be a mapping, got {type(data).__name__}",
            file=file,
        )

    plan: dict[str, Any] = {"schema_version": data.get("schema_version"), "nodes": data.get("nodes")}
    plan.update((k, data[k]) for k in PLAN_KEYS if k in data)
    plan["__file__"] = file
    # Keys the tool does not interpret; dump_plan writes them back untouched.
    plan["__extra__"] = {k: v for k, v in data.items() if k not in PLAN_KEYS}
    return plan
