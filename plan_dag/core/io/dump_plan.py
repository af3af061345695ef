from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml


def dump_plan(plan: dict[str, Any], path: str) -> None:
    """Write a plan dict as YAML, or JSON when the path ends in .json.

    Loader bookkeeping keys (``__file__``) are not written; top-level keys the
    loader set aside under ``__extra__`` are written back.
    """
    p = Path(path)
    if str(p.parent) not in (".", ""):
        p.parent.mkdir(parents=True, exist_ok=True)

    data = {k: v for k, v in plan.items() if not k.startswith("__")}
    for k, v in (plan.get("__extra__") or {}).items():
        data.setdefault(k, v)
    if p.suffix.lower() == ".json":
        p.write_text(json.dumps(data, indent=2, default=str) + "\n", encoding="utf-8")
        return
    dump_plan_yaml(data, str(p))


def dump_plan_yaml(plan: dict[str, Any], path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(plan, f, sort_keys=False, default_flow_style=False, allow_unicode=True)
