from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, NoReturn, Optional

import typer

from plan_dag.core.adapter.plan_adapter import apply_graph, build_graph
from plan_dag.core.config import LOG_LEVELS, SettingsError, load_and_merge
from plan_dag.core.errors import (
    E_CYCLE_DETECTED,
    GraphValidationError,
    PlanError,
    PlanLoadError,
    PlanValidationError,
)
from plan_dag.core.graph.dag import PlanGraph
from plan_dag.core.io.dump_plan import dump_plan
from plan_dag.core.io.load_plan import load_plan
from plan_dag.core.lint.lint_plan import lint_plan
from plan_dag.core.logging_config import configure_logging
from plan_dag.core.model import PlanNode
from plan_dag.core.validate.validate_plan import summarize_plan, validate_plan

app = typer.Typer(add_completion=False, no_args_is_help=True)

FORMATS = ("text", "json")


@app.callback()
def _callback(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Optional YAML settings file"),
    log_level: str | None = typer.Option(None, "--log-level", help="Override the configured log level"),
) -> None:
    """Plan dependency graph CLI."""
    try:
        settings = load_and_merge(config)
    except FileNotFoundError:
        _print_errors(
            [
                PlanLoadError(
                    code="E_CONFIG_FILE_NOT_FOUND",
                    message=f"settings file not found: {config}",
                    path="config",
                )
            ]
        )
        raise typer.Exit(code=1)
    except SettingsError as e:
        _print_errors([PlanValidationError(code="E_CONFIG_INVALID", message=str(e), path="config")])
        raise typer.Exit(code=2)

    if log_level is not None:
        if log_level.upper() not in LOG_LEVELS:
            _print_errors(
                [
                    PlanValidationError(
                        code="E_UNKNOWN_LOG_LEVEL",
                        message=f"unknown log level: {log_level} (choose one of: {', '.join(LOG_LEVELS)})",
                        path="log_level",
                    )
                ]
            )
            raise typer.Exit(code=2)
        settings["log_level"] = log_level.upper()

    configure_logging(settings["log_level"])
    ctx.obj = settings


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Validate a plan file: shape, references and acyclicity."""
    _check_format(format, "validate")

    try:
        plan = load_plan(path)
    except PlanLoadError as e:
        if format == "json":
            _emit_json("validate", False, errors=[e], exit_code=1, summary=None)
        _fail([e], 1)

    graph, errors = validate_plan(plan)
    if errors or graph is None:
        if format == "json":
            _emit_json("validate", False, errors=list(errors), exit_code=2, summary=None)
        _fail(list(errors), 2)

    if format == "text":
        typer.echo(summarize_plan(graph))
        return

    stats = graph.get_statistics()
    summary = {
        "node_count": stats.total_nodes,
        "edge_count": stats.total_edges,
        "roots": [n.id for n in graph.get_root_nodes()],
        "longest_path": stats.longest_path,
        "completion_percentage": stats.completion_percentage,
    }
    _emit_json("validate", True, errors=[], exit_code=0, summary=summary)


@app.command("lint")
def lint(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Lint a plan file (rules beyond schema validation)."""
    _check_format(format, "lint")

    try:
        plan = load_plan(path)
    except PlanLoadError as e:
        if format == "json":
            _emit_json("lint", False, errors=[e], exit_code=1)
        _fail([e], 1)

    lint_errors = lint_plan(plan)
    _, validation_errors = validate_plan(plan)
    errors: list[PlanError] = [*lint_errors, *validation_errors]

    if format == "text":
        if errors:
            _fail(errors, 2)
        typer.echo("OK: lint passed")
        return

    if errors:
        _emit_json("lint", False, errors=errors, exit_code=2)
    _emit_json("lint", True, errors=[], exit_code=0)


@app.command("order")
def order(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    by: str = typer.Option("topo", "--by", help="Ordering: topo (dependency order) or index (sort_index only)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Print nodes in dependency order."""
    _check_format(format, "order")
    if by not in ("topo", "index"):
        err = PlanValidationError(
            code="E_ORDER_UNKNOWN_MODE",
            message=f"unknown ordering: {by} (choose one of: topo, index)",
            path="by",
        )
        if format == "json":
            _emit_json("order", False, errors=[err], exit_code=2)
        _fail([err], 2)

    plan, graph = _load_graph(ctx, path, format, "order")
    nodes = graph.topological_sort() if by == "topo" else graph.sorted_nodes()
    if nodes is None:
        err = PlanValidationError(
            code="E_ORDER_CYCLE",
            message="dependency graph contains a cycle; no topological order exists",
            file=plan.get("__file__"),
            path="nodes",
        )
        if format == "json":
            _emit_json("order", False, errors=[err], exit_code=2)
        _fail([err], 2)

    if format == "json":
        _emit_json("order", True, errors=[], exit_code=0, by=by, order=[n.id for n in nodes])
    for i, node in enumerate(nodes, start=1):
        typer.echo(f"{i}. {node.id}  {node.title}")


@app.command("stats")
def stats(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Print progress and shape statistics for a plan."""
    _check_format(format, "stats")
    _, graph = _load_graph(ctx, path, format, "stats")
    s = graph.get_statistics()

    if format == "json":
        payload = asdict(s)
        payload["completion_percentage"] = s.completion_percentage
        _emit_json("stats", True, errors=[], exit_code=0, statistics=payload)

    typer.echo(f"Nodes: {s.total_nodes} ({s.completed_nodes} completed, {s.completion_percentage:.1f}%)")
    typer.echo(f"Dependencies: {s.total_edges}")
    typer.echo(f"Roots: {s.root_node_count}  Leaves: {s.leaf_node_count}")
    typer.echo(f"Longest chain: {s.longest_path}")
    typer.echo(f"Estimated minutes: {s.estimated_total_minutes}")


@app.command("status")
def status(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    transitive: Optional[bool] = typer.Option(
        None,
        "--transitive/--direct",
        help="Treat any incomplete ancestor as blocking (default from settings)",
    ),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Show which nodes are completed, ready or blocked."""
    _check_format(format, "status")
    _, graph = _load_graph(ctx, path, format, "status")
    use_transitive = ctx.obj["transitive_blocking"] if transitive is None else transitive

    rows: list[dict[str, Any]] = []
    for node in graph.nodes:
        waiting = _waiting_on(graph, node, use_transitive)
        state = "completed" if node.is_completed else "blocked" if waiting else "ready"
        rows.append({"id": node.id, "title": node.title, "state": state, "waiting_on": waiting})

    if format == "json":
        _emit_json("status", True, errors=[], exit_code=0, transitive=use_transitive, nodes=rows)

    marks = {"completed": "[x]", "ready": "[ ]", "blocked": "[!]"}
    for row in rows:
        line = f"{marks[row['state']]} {row['id']}  {row['title']}"
        if row["state"] == "blocked":
            line += f"  (waiting on: {', '.join(row['waiting_on'])})"
        typer.echo(line)


@app.command("link")
def link(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    prereq: str = typer.Argument(..., help="Prerequisite node id"),
    node: str = typer.Argument(..., help="Dependent node id"),
    reason: str | None = typer.Option(None, "--reason", help="Why the dependency exists"),
    soft: bool = typer.Option(False, "--soft", help="Mark the dependency as recommended, not required"),
    out: str | None = typer.Option(None, "--out", help="Write the updated plan here (default: in place)"),
) -> None:
    """Add a dependency: PREREQ must be done before NODE."""
    plan, graph = _load_graph(ctx, path, "text", "link")
    try:
        graph.add_edge(prereq, node, is_hard=not soft, reason=reason)
    except GraphValidationError as e:
        _print_errors([_located(e, plan, "depends_on")])
        if e.code == E_CYCLE_DETECTED:
            typer.echo(
                f"{node} already leads to {prereq} through: {' -> '.join(e.node_ids[:-1])}",
                err=True,
            )
        raise typer.Exit(code=2)

    _save(plan, graph, out or path)
    typer.echo(f"OK: {node} now depends on {prereq}")


@app.command("unlink")
def unlink(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    prereq: str = typer.Argument(..., help="Prerequisite node id"),
    node: str = typer.Argument(..., help="Dependent node id"),
    out: str | None = typer.Option(None, "--out", help="Write the updated plan here (default: in place)"),
) -> None:
    """Remove a dependency (no-op if it does not exist)."""
    plan, graph = _load_graph(ctx, path, "text", "unlink")
    existed = graph.has_edge(prereq, node)
    graph.remove_edge(prereq, node)
    _save(plan, graph, out or path)
    if existed:
        typer.echo(f"OK: {node} no longer depends on {prereq}")
    else:
        typer.echo(f"OK: {node} did not depend on {prereq}; nothing to do")


@app.command("unlink-all")
def unlink_all(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    out: str | None = typer.Option(None, "--out", help="Write the updated plan here (default: in place)"),
) -> None:
    """Remove every dependency in the plan."""
    plan, graph = _load_graph(ctx, path, "text", "unlink-all")
    count = len(graph.edges)
    graph.remove_all_edges()
    _save(plan, graph, out or path)
    typer.echo(f"OK: removed {count} dependencies")


@app.command("complete")
def complete(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    node: str = typer.Argument(..., help="Node id to mark completed"),
    force: bool = typer.Option(False, "--force", help="Complete even when sequence enforcement blocks it"),
    out: str | None = typer.Option(None, "--out", help="Write the updated plan here (default: in place)"),
) -> None:
    """Mark a node completed."""
    plan, graph = _load_graph(ctx, path, "text", "complete")
    current = _require_node(graph, plan, node)

    enforce = plan.get("sequence_enforcement") is True or ctx.obj["enforce_sequence"]
    if enforce and not force:
        waiting = _waiting_on(graph, current, ctx.obj["transitive_blocking"])
        if waiting:
            _fail(
                [
                    PlanValidationError(
                        code="E_NODE_BLOCKED",
                        message=f"{node} is waiting on: {', '.join(waiting)} (use --force to override)",
                        file=plan.get("__file__"),
                        path="sequence_enforcement",
                    )
                ],
                2,
            )

    graph.mark_completed(node)
    _save(plan, graph, out or path)
    typer.echo(f"OK: {node} marked completed")


@app.command("reopen")
def reopen(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    node: str = typer.Argument(..., help="Node id to mark incomplete"),
    out: str | None = typer.Option(None, "--out", help="Write the updated plan here (default: in place)"),
) -> None:
    """Mark a node incomplete."""
    plan, graph = _load_graph(ctx, path, "text", "reopen")
    _require_node(graph, plan, node)
    graph.mark_incomplete(node)
    _save(plan, graph, out or path)
    typer.echo(f"OK: {node} marked incomplete")


def _load_graph(
    ctx: typer.Context, path: str, format: str, command: str
) -> tuple[dict[str, Any], PlanGraph]:
    """Load + validate a plan and build its graph, exiting on failure.

    Shape errors are always fatal. Structural graph problems (cycles) are fatal
    only with strict_load; otherwise they are logged and the graph is restored as-is.
    """
    try:
        plan = load_plan(path)
    except PlanLoadError as e:
        if format == "json":
            _emit_json(command, False, errors=[e], exit_code=1)
        _fail([e], 1)

    graph, errors = validate_plan(plan)
    if graph is not None:
        return plan, graph

    strict = bool(ctx.obj and ctx.obj.get("strict_load"))
    fatal = errors if strict else [e for e in errors if not isinstance(e, GraphValidationError)]
    if fatal:
        if format == "json":
            _emit_json(command, False, errors=list(fatal), exit_code=2)
        _fail(list(fatal), 2)
    return plan, build_graph(plan)


def _waiting_on(graph: PlanGraph, node: PlanNode, transitive: bool) -> list[str]:
    if transitive:
        return [n.id for n in graph.get_incomplete_ancestors(node.id)]
    return [n.id for n in graph.get_prerequisites(node.id) if not n.is_completed]


def _require_node(graph: PlanGraph, plan: dict[str, Any], node_id: str) -> PlanNode:
    node = graph.get_node(node_id)
    if node is None:
        _fail(
            [
                PlanValidationError(
                    code="E_UNKNOWN_NODE",
                    message=f"unknown node: {node_id}",
                    file=plan.get("__file__"),
                    path="nodes",
                )
            ],
            2,
        )
    return node


def _located(e: PlanError, plan: dict[str, Any], path: str) -> PlanValidationError:
    return PlanValidationError(code=e.code, message=e.message, file=plan.get("__file__"), path=path)


def _save(plan: dict[str, Any], graph: PlanGraph, out: str) -> None:
    dump_plan(apply_graph(plan, graph), out)


def _check_format(format: str, command: str) -> None:
    if format not in FORMATS:
        _fail(
            [
                PlanValidationError(
                    code=f"E_{command.upper()}_UNKNOWN_FORMAT",
                    message=f"unknown format: {format} (choose one of: text, json)",
                    file=None,
                    path="format",
                )
            ],
            2,
        )


def _to_item(e: PlanError) -> dict[str, Any]:
    if isinstance(e, PlanLoadError):
        source = "load"
    elif e.code.startswith("L_"):
        source = "lint"
    elif isinstance(e, GraphValidationError):
        source = "graph"
    else:
        source = "validate"
    return {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "error",
        "source": source,
    }


def _emit_json(command: str, ok: bool, *, errors: list[PlanError], exit_code: int, **extra: Any) -> NoReturn:
    payload: dict[str, Any] = {
        "tool": "plan-dag",
        "command": command,
        "ok": ok,
        "error_count": len(errors),
        "errors": [_to_item(e) for e in _sorted(errors)],
    }
    payload.update(extra)
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    raise typer.Exit(code=exit_code)


def _fail(errors: list[PlanError], exit_code: int) -> NoReturn:
    _print_errors(errors)
    raise typer.Exit(code=exit_code)


def _sorted(errors: list[PlanError]) -> list[PlanError]:
    return sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))


def _print_errors(errors: list[PlanError]) -> None:
    for e in _sorted(errors):
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="plan-dag")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
