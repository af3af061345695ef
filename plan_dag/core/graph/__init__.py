"""Dependency graph engine.

PlanGraph keeps nodes and prerequisite edges acyclic and answers ordering,
blocking and progress questions over them. It performs no I/O; plan files are
converted to and from graphs by plan_dag.core.adapter.
"""
