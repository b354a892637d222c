from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from backbone_engine.errors import InvariantViolation


GRAPH: dict[str, tuple[str, ...]] = {
    "runway": (),
    "metrics": (),
    "trajectory": (),
    "health": ("runway", "trajectory", "metrics"),
    "issues": ("runway", "trajectory"),
    "preissues": ("runway", "trajectory", "metrics"),
    "ripple": ("issues",),
    "opportunities": ("trajectory",),
    "introductions": ("trajectory",),
    "action_candidates": ("issues", "preissues", "trajectory", "opportunities", "introductions"),
    "action_impact": ("action_candidates", "issues", "preissues", "ripple"),
    "action_ranker": ("action_impact",),
    "priority": ("action_ranker",),
}

# Nodes whose output is reported directly rather than consumed by another node.
TERMINAL_NODE_WHITELIST = frozenset({"priority", "health"})


def topo_sort(graph: Mapping[str, tuple[str, ...]] = GRAPH) -> list[str]:
    order: list[str] = []
    state: dict[str, int] = {}

    def visit(node: str, trail: tuple[str, ...]) -> None:
        mark = state.get(node, 0)
        if mark == 2:
            return
        if mark == 1:
            raise InvariantViolation("dag", node, "cycle via " + " -> ".join(trail + (node,)))
        state[node] = 1
        for dep in sorted(graph[node]):
            if dep not in graph:
                raise InvariantViolation("dag", node, f"unknown dependency {dep!r}")
            visit(dep, trail + (node,))
        state[node] = 2
        order.append(node)

    for node in sorted(graph):
        visit(node, ())
    return order


def depends_on(node: str, dependency: str, graph: Mapping[str, tuple[str, ...]] = GRAPH) -> bool:
    stack = list(graph.get(node, ()))
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current == dependency:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(graph.get(current, ()))
    return False


def find_dead_ends(
    graph: Mapping[str, tuple[str, ...]] = GRAPH, terminals: frozenset[str] = TERMINAL_NODE_WHITELIST
) -> list[str]:
    consumed = {dep for deps in graph.values() for dep in deps}
    return sorted(node for node in graph if node not in consumed and node not in terminals)


def validate_graph(graph: Mapping[str, tuple[str, ...]] = GRAPH) -> dict[str, Any]:
    errors: list[str] = []
    order: list[str] = []
    try:
        order = topo_sort(graph)
    except InvariantViolation as exc:
        errors.append(str(exc))
    dead_ends = find_dead_ends(graph)
    errors.extend(f"dead end node {node!r}" for node in dead_ends)
    for node in TERMINAL_NODE_WHITELIST:
        if node not in graph:
            errors.append(f"terminal node {node!r} missing from graph")
    return {"valid": not errors, "errors": errors, "order": order, "dead_ends": dead_ends}
