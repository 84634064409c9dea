"""Issue/dependency -> render node/edge conversion and traversal helpers."""
from __future__ import annotations

from collections.abc import Iterable, Sequence

from .models import Dependency, Edge, Issue, LayoutNode


def node_label(issue: Issue, multi_repo: bool) -> str:
    if multi_repo:
        return f"{issue.repo}#{issue.number} {issue.title}"
    return f"#{issue.number} {issue.title}"


def issues_to_nodes(issues: Sequence[Issue]) -> list[LayoutNode]:
    """Placeholder nodes at the origin; repo names show up once repos are mixed."""
    multi_repo = len({(i.owner, i.repo) for i in issues}) > 1
    return [LayoutNode(id=i.id, label=node_label(i, multi_repo), issue=i) for i in issues]


def dependencies_to_edges(dependencies: Iterable[Dependency]) -> list[Edge]:
    return [
        Edge(
            id=f"e:{dep.type.value}:{dep.source}-{dep.target}",
            source=dep.source,
            target=dep.target,
            type=dep.type,
        )
        for dep in dependencies
    ]


def _walk(start: str, edges: Sequence[Edge], forward: bool) -> set[str]:
    result: set[str] = set()
    stack = [start]
    while stack:
        current = stack.pop()
        for edge in edges:
            here, there = (edge.source, edge.target) if forward else (edge.target, edge.source)
            if here == current and there not in result:
                result.add(there)
                stack.append(there)
    return result


def descendant_ids(node_id: str, edges: Sequence[Edge]) -> set[str]:
    """Everything reachable along outgoing edges of either type."""
    return _walk(node_id, edges, forward=True)


def ancestor_ids(node_id: str, edges: Sequence[Edge]) -> set[str]:
    return _walk(node_id, edges, forward=False)


def selection_targets(anchor_id: str, selected_ids: Iterable[str] | None, edges: Sequence[Edge]) -> set[str]:
    """Nodes a "layout selected" action applies to.

    A selection of two or more nodes that includes the anchor wins;
    otherwise the anchor and its descendants.
    """
    selected = set(selected_ids or ())
    if len(selected) >= 2 and anchor_id in selected:
        return selected
    return descendant_ids(anchor_id, edges) | {anchor_id}


__all__ = [
    "ancestor_ids",
    "dependencies_to_edges",
    "descendant_ids",
    "issues_to_nodes",
    "node_label",
    "selection_targets",
]
