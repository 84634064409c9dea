"""Per-graph orchestration: layout once, then keep nodes stable.

``GraphAssembly`` moves through ``UNINITIALIZED -> LAYING_OUT -> READY`` for
the active graph id. The first non-empty entity list triggers a full layout;
saved positions then override the computed coordinates node by node. Once
``READY`` the node set is reconciled incrementally (new nodes take a pending
position, a saved position, or the origin) and edges are re-derived on every
update, so a background refresh never disturbs a manual arrangement.

Every layout result is tagged with the ``(graph_id, generation)`` it was
started for and is dropped on arrival if that pair is no longer current.
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .debounce import DEFAULT_DELAY_MS, Debouncer
from .graph import (
    ancestor_ids,
    dependencies_to_edges,
    descendant_ids,
    issues_to_nodes,
    node_label,
    selection_targets,
)
from .layout import LayoutOptions, connector_sides, layout_nodes
from .logging import StructuredLogger, get_logger
from .models import ORIGIN, Dependency, Direction, Edge, Issue, LayoutNode, Position
from .optimistic import OptimisticDependencies, OptimisticMerge
from .pending import PendingPositions
from .position_store import PositionCache

Mutation = Callable[[], Awaitable[Any]]


class GraphState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LAYING_OUT = "laying_out"
    READY = "ready"


@dataclass
class GraphView:
    graph_id: str
    generation: int
    state: GraphState
    nodes: list[LayoutNode] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "graphId": self.graph_id,
            "state": self.state.value,
            "nodes": [
                {
                    "id": n.id,
                    "label": n.label,
                    "position": n.position.to_dict(),
                    "targetPosition": n.target_side,
                    "sourcePosition": n.source_side,
                    "state": n.issue.state if n.issue else None,
                    "url": n.issue.url if n.issue else None,
                }
                for n in self.nodes
            ],
            "edges": [
                {"id": e.id, "source": e.source, "target": e.target, "type": e.type.value}
                for e in self.edges
            ],
        }


class GraphAssembly:
    def __init__(
        self,
        graph_id: str,
        cache: PositionCache,
        *,
        direction: Direction | str = Direction.VERTICAL,
        options: LayoutOptions | None = None,
        save_delay: float = DEFAULT_DELAY_MS / 1000,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.graph_id = graph_id
        self.generation = 0
        self.state = GraphState.UNINITIALIZED
        self.cache = cache
        self.direction = Direction.coerce(direction)
        self.options = options or LayoutOptions()
        self.logger = logger or get_logger()
        self.pending = PendingPositions(graph_id, cache, logger=self.logger)
        self.entities: OptimisticMerge[Issue] = OptimisticMerge()
        self.dependency_ops = OptimisticDependencies()
        self._server_deps: list[Dependency] = []
        self._nodes: dict[str, LayoutNode] = {}
        self._saved: dict[str, Position] = {}
        self._saver = Debouncer(self._save_positions, save_delay)

    # ---- views ----------------------------------------------------------
    @property
    def nodes(self) -> list[LayoutNode]:
        return list(self._nodes.values())

    @property
    def positions(self) -> dict[str, Position]:
        return {nid: n.position for nid, n in self._nodes.items()}

    @property
    def dependencies(self) -> list[Dependency]:
        return self.dependency_ops.merge(self._server_deps)

    @property
    def edges(self) -> list[Edge]:
        """Render edges between entities currently known to the graph."""
        known = set(self.entities.ids())
        return [
            e
            for e in dependencies_to_edges(self.dependencies)
            if e.source in known and e.target in known
        ]

    def view(self) -> GraphView:
        return GraphView(self.graph_id, self.generation, self.state, self.nodes, self.edges)

    def _is_current(self, graph_id: str, generation: int) -> bool:
        return graph_id == self.graph_id and generation == self.generation

    # ---- data flow ------------------------------------------------------
    async def update(self, issues: Iterable[Issue], dependencies: Iterable[Dependency]) -> GraphView:
        """Feed a new authoritative snapshot."""
        self.entities.sync(issues)
        self._server_deps = list(dependencies)
        self.dependency_ops.sync(self._server_deps)
        await self._refresh()
        return self.view()

    async def _refresh(self) -> None:
        self.pending.observe(self.entities.ids())
        if self.state is GraphState.UNINITIALIZED:
            if self.entities.ids():
                await self._initial_layout()
        elif self.state is GraphState.READY:
            self._reconcile()
        # LAYING_OUT: the data is recorded and picked up once the layout lands

    async def _initial_layout(self) -> None:
        graph_id, generation = self.graph_id, self.generation
        self.state = GraphState.LAYING_OUT
        nodes = issues_to_nodes(self.entities.all_entities)
        self.logger.log_graph_event("layout_start", graph_id, generation, node_count=len(nodes))
        try:
            laid_out = await layout_nodes(nodes, self.edges, self.direction, self.options)
        except Exception as exc:
            if not self._is_current(graph_id, generation):
                self.logger.log_graph_event(
                    "stale_layout_discarded", graph_id, generation, error=str(exc)
                )
                return
            self.state = GraphState.UNINITIALIZED
            self.logger.log_error(
                "layout failed", error=str(exc), graph_id=graph_id, generation=generation
            )
            raise
        if not self._is_current(graph_id, generation):
            self.logger.log_graph_event("stale_layout_discarded", graph_id, generation)
            return
        saved = await self.cache.get_node_positions(graph_id) or {}
        if not self._is_current(graph_id, generation):
            self.logger.log_graph_event("stale_layout_discarded", graph_id, generation)
            return
        self._saved = saved
        restored: dict[str, LayoutNode] = {}
        for node in laid_out:
            pos = self.pending.positions.get(node.id) or saved.get(node.id)
            restored[node.id] = node.with_position(pos) if pos is not None else node
        self._nodes = restored
        self.state = GraphState.READY
        self.logger.log_graph_event(
            "ready", graph_id, generation, node_count=len(restored), restored=len(saved)
        )
        self._reconcile()

    def _reconcile(self) -> None:
        merged = self.entities.all_entities
        multi_repo = len({(i.owner, i.repo) for i in merged}) > 1
        target_side, source_side = connector_sides(self.direction)
        nodes: dict[str, LayoutNode] = {}
        for issue in merged:
            existing = self._nodes.get(issue.id)
            if existing is not None:
                position = existing.position
            else:
                position = self.pending.positions.get(issue.id) or self._saved.get(issue.id) or ORIGIN
            nodes[issue.id] = LayoutNode(
                id=issue.id,
                position=position,
                label=node_label(issue, multi_repo),
                issue=issue,
                target_side=target_side,
                source_side=source_side,
            )
        self._nodes = nodes

    # ---- graph lifecycle ------------------------------------------------
    async def switch_graph(self, graph_id: str) -> None:
        """Make ``graph_id`` active; in-flight work for the old one goes stale."""
        await self._saver.flush()
        await self.pending.drain()
        previous = self.graph_id
        self.generation += 1
        self.graph_id = graph_id
        self.state = GraphState.UNINITIALIZED
        self._nodes = {}
        self._saved = {}
        self._server_deps = []
        self.entities = OptimisticMerge()
        self.dependency_ops.clear()
        self.pending.reset(graph_id)
        self.logger.log_graph_event("switched", graph_id, self.generation, previous=previous)

    async def close(self) -> None:
        await self._saver.flush()
        await self.pending.close()
        self.generation += 1
        self.state = GraphState.UNINITIALIZED
        self._nodes = {}

    # ---- user actions ---------------------------------------------------
    def move_node(self, identity: str, position: Position) -> bool:
        """Move a laid-out node and schedule a debounced save.

        Must be called with a running event loop; raises ``RuntimeError``
        otherwise, before anything is changed.
        """
        asyncio.get_running_loop()
        node = self._nodes.get(identity)
        if node is None:
            return False
        self._nodes[identity] = node.with_position(position)
        self._saver.schedule()
        return True

    async def flush_positions(self) -> None:
        await self._saver.flush()

    async def _save_positions(self) -> None:
        graph_id = self.graph_id
        positions = {**self._saved, **self.positions}
        await self.cache.set_node_positions(graph_id, positions)
        if graph_id == self.graph_id:
            self._saved = positions

    async def add_optimistic(self, issue: Issue, position: Position | None = None) -> bool:
        if not self.entities.add(issue):
            return False
        if position is not None:
            self.pending.assign(issue.id, position)
        await self._refresh()
        return True

    def update_optimistic(self, issue: Issue) -> None:
        self.entities.update(issue)
        if self.state is GraphState.READY:
            self._reconcile()

    def reserve_position(self, position: Position) -> None:
        self.pending.reserve(position)

    def clear_reserved_position(self) -> None:
        self.pending.clear_reserved()

    async def add_dependency(self, dep: Dependency, mutate: Mutation | None = None) -> None:
        """Show ``dep`` immediately; undo it if ``mutate`` fails."""
        self.dependency_ops.add(dep)
        if mutate is None:
            return
        try:
            await mutate()
        except Exception:
            self.dependency_ops.remove(dep)
            raise

    async def remove_dependency(self, dep: Dependency, mutate: Mutation | None = None) -> None:
        self.dependency_ops.remove(dep)
        if mutate is None:
            return
        try:
            await mutate()
        except Exception:
            self.dependency_ops.add(dep)
            raise

    def descendants(self, identity: str) -> set[str]:
        return descendant_ids(identity, self.edges)

    def ancestors(self, identity: str) -> set[str]:
        return ancestor_ids(identity, self.edges)

    async def layout_selected(
        self, anchor_id: str, selected_ids: Sequence[str] | None = None
    ) -> dict[str, Position]:
        """Re-layout a subset of nodes in place, keeping its top-left corner."""
        edges = self.edges
        targets = selection_targets(anchor_id, selected_ids, edges)
        group = [n for n in self._nodes.values() if n.id in targets]
        if len(group) < 2:
            return {}
        graph_id, generation = self.graph_id, self.generation
        origin_x = min(n.position.x for n in group)
        origin_y = min(n.position.y for n in group)
        sub_edges = [e for e in edges if e.source in targets and e.target in targets]
        laid_out = await layout_nodes(group, sub_edges, self.direction, self.options)
        if not self._is_current(graph_id, generation):
            self.logger.log_graph_event("stale_layout_discarded", graph_id, generation)
            return {}
        moved: dict[str, Position] = {}
        for node in laid_out:
            current = self._nodes.get(node.id)
            if current is None:
                continue
            pos = Position(node.position.x + origin_x, node.position.y + origin_y)
            self._nodes[node.id] = current.with_position(pos)
            moved[node.id] = pos
        if moved:
            self._saver.schedule()
        return moved


__all__ = ["GraphAssembly", "GraphState", "GraphView", "Mutation"]
