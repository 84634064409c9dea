"""Layered (Sugiyama) layout of issue graphs.

The heavy lifting is delegated to ``grandalf``'s ``SugiyamaLayout``, treated
as a black box. This module only:

* drops edges whose endpoints are not in the node set (grandalf raises on
  dangling vertices), self loops and repeated endpoint pairs;
* lays out every connected component on its own and packs the components
  side by side along the cross axis, in order of first appearance;
* maps grandalf's centre coordinates onto top-left node positions for the
  requested direction;
* runs the synchronous computation in an executor.
"""
from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from grandalf.graphs import Edge as GEdge
from grandalf.graphs import Vertex, graph_core
from grandalf.layouts import SugiyamaLayout

from .errors import IssueGraphError
from .logging import get_logger
from .models import Direction, LayoutNode, Position

NODE_WIDTH = 220.0
NODE_HEIGHT = 40.0
NODE_SPACING = 30.0
LAYER_SPACING = 320.0


class _Linked(Protocol):
    @property
    def source(self) -> str: ...

    @property
    def target(self) -> str: ...


@dataclass(frozen=True)
class LayoutOptions:
    node_width: float = NODE_WIDTH
    node_height: float = NODE_HEIGHT
    node_spacing: float = NODE_SPACING
    layer_spacing: float = LAYER_SPACING


class _VertexView:
    """View object grandalf reads sizes from and writes centres into."""

    def __init__(self, w: float, h: float) -> None:
        self.w = w
        self.h = h
        self.xy = (0.0, 0.0)


def connector_sides(direction: Direction) -> tuple[str, str]:
    """Return ``(target_side, source_side)`` for ``direction``."""
    if direction is Direction.HORIZONTAL:
        return 'left', 'right'
    return 'top', 'bottom'


def filter_edges(node_ids: Iterable[str], edges: Iterable[_Linked]) -> list[tuple[str, str]]:
    """Endpoint pairs safe to hand to the layout algorithm, in input order."""
    known = set(node_ids)
    pairs: list[tuple[str, str]] = []
    seen: set[tuple[str, str]] = set()
    for edge in edges:
        pair = (edge.source, edge.target)
        if pair[0] == pair[1] or pair[0] not in known or pair[1] not in known:
            continue
        if pair in seen:
            continue
        seen.add(pair)
        pairs.append(pair)
    return pairs


def _component_centres(core: Any, options: LayoutOptions, horizontal: bool) -> dict[str, tuple[float, float]]:
    """Run Sugiyama on one connected component; return screen-space centres."""
    sug = SugiyamaLayout(core)
    sug.xspace = options.node_spacing
    sug.yspace = options.layer_spacing
    roots = [v for v in core.sV if len(v.e_in()) == 0] or [next(iter(core.sV))]
    sug.init_all(roots=roots)
    sug.draw()
    centres: dict[str, tuple[float, float]] = {}
    for v in core.sV:
        gx, gy = v.view.xy
        # grandalf ranks along its y axis; horizontal layouts swap axes
        centres[v.data] = (gy, gx) if horizontal else (gx, gy)
    return centres


def connected_components(
    node_ids: Sequence[str], pairs: Sequence[tuple[str, str]]
) -> list[tuple[list[str], list[tuple[str, str]]]]:
    """Split into ``(members, pairs)`` groups, both kept in input order.

    Groups are ordered by the first appearance of any member in ``node_ids``.
    """
    parent: dict[str, str] = {nid: nid for nid in node_ids}

    def find(nid: str) -> str:
        while parent[nid] != nid:
            parent[nid] = parent[parent[nid]]
            nid = parent[nid]
        return nid

    for s, t in pairs:
        rs, rt = find(s), find(t)
        if rs != rt:
            parent[rt] = rs

    groups: dict[str, tuple[list[str], list[tuple[str, str]]]] = {}
    for nid in dict.fromkeys(node_ids):
        groups.setdefault(find(nid), ([], []))[0].append(nid)
    for pair in pairs:
        groups[find(pair[0])][1].append(pair)
    return list(groups.values())


def compute_layout(
    node_ids: Sequence[str],
    pairs: Sequence[tuple[str, str]],
    direction: Direction = Direction.VERTICAL,
    options: LayoutOptions | None = None,
) -> dict[str, Position]:
    """Synchronous core: node ids + clean edge pairs -> top-left positions.

    Each component is handed to grandalf as a ``graph_core`` built from
    ordered lists, so vertex and edge order (and therefore the result)
    depend only on the input order.
    """
    opts = options or LayoutOptions()
    horizontal = direction is Direction.HORIZONTAL

    half_w, half_h = opts.node_width / 2, opts.node_height / 2
    positions: dict[str, Position] = {}
    cross_offset = 0.0
    for members, member_pairs in connected_components(node_ids, pairs):
        if len(members) == 1:
            centres = {members[0]: (half_w, half_h)}
        else:
            vertices: dict[str, Vertex] = {}
            for nid in members:
                v = Vertex(nid)
                # the view is sized in grandalf's frame, where layers advance along y
                v.view = _VertexView(
                    opts.node_height if horizontal else opts.node_width,
                    opts.node_width if horizontal else opts.node_height,
                )
                vertices[nid] = v
            g_edges = [GEdge(vertices[s], vertices[t]) for s, t in member_pairs]
            core = graph_core(list(vertices.values()), g_edges)
            centres = _component_centres(core, opts, horizontal)
        tops = {nid: (cx - half_w, cy - half_h) for nid, (cx, cy) in centres.items()}
        min_x = min(x for x, _ in tops.values())
        min_y = min(y for _, y in tops.values())
        if horizontal:
            for nid, (x, y) in tops.items():
                positions[nid] = Position(x - min_x, y - min_y + cross_offset)
            extent = max(y for _, y in tops.values()) - min_y + opts.node_height
        else:
            for nid, (x, y) in tops.items():
                positions[nid] = Position(x - min_x + cross_offset, y - min_y)
            extent = max(x for x, _ in tops.values()) - min_x + opts.node_width
        cross_offset += extent + opts.node_spacing

    for nid, pos in positions.items():
        if not (math.isfinite(pos.x) and math.isfinite(pos.y)):
            raise IssueGraphError(f'layout produced a non-finite position for {nid}')
    return positions


async def layout_nodes(
    nodes: Sequence[LayoutNode],
    edges: Iterable[_Linked],
    direction: Direction | str = Direction.VERTICAL,
    options: LayoutOptions | None = None,
) -> list[LayoutNode]:
    """Return positioned copies of ``nodes``; the inputs are left untouched."""
    if not nodes:
        return []
    resolved = Direction.coerce(direction)
    node_ids = [n.id for n in nodes]
    pairs = filter_edges(node_ids, edges)
    loop = asyncio.get_running_loop()
    start = time.perf_counter()
    positions = await loop.run_in_executor(None, compute_layout, node_ids, pairs, resolved, options)
    get_logger().log_performance(
        'layout',
        (time.perf_counter() - start) * 1000,
        node_count=len(node_ids),
        edge_count=len(pairs),
        direction=resolved.value,
    )
    target_side, source_side = connector_sides(resolved)
    return [
        LayoutNode(
            id=n.id,
            position=positions[n.id],
            label=n.label,
            issue=n.issue,
            target_side=target_side,
            source_side=source_side,
        )
        for n in nodes
    ]


__all__ = [
    'LAYER_SPACING',
    'NODE_HEIGHT',
    'NODE_SPACING',
    'NODE_WIDTH',
    'LayoutOptions',
    'compute_layout',
    'connected_components',
    'connector_sides',
    'filter_edges',
    'layout_nodes',
]
