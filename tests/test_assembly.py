"""Graph assembly state machine.

Converted to manual asyncio.run wrappers to avoid reliance on pytest-asyncio.
"""

from __future__ import annotations

import asyncio

import pytest

import issuegraph.assembly as assembly_mod
from issuegraph.assembly import GraphAssembly, GraphState
from issuegraph.models import ORIGIN, Dependency, DependencyType, Issue, Position
from issuegraph.position_store import MemoryPositionStore, PositionCache


def _issue(number: int, repo: str = "r", title: str | None = None) -> Issue:
    return Issue(
        id=f"o/{repo}#{number}",
        number=number,
        owner="o",
        repo=repo,
        title=title or f"Issue {number}",
        state="open",
    )


def _sub(parent: int, child: int) -> Dependency:
    return Dependency(f"o/r#{parent}", f"o/r#{child}", DependencyType.SUB_ISSUE)


def _assembly(store: MemoryPositionStore | None = None, **kw) -> GraphAssembly:
    return GraphAssembly("PVT_1", PositionCache(store or MemoryPositionStore()), **kw)


def test_first_non_empty_update_lays_out_and_becomes_ready() -> None:
    async def _run() -> None:
        graph = _assembly()
        view = await graph.update([], [])
        assert view.state is GraphState.UNINITIALIZED
        assert view.nodes == []

        view = await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        assert view.state is GraphState.READY
        pos = {n.id: n.position for n in view.nodes}
        assert pos["o/r#1"].y < pos["o/r#2"].y
        assert [e.id for e in view.edges] == ["e:sub_issue:o/r#1-o/r#2"]
        assert view.nodes[0].label == "#1 Issue 1"
        assert view.nodes[0].target_side == "top"

    asyncio.run(_run())


def test_saved_positions_override_computed_ones() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        store.put_positions("PVT_1", {"o/r#1": Position(500, 600)})
        graph = _assembly(store)
        view = await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        pos = {n.id: n.position for n in view.nodes}
        assert pos["o/r#1"] == Position(500, 600)
        assert pos["o/r#2"] != Position(500, 600)

    asyncio.run(_run())


def test_ready_updates_keep_existing_positions() -> None:
    async def _run() -> None:
        graph = _assembly(save_delay=60)
        await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        assert graph.move_node("o/r#1", Position(999, 999))

        view = await graph.update([_issue(1), _issue(2), _issue(3)], [_sub(1, 2), _sub(1, 3)])
        pos = {n.id: n.position for n in view.nodes}
        assert pos["o/r#1"] == Position(999, 999)
        assert pos["o/r#3"] == ORIGIN
        assert len(view.edges) == 2

        view = await graph.update([_issue(1)], [])
        assert [n.id for n in view.nodes] == ["o/r#1"]
        assert view.edges == []
        await graph.close()

    asyncio.run(_run())


def test_new_node_prefers_pending_then_saved_position() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        store.put_positions("PVT_1", {"o/r#3": Position(30, 30)})
        graph = _assembly(store)
        await graph.update([_issue(1)], [])

        graph.reserve_position(Position(50, 60))
        view = await graph.update([_issue(1), _issue(2)], [])
        assert {n.id: n.position for n in view.nodes}["o/r#2"] == Position(50, 60)

        view = await graph.update([_issue(1), _issue(2), _issue(3)], [])
        assert {n.id: n.position for n in view.nodes}["o/r#3"] == Position(30, 30)
        await graph.close()

    asyncio.run(_run())


def test_multi_repo_labels_include_repository() -> None:
    async def _run() -> None:
        graph = _assembly()
        view = await graph.update([_issue(1), _issue(2, repo="web")], [])
        labels = {n.id: n.label for n in view.nodes}
        assert labels == {"o/r#1": "r#1 Issue 1", "o/web#2": "web#2 Issue 2"}

    asyncio.run(_run())


def test_edges_to_unknown_entities_are_hidden() -> None:
    async def _run() -> None:
        graph = _assembly()
        view = await graph.update([_issue(1)], [_sub(1, 42)])
        assert view.edges == []
        assert graph.dependencies == [_sub(1, 42)]

    asyncio.run(_run())


def test_stale_layout_is_discarded_after_switch() -> None:
    async def _run() -> None:
        graph = _assembly()
        task = asyncio.create_task(graph.update([_issue(1), _issue(2)], [_sub(1, 2)]))
        await asyncio.sleep(0)
        assert graph.state is GraphState.LAYING_OUT

        await graph.switch_graph("PVT_2")
        await task
        assert graph.graph_id == "PVT_2"
        assert graph.generation == 1
        assert graph.state is GraphState.UNINITIALIZED
        assert graph.nodes == []

        view = await graph.update([_issue(7)], [])
        assert view.state is GraphState.READY
        assert view.graph_id == "PVT_2"

    asyncio.run(_run())


def test_layout_failure_resets_state_and_propagates(monkeypatch) -> None:
    async def _broken_layout(*args, **kwargs):
        raise RuntimeError("layout exploded")

    monkeypatch.setattr(assembly_mod, "layout_nodes", _broken_layout)

    async def _run() -> None:
        graph = _assembly()
        with pytest.raises(RuntimeError, match="layout exploded"):
            await graph.update([_issue(1)], [])
        assert graph.state is GraphState.UNINITIALIZED

    asyncio.run(_run())


def test_stale_layout_failure_is_discarded(monkeypatch) -> None:
    async def _run() -> None:
        release = asyncio.Event()

        async def _slow_broken_layout(*args, **kwargs):
            await release.wait()
            raise RuntimeError("layout exploded")

        monkeypatch.setattr(assembly_mod, "layout_nodes", _slow_broken_layout)
        graph = _assembly()
        task = asyncio.create_task(graph.update([_issue(1)], []))
        await asyncio.sleep(0)
        assert graph.state is GraphState.LAYING_OUT
        await graph.switch_graph("PVT_2")
        release.set()
        view = await task
        assert view.graph_id == "PVT_2"
        assert graph.graph_id == "PVT_2"
        assert graph.state is GraphState.UNINITIALIZED

    asyncio.run(_run())


def test_move_node_saves_after_debounce() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        graph = _assembly(store, save_delay=0.01)
        await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        assert graph.move_node("o/r#2", Position(10, 10))
        assert graph.move_node("o/r#2", Position(20, 20))
        assert not graph.move_node("o/r#404", Position(0, 0))
        await asyncio.sleep(0.05)
        await graph.flush_positions()
        saved = store.get("PVT_1").node_positions
        assert saved["o/r#2"] == Position(20, 20)
        assert set(saved) == {"o/r#1", "o/r#2"}

    asyncio.run(_run())


def test_move_node_without_running_loop_changes_nothing() -> None:
    async def _build() -> GraphAssembly:
        graph = _assembly()
        await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        return graph

    graph = asyncio.run(_build())
    before = graph.positions
    with pytest.raises(RuntimeError):
        graph.move_node("o/r#2", Position(10, 10))
    assert graph.positions == before


def test_duplicate_optimistic_add_keeps_existing_position() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        graph = _assembly(store)
        await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        before = graph.positions["o/r#1"]

        assert not await graph.add_optimistic(_issue(1), Position(999, 999))
        await graph.pending.drain()
        assert "o/r#1" not in graph.pending.positions
        assert store.get("PVT_1").node_positions.get("o/r#1") != Position(999, 999)
        assert graph.positions["o/r#1"] == before

    asyncio.run(_run())


def test_switch_graph_flushes_pending_save_to_old_graph() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        graph = _assembly(store, save_delay=60)
        await graph.update([_issue(1)], [])
        graph.move_node("o/r#1", Position(5, 5))
        await graph.switch_graph("PVT_2")
        assert store.get("PVT_1").node_positions == {"o/r#1": Position(5, 5)}
        assert store.get("PVT_2").node_positions == {}

    asyncio.run(_run())


def test_optimistic_issue_shows_once_and_is_confirmed() -> None:
    async def _run() -> None:
        graph = _assembly()
        await graph.update([_issue(1)], [])
        assert await graph.add_optimistic(_issue(2), Position(70, 80))
        assert not await graph.add_optimistic(_issue(2))
        view = graph.view()
        assert [n.id for n in view.nodes] == ["o/r#1", "o/r#2"]
        assert {n.id: n.position for n in view.nodes}["o/r#2"] == Position(70, 80)

        view = await graph.update([_issue(1), _issue(2, title="From server")], [])
        assert [n.id for n in view.nodes] == ["o/r#1", "o/r#2"]
        assert view.nodes[1].label == "#2 From server"
        assert graph.entities.pending == []
        await graph.close()

    asyncio.run(_run())


def test_update_optimistic_relabels_node() -> None:
    async def _run() -> None:
        graph = _assembly()
        await graph.update([_issue(1)], [])
        graph.update_optimistic(_issue(1, title="Renamed"))
        assert graph.nodes[0].label == "#1 Renamed"

    asyncio.run(_run())


def test_failed_dependency_mutation_rolls_back() -> None:
    async def _fail() -> None:
        raise RuntimeError("mutation rejected")

    async def _ok() -> None:
        return None

    async def _run() -> None:
        graph = _assembly()
        await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        dep = Dependency("o/r#2", "o/r#1", DependencyType.BLOCKED_BY)

        with pytest.raises(RuntimeError):
            await graph.add_dependency(dep, _fail)
        assert dep not in graph.dependencies

        await graph.add_dependency(dep, _ok)
        assert dep in graph.dependencies
        assert len(graph.edges) == 2

        with pytest.raises(RuntimeError):
            await graph.remove_dependency(_sub(1, 2), _fail)
        assert _sub(1, 2) in graph.dependencies

        await graph.remove_dependency(_sub(1, 2))
        assert _sub(1, 2) not in graph.dependencies

    asyncio.run(_run())


def test_descendants_and_ancestors_follow_both_edge_types() -> None:
    async def _run() -> None:
        graph = _assembly()
        deps = [_sub(1, 2), Dependency("o/r#2", "o/r#3", DependencyType.BLOCKED_BY)]
        await graph.update([_issue(1), _issue(2), _issue(3)], deps)
        assert graph.descendants("o/r#1") == {"o/r#2", "o/r#3"}
        assert graph.ancestors("o/r#3") == {"o/r#1", "o/r#2"}

    asyncio.run(_run())


def test_layout_selected_keeps_group_origin() -> None:
    async def _run() -> None:
        graph = _assembly(save_delay=60)
        await graph.update([_issue(1), _issue(2), _issue(3), _issue(4)], [_sub(1, 2), _sub(2, 3)])
        graph.move_node("o/r#1", Position(1000, 2000))
        graph.move_node("o/r#2", Position(1500, 1800))
        graph.move_node("o/r#3", Position(900, 2500))
        untouched = graph.positions["o/r#4"]

        moved = await graph.layout_selected("o/r#1")
        assert set(moved) == {"o/r#1", "o/r#2", "o/r#3"}
        assert min(p.x for p in moved.values()) == 900
        assert min(p.y for p in moved.values()) == 1800
        assert moved["o/r#1"].y < moved["o/r#2"].y < moved["o/r#3"].y
        assert graph.positions["o/r#4"] == untouched
        await graph.close()

    asyncio.run(_run())


def test_layout_selected_uses_selection_containing_anchor() -> None:
    async def _run() -> None:
        graph = _assembly(save_delay=60)
        await graph.update([_issue(1), _issue(2), _issue(3)], [_sub(1, 2), _sub(2, 3)])
        moved = await graph.layout_selected("o/r#2", ["o/r#2", "o/r#3"])
        assert set(moved) == {"o/r#2", "o/r#3"}
        assert await graph.layout_selected("o/r#3") == {}
        await graph.close()

    asyncio.run(_run())


def test_view_serialises_for_renderers() -> None:
    async def _run() -> None:
        graph = _assembly()
        view = await graph.update([_issue(1), _issue(2)], [_sub(1, 2)])
        doc = view.to_dict()
        assert doc["graphId"] == "PVT_1"
        assert doc["state"] == "ready"
        assert doc["nodes"][0]["targetPosition"] == "top"
        assert doc["nodes"][0]["state"] == "open"
        assert doc["edges"] == [
            {"id": "e:sub_issue:o/r#1-o/r#2", "source": "o/r#1", "target": "o/r#2", "type": "sub_issue"}
        ]

    asyncio.run(_run())
