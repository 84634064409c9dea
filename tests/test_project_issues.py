"""Cache-first project item loading.

Converted to manual asyncio.run wrappers to avoid reliance on pytest-asyncio.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any

import pytest

from conftest import build_item
from issuegraph.github_client import GitHubAPIError
from issuegraph.position_store import MemoryPositionStore, PositionCache
from issuegraph.project_issues import ProjectIssuesLoader, ProjectIssuesSnapshot


class _Source:
    def __init__(self, items: list[dict[str, Any]] | Exception) -> None:
        self.items = items
        self.calls: list[str] = []

    def fetch_project_items(self, project_id: str) -> list[dict[str, Any]]:
        self.calls.append(project_id)
        if isinstance(self.items, Exception):
            raise self.items
        return list(self.items)


class _GatedSource(_Source):
    """Blocks each fetch until the test releases it."""

    def __init__(self, items: list[dict[str, Any]]) -> None:
        super().__init__(items)
        self.release = threading.Event()

    def fetch_project_items(self, project_id: str) -> list[dict[str, Any]]:
        self.release.wait(timeout=5)
        return super().fetch_project_items(project_id)


def test_cold_load_fetches_and_caches() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        source = _Source([build_item("o/r#1", sub_issues=("o/r#2",)), build_item("o/r#2")])
        seen: list[ProjectIssuesSnapshot] = []
        loader = ProjectIssuesLoader(source, PositionCache(store), on_change=seen.append)
        snapshot = await loader.load("PVT_1")
        assert [i.id for i in snapshot.issues] == ["o/r#1", "o/r#2"]
        assert len(snapshot.dependencies) == 1
        assert not snapshot.loading and not snapshot.revalidating
        assert snapshot.error is None
        assert any(s.loading for s in seen)
        assert store.get("PVT_1").items == source.items

    asyncio.run(_run())


def test_cached_items_publish_before_fetch_completes() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        store.put_items("PVT_1", [build_item("o/r#1")])
        source = _Source([build_item("o/r#1"), build_item("o/r#2")])
        seen: list[ProjectIssuesSnapshot] = []
        loader = ProjectIssuesLoader(source, PositionCache(store), on_change=seen.append)
        snapshot = await loader.load("PVT_1")

        cached_views = [s for s in seen if s.revalidating]
        assert cached_views
        assert [i.id for i in cached_views[0].issues] == ["o/r#1"]
        assert not any(s.loading for s in seen)
        assert [i.id for i in snapshot.issues] == ["o/r#1", "o/r#2"]
        assert len(store.get("PVT_1").items or []) == 2

    asyncio.run(_run())


def test_cached_empty_list_is_a_hit() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        store.put_items("PVT_1", [])
        seen: list[ProjectIssuesSnapshot] = []
        loader = ProjectIssuesLoader(_Source([]), PositionCache(store), on_change=seen.append)
        await loader.load("PVT_1")
        assert not any(s.loading for s in seen)

    asyncio.run(_run())


def test_fetch_failure_lands_on_snapshot() -> None:
    async def _run() -> None:
        error = GitHubAPIError("API rate limit exceeded", status=403, response_text="")
        loader = ProjectIssuesLoader(_Source(error), PositionCache(MemoryPositionStore()))
        snapshot = await loader.load("PVT_1")
        assert snapshot.error is not None
        assert snapshot.error.status == 403
        assert snapshot.error.category == "github.rate_limit"
        assert snapshot.error.transient
        assert snapshot.error.graph_id == "PVT_1"
        assert not snapshot.loading

    asyncio.run(_run())


def test_failed_revalidation_keeps_cached_issues() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        store.put_items("PVT_1", [build_item("o/r#1")])
        loader = ProjectIssuesLoader(_Source(OSError("connection reset")), PositionCache(store))
        snapshot = await loader.load("PVT_1")
        assert [i.id for i in snapshot.issues] == ["o/r#1"]
        assert snapshot.error is not None
        assert snapshot.error.category == "network"

    asyncio.run(_run())


def test_error_message_is_redacted() -> None:
    async def _run() -> None:
        token = "ghp_" + "a" * 36
        loader = ProjectIssuesLoader(
            _Source(RuntimeError(f"bad credentials {token}")), PositionCache(None)
        )
        snapshot = await loader.load("PVT_1")
        assert snapshot.error is not None
        assert token not in str(snapshot.error)
        assert "<redacted>" in str(snapshot.error)

    asyncio.run(_run())


def test_force_load_skips_cache_read() -> None:
    async def _run() -> None:
        store = MemoryPositionStore()
        store.put_items("PVT_1", [build_item("o/r#9")])
        source = _Source([build_item("o/r#1")])
        seen: list[ProjectIssuesSnapshot] = []
        loader = ProjectIssuesLoader(source, PositionCache(store), on_change=seen.append)
        snapshot = await loader.load("PVT_1", force=True)
        assert all("o/r#9" not in [i.id for i in s.issues] for s in seen)
        assert [i.id for i in snapshot.issues] == ["o/r#1"]

        snapshot = await loader.refetch()
        assert source.calls == ["PVT_1", "PVT_1"]

    asyncio.run(_run())


def test_refetch_before_load_raises() -> None:
    loader = ProjectIssuesLoader(_Source([]), PositionCache(None))
    with pytest.raises(ValueError):
        asyncio.run(loader.refetch())


def test_superseded_load_is_discarded() -> None:
    async def _run() -> None:
        slow = _GatedSource([build_item("o/r#1")])
        loader = ProjectIssuesLoader(slow, PositionCache(MemoryPositionStore()))
        first = asyncio.create_task(loader.load("PVT_old"))
        await asyncio.sleep(0.01)

        loader.source = _Source([build_item("o/r#2")])
        second = await loader.load("PVT_new")
        slow.release.set()
        await first

        assert loader.snapshot.graph_id == "PVT_new"
        assert [i.id for i in loader.snapshot.issues] == ["o/r#2"]
        assert [i.id for i in second.issues] == ["o/r#2"]

    asyncio.run(_run())


def test_cancel_discards_in_flight_result() -> None:
    async def _run() -> None:
        slow = _GatedSource([build_item("o/r#1")])
        loader = ProjectIssuesLoader(slow, PositionCache(None))
        task = asyncio.create_task(loader.load("PVT_1"))
        await asyncio.sleep(0.01)
        loader.cancel()
        slow.release.set()
        await task
        assert loader.snapshot.issues == []

    asyncio.run(_run())


def test_set_filters_rederives_from_raw_items() -> None:
    async def _run() -> None:
        items = [build_item("o/r#1"), build_item("o/r#2", state="CLOSED")]
        loader = ProjectIssuesLoader(_Source(items), PositionCache(None))
        await loader.load("PVT_1")
        assert len(loader.snapshot.issues) == 2
        snapshot = loader.set_filters(state="closed")
        assert [i.id for i in snapshot.issues] == ["o/r#2"]
        assert loader.source.calls == ["PVT_1"]  # type: ignore[attr-defined]

    asyncio.run(_run())
