"""Cache-first, cancellable loading of Projects v2 items."""
from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from .errors import FetchError, classify_error, redact
from .logging import StructuredLogger, get_logger
from .models import Dependency, Issue
from .parser import StateFilter, derive_issues
from .position_store import PositionCache


class ItemSource(Protocol):
    def fetch_project_items(self, project_id: str) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class ProjectIssuesSnapshot:
    graph_id: str
    issues: list[Issue] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)
    raw_items: list[dict[str, Any]] = field(default_factory=list)
    loading: bool = False
    revalidating: bool = False
    error: FetchError | None = None


class ProjectIssuesLoader:
    """Publish cached items immediately, then replace them with a full fetch.

    Each :meth:`load` takes a new generation number; a load that finds its
    generation superseded when it resumes stops before touching any state.
    Fetch failures land on ``snapshot.error`` and are not retried.
    """

    def __init__(
        self,
        source: ItemSource,
        cache: PositionCache,
        *,
        state: StateFilter = "all",
        field_filters: Mapping[str, str] | None = None,
        on_change: Callable[[ProjectIssuesSnapshot], None] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.source = source
        self.cache = cache
        self.state: StateFilter = state
        self.field_filters: dict[str, str] = dict(field_filters or {})
        self.on_change = on_change
        self.logger = logger or get_logger()
        self.graph_id: str | None = None
        self._generation = 0
        self.snapshot = ProjectIssuesSnapshot(graph_id="")

    @property
    def generation(self) -> int:
        return self._generation

    def _derive(self, raw_items: list[dict[str, Any]]) -> tuple[list[Issue], list[Dependency]]:
        return derive_issues(raw_items, state=self.state, field_filters=self.field_filters)

    def _publish(self, **changes: Any) -> ProjectIssuesSnapshot:
        if "raw_items" in changes:
            changes["issues"], changes["dependencies"] = self._derive(changes["raw_items"])
        self.snapshot = replace(self.snapshot, **changes)
        if self.on_change is not None:
            self.on_change(self.snapshot)
        return self.snapshot

    def set_filters(
        self, *, state: StateFilter | None = None, field_filters: Mapping[str, str] | None = None
    ) -> ProjectIssuesSnapshot:
        """Re-derive issues from the raw items already loaded."""
        if state is not None:
            self.state = state
        if field_filters is not None:
            self.field_filters = dict(field_filters)
        return self._publish(raw_items=self.snapshot.raw_items)

    def cancel(self) -> None:
        self._generation += 1

    async def load(self, graph_id: str, *, force: bool = False) -> ProjectIssuesSnapshot:
        self._generation += 1
        generation = self._generation

        def stale() -> bool:
            return generation != self._generation

        if graph_id != self.graph_id:
            self.graph_id = graph_id
            self._publish(graph_id=graph_id, raw_items=[], loading=False, revalidating=False, error=None)
        else:
            self._publish(error=None)

        if force:
            # data is already on screen; revalidate instead of blanking it
            self._publish(revalidating=True)
        else:
            cached = await self.cache.get_cached_items(graph_id)
            if stale():
                return self.snapshot
            if cached is not None:
                self._publish(raw_items=cached, revalidating=True)
            else:
                self._publish(loading=True)

        loop = asyncio.get_running_loop()
        try:
            with self.logger.timed_operation("fetch_project_items", graph_id=graph_id):
                items = await loop.run_in_executor(None, self.source.fetch_project_items, graph_id)
        except Exception as exc:
            if stale():
                return self.snapshot
            info = classify_error(exc)
            error = FetchError(
                redact(str(exc)) or info.original_type,
                graph_id=graph_id,
                status=getattr(exc, "status", None),
                category=info.category,
                transient=info.transient,
            )
            return self._publish(error=error, loading=False, revalidating=False)
        if stale():
            self.logger.log_graph_event("stale_fetch_discarded", graph_id, generation)
            return self.snapshot

        self._publish(raw_items=items)
        await self.cache.set_cached_items(graph_id, items)
        if stale():
            return self.snapshot
        return self._publish(loading=False, revalidating=False)

    async def refetch(self) -> ProjectIssuesSnapshot:
        if self.graph_id is None:
            raise ValueError("refetch() called before load()")
        return await self.load(self.graph_id, force=True)


__all__ = ["ItemSource", "ProjectIssuesLoader", "ProjectIssuesSnapshot"]
