"""Reservation and assignment of positions for nodes that do not exist yet.

Two paths put a freshly created or freshly added issue where the user asked
for it:

1. ``reserve(pos)`` then :meth:`PendingPositions.observe`: the next identity
   that shows up in the observed list takes the reserved point (search flow,
   where the id is only known once the server answers);
2. ``assign(identity, pos)``: the id is already known (create flow).
"""
from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Iterable
from typing import Any

from .logging import StructuredLogger, get_logger
from .models import Position
from .position_store import PositionCache


class PendingPositions:
    """Per-graph coordinator; one instance lives as long as the graph view."""

    def __init__(
        self,
        graph_id: str,
        cache: PositionCache,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.graph_id = graph_id
        self.cache = cache
        self.logger = logger or get_logger()
        self.positions: dict[str, Position] = {}
        self._reserved: Position | None = None
        self._previous: set[str] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def reserved(self) -> Position | None:
        return self._reserved

    def reserve(self, pos: Position) -> None:
        self._reserved = pos

    def clear_reserved(self) -> None:
        self._reserved = None

    def assign(self, identity: str, pos: Position) -> None:
        self._apply([identity], pos)
        self._reserved = None

    def assign_reserved(self, identity: str) -> bool:
        pos = self._reserved
        if pos is None:
            return False
        self.assign(identity, pos)
        return True

    def observe(self, identities: Iterable[str]) -> list[str]:
        """Record the current identity list; return ids that took the reservation.

        Only a transition from a non-empty baseline consumes the reservation:
        the first observation and the first load after an empty list are
        treated as initial data, not as user-driven additions.
        """
        ordered = list(dict.fromkeys(identities))
        current = set(ordered)
        consumed: list[str] = []
        reserved = self._reserved
        if reserved is not None and self._previous:
            new_ids = [i for i in ordered if i not in self._previous]
            if new_ids:
                self._apply(new_ids, reserved)
                self._reserved = None
                consumed = new_ids
                self.logger.debug(
                    f"reserved position assigned to {len(new_ids)} new node(s)",
                    graph_id=self.graph_id,
                    node_id=new_ids[0],
                )
        self._previous = current
        return consumed

    def reset(self, graph_id: str) -> None:
        self.graph_id = graph_id
        self.positions = {}
        self._reserved = None
        self._previous = None

    def _apply(self, identities: list[str], pos: Position) -> None:
        for identity in identities:
            self.positions[identity] = pos
        self._spawn(self.cache.merge_node_positions(self.graph_id, dict.fromkeys(identities, pos)))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        await self.drain()
        self.reset(self.graph_id)


__all__ = ["PendingPositions"]
