"""Merging locally known, unconfirmed entities and edges into server data."""
from __future__ import annotations

from collections.abc import Iterable
from typing import Generic, Protocol, TypeVar

from .models import Dependency


class _Identified(Protocol):
    @property
    def id(self) -> str: ...


E = TypeVar("E", bound=_Identified)


class OptimisticMerge(Generic[E]):
    """``all_entities = authoritative + (optimistic minus authoritative ids)``.

    An optimistic entry leaves the set only when the authoritative list
    starts carrying its identity. ``update`` overlays replacement records
    that hold until the next :meth:`sync`.
    """

    def __init__(self, authoritative: Iterable[E] = ()) -> None:
        self._authoritative: list[E] = list(authoritative)
        self._optimistic: list[E] = []
        self._updates: dict[str, E] = {}

    @property
    def authoritative(self) -> list[E]:
        return list(self._authoritative)

    @property
    def pending(self) -> list[E]:
        return list(self._optimistic)

    @property
    def all_entities(self) -> list[E]:
        real_ids = {e.id for e in self._authoritative}
        merged = self._authoritative + [e for e in self._optimistic if e.id not in real_ids]
        return [self._updates.get(e.id, e) for e in merged]

    def ids(self) -> list[str]:
        return [e.id for e in self.all_entities]

    def sync(self, authoritative: Iterable[E]) -> list[E]:
        """Install a new authoritative snapshot; return confirmed optimistic entries."""
        self._authoritative = list(authoritative)
        real_ids = {e.id for e in self._authoritative}
        confirmed = [e for e in self._optimistic if e.id in real_ids]
        if confirmed:
            self._optimistic = [e for e in self._optimistic if e.id not in real_ids]
        self._updates = {}
        return confirmed

    def add(self, entity: E) -> bool:
        if any(e.id == entity.id for e in self._authoritative) or any(
            e.id == entity.id for e in self._optimistic
        ):
            return False
        self._optimistic.append(entity)
        return True

    def update(self, entity: E) -> None:
        self._updates[entity.id] = entity


class OptimisticDependencies:
    """Optimistic edge add/remove layered over server-derived dependencies."""

    def __init__(self) -> None:
        self._added: list[Dependency] = []
        self._removed: list[Dependency] = []

    @property
    def added(self) -> list[Dependency]:
        return list(self._added)

    @property
    def removed(self) -> list[Dependency]:
        return list(self._removed)

    def add(self, dep: Dependency) -> None:
        if all(a.key != dep.key for a in self._added):
            self._added.append(dep)
        self._removed = [r for r in self._removed if r.key != dep.key]

    def remove(self, dep: Dependency) -> None:
        self._added = [a for a in self._added if a.key != dep.key]
        if all(r.key != dep.key for r in self._removed):
            self._removed.append(dep)

    def sync(self, server_deps: Iterable[Dependency]) -> None:
        """Prune operations the server now reflects."""
        server_keys = {d.key for d in server_deps}
        self._added = [a for a in self._added if a.key not in server_keys]
        self._removed = [r for r in self._removed if r.key in server_keys]

    def merge(self, server_deps: Iterable[Dependency]) -> list[Dependency]:
        result = list(server_deps)
        keys = {d.key for d in result}
        for dep in self._added:
            if dep.key not in keys:
                keys.add(dep.key)
                result.append(dep)
        removed_keys = {r.key for r in self._removed}
        return [d for d in result if d.key not in removed_keys]

    def clear(self) -> None:
        self._added = []
        self._removed = []


__all__ = ["OptimisticDependencies", "OptimisticMerge"]
