from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal

IssueState = Literal["open", "closed"]


class DependencyType(str, Enum):
    SUB_ISSUE = "sub_issue"
    BLOCKED_BY = "blocked_by"


class Direction(str, Enum):
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"

    @classmethod
    def coerce(cls, value: str | Direction) -> Direction:
        if isinstance(value, Direction):
            return value
        key = value.strip().lower()
        aliases = {"tb": "vertical", "down": "vertical", "lr": "horizontal", "right": "horizontal"}
        try:
            return cls(aliases.get(key, key))
        except ValueError as exc:
            raise ValueError(f"Unknown layout direction '{value}'") from exc


@dataclass(frozen=True)
class Label:
    name: str
    color: str


@dataclass(frozen=True)
class Assignee:
    login: str
    avatar_url: str


@dataclass(frozen=True)
class Issue:
    """Graph node payload.

    ``id`` is the composite ``owner/repo#number`` identity and the only key
    used for de-duplication; two records with the same id are the same
    entity even if their attributes drifted between fetches.
    """

    id: str
    number: int
    owner: str
    repo: str
    title: str
    state: IssueState
    body: str = ""
    labels: tuple[Label, ...] = ()
    assignees: tuple[Assignee, ...] = ()
    url: str = ""
    field_values: Mapping[str, str] = field(default_factory=dict, hash=False)
    item_id: str | None = None


@dataclass(frozen=True)
class Dependency:
    """Edge between two issue identities.

    For ``blocked_by`` the source is the blocking issue and the target is
    the blocked one; for ``sub_issue`` the source is the parent.
    """

    source: str
    target: str
    type: DependencyType

    @property
    def key(self) -> str:
        return f"{self.type.value}:{self.source}-{self.target}"


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Position:
        return cls(x=float(raw["x"]), y=float(raw["y"]))


ORIGIN = Position(0.0, 0.0)


@dataclass(frozen=True)
class LayoutNode:
    id: str
    position: Position = ORIGIN
    label: str = ""
    issue: Issue | None = field(default=None, compare=False)
    target_side: str | None = None
    source_side: str | None = None

    def with_position(self, position: Position) -> LayoutNode:
        return replace(self, position=position)


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    type: DependencyType


def positions_to_dict(positions: Mapping[str, Position]) -> dict[str, dict[str, float]]:
    return {node_id: pos.to_dict() for node_id, pos in positions.items()}


def positions_from_dict(raw: Mapping[str, Any] | None) -> dict[str, Position]:
    out: dict[str, Position] = {}
    for node_id, value in (raw or {}).items():
        if isinstance(value, Mapping) and "x" in value and "y" in value:
            out[str(node_id)] = Position.from_dict(value)
    return out


__all__ = [
    "ORIGIN",
    "Assignee",
    "Dependency",
    "DependencyType",
    "Direction",
    "Edge",
    "Issue",
    "IssueState",
    "Label",
    "LayoutNode",
    "Position",
    "positions_from_dict",
    "positions_to_dict",
]
