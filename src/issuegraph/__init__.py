"""issuegraph - layered layout and position persistence for GitHub issue graphs.

High-level public API:

from issuegraph import GraphAssembly, PositionCache, MemoryPositionStore, derive_issues

cache = PositionCache(MemoryPositionStore())
assembly = GraphAssembly('PVT_kwDOexample', cache)
issues, deps = derive_issues(raw_items, state='open')
view = await assembly.update(issues, deps)

Raw items are Projects v2 items as returned by the GraphQL API; see
:class:`issuegraph.github_client.GitHubClient` and
:class:`issuegraph.project_issues.ProjectIssuesLoader` for fetching them.
"""

from __future__ import annotations

from .assembly import GraphAssembly, GraphState, GraphView
from .config import GraphConfig, load_config
from .errors import FetchError, IssueGraphError, PositionStoreError
from .layout import LayoutOptions, layout_nodes
from .models import Dependency, DependencyType, Direction, Edge, Issue, LayoutNode, Position
from .optimistic import OptimisticDependencies, OptimisticMerge
from .parser import derive_issues, matches_filters, parse_dependencies, parse_items
from .pending import PendingPositions
from .position_store import (
    FilePositionStore,
    HTTPPositionStore,
    MemoryPositionStore,
    PositionCache,
)
from .project_issues import ProjectIssuesLoader

# Version constant (keep in sync with pyproject)
__version__ = "0.1.0"

__all__ = [
    "Dependency",
    "DependencyType",
    "Direction",
    "Edge",
    "FetchError",
    "FilePositionStore",
    "GraphAssembly",
    "GraphConfig",
    "GraphState",
    "GraphView",
    "HTTPPositionStore",
    "Issue",
    "IssueGraphError",
    "LayoutNode",
    "LayoutOptions",
    "MemoryPositionStore",
    "OptimisticDependencies",
    "OptimisticMerge",
    "PendingPositions",
    "Position",
    "PositionCache",
    "PositionStoreError",
    "ProjectIssuesLoader",
    "derive_issues",
    "layout_nodes",
    "load_config",
    "matches_filters",
    "parse_dependencies",
    "parse_items",
    "__version__",
]
