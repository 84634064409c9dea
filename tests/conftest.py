"""Pytest configuration for issuegraph tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides
factories for raw Projects v2 items.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def _ref(ref: str) -> dict[str, Any]:
    owner_repo, number = ref.split("#")
    owner, repo = owner_repo.split("/")
    return {"number": int(number), "repository": {"owner": {"login": owner}, "name": repo}}


def build_item(
    ref: str,
    *,
    item_id: str | None = None,
    title: str | None = None,
    state: str = "OPEN",
    body: str | None = "",
    sub_issues: tuple[str, ...] = (),
    blocked_by: tuple[str, ...] = (),
    blocking: tuple[str, ...] = (),
    field_values: tuple[dict[str, Any], ...] = (),
    labels: tuple[tuple[str, str], ...] = (),
) -> dict[str, Any]:
    """Raw Projects v2 item shaped like the GraphQL response."""
    base = _ref(ref)
    content = {
        **base,
        "title": title or f"Issue {ref}",
        "state": state,
        "body": body,
        "url": f"https://github.com/{ref.replace('#', '/issues/')}",
        "labels": {"nodes": [{"name": n, "color": c} for n, c in labels]},
        "assignees": {"nodes": []},
        "subIssues": {"nodes": [_ref(r) for r in sub_issues]},
        "blockedBy": {"nodes": [_ref(r) for r in blocked_by]},
        "blocking": {"nodes": [_ref(r) for r in blocking]},
    }
    return {
        "id": item_id or f"PVTI_{base['number']}",
        "content": content,
        "fieldValues": {"nodes": list(field_values)},
    }


@pytest.fixture
def make_item():
    return build_item


@pytest.fixture(autouse=True)
def _fresh_logger():
    """Start every test with a freshly configured shared logger."""
    from issuegraph.logging import configure_logging

    configure_logging()
    yield
