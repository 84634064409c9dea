"""Raw GitHub payloads -> canonical ``Issue`` / ``Dependency`` records.

Project items arrive from the Projects v2 GraphQL API where the
``... on Issue`` fragment yields ``{}`` for draft items, so ``None`` checks
alone are not enough: every raw item is resolved exactly once into a
``ProjectItem`` whose ``content`` is either ``IssueContent`` or
``DraftContent``. Everything downstream dispatches on that variant.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal, cast

from .models import Assignee, Dependency, DependencyType, Issue, IssueState, Label

StateFilter = Literal['open', 'closed', 'all']

_ISSUE_ID_RE = re.compile(r'^(?P<owner>[^/#\s]+)/(?P<repo>[^/#\s]+)#(?P<number>\d+)$')


@dataclass(frozen=True)
class IssueRef:
    owner: str
    repo: str
    number: int

    @property
    def id(self) -> str:
        return build_issue_id(self.owner, self.repo, self.number)


@dataclass(frozen=True)
class FieldValue:
    field_id: str | None
    option_id: str | None = None
    iteration_id: str | None = None

    @property
    def value(self) -> str | None:
        return self.option_id or self.iteration_id

    def matches(self, field_id: str, value: str) -> bool:
        return self.field_id == field_id and value in (self.option_id, self.iteration_id)


@dataclass(frozen=True)
class IssueContent:
    ref: IssueRef
    title: str
    state: IssueState
    body: str
    url: str
    labels: tuple[Label, ...] = ()
    assignees: tuple[Assignee, ...] = ()
    sub_issues: tuple[IssueRef, ...] = ()
    blocked_by: tuple[IssueRef, ...] = ()
    blocking: tuple[IssueRef, ...] = ()


@dataclass(frozen=True)
class DraftContent:
    """Draft items and anything else without an issue number."""


@dataclass(frozen=True)
class ProjectItem:
    item_id: str | None
    content: IssueContent | DraftContent
    field_values: tuple[FieldValue, ...] = ()

    @property
    def is_issue(self) -> bool:
        return isinstance(self.content, IssueContent)


RawItem = Mapping[str, Any]
ItemLike = RawItem | ProjectItem


def build_issue_id(owner: str, repo: str, number: int) -> str:
    return f'{owner}/{repo}#{number}'


def parse_issue_id(identity: str) -> IssueRef:
    """Inverse of :func:`build_issue_id`; raises ``ValueError`` on malformed input."""
    m = _ISSUE_ID_RE.match(identity.strip()) if isinstance(identity, str) else None
    if not m:
        raise ValueError(f'Malformed issue identity: {identity!r}')
    return IssueRef(m.group('owner'), m.group('repo'), int(m.group('number')))


# ---- raw helpers ------------------------------------------------------------
def _mapping(value: Any) -> Mapping[str, Any]:
    return cast(Mapping[str, Any], value) if isinstance(value, Mapping) else {}


def _nodes(container: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    nodes = _mapping(container.get(key)).get('nodes')
    if not isinstance(nodes, list):
        return []
    return [cast(Mapping[str, Any], n) for n in nodes if isinstance(n, Mapping)]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ''


def _normalize_state(value: Any) -> IssueState:
    return 'closed' if _text(value).lower() == 'closed' else 'open'


def _ref(raw: Mapping[str, Any]) -> IssueRef | None:
    number = raw.get('number')
    if not isinstance(number, int) or isinstance(number, bool):
        return None
    repository = _mapping(raw.get('repository'))
    owner = _text(_mapping(repository.get('owner')).get('login'))
    return IssueRef(owner, _text(repository.get('name')), number)


def _refs(content: Mapping[str, Any], key: str) -> tuple[IssueRef, ...]:
    out: list[IssueRef] = []
    for node in _nodes(content, key):
        ref = _ref(node)
        if ref is not None:
            out.append(ref)
    return tuple(out)


def _field_values(raw: Mapping[str, Any]) -> tuple[FieldValue, ...]:
    out: list[FieldValue] = []
    for node in _nodes(raw, 'fieldValues'):
        field_id = _mapping(node.get('field')).get('id')
        option_id = node.get('optionId')
        iteration_id = node.get('iterationId')
        out.append(
            FieldValue(
                field_id if isinstance(field_id, str) and field_id else None,
                option_id if isinstance(option_id, str) else None,
                iteration_id if isinstance(iteration_id, str) else None,
            )
        )
    return tuple(out)


def _resolve_content(raw_content: Any) -> IssueContent | DraftContent:
    content = _mapping(raw_content)
    if 'number' not in content:
        return DraftContent()
    ref = _ref(content)
    if ref is None:
        return DraftContent()
    return IssueContent(
        ref=ref,
        title=_text(content.get('title')),
        state=_normalize_state(content.get('state')),
        body=_text(content.get('body')),
        url=_text(content.get('url')),
        labels=tuple(
            Label(_text(n.get('name')), _text(n.get('color'))) for n in _nodes(content, 'labels')
        ),
        assignees=tuple(
            Assignee(_text(n.get('login')), _text(n.get('avatarUrl')))
            for n in _nodes(content, 'assignees')
        ),
        sub_issues=_refs(content, 'subIssues'),
        blocked_by=_refs(content, 'blockedBy'),
        blocking=_refs(content, 'blocking'),
    )


def resolve_item(raw: ItemLike) -> ProjectItem:
    """Resolve a raw Projects v2 item into its tagged variant (idempotent)."""
    if isinstance(raw, ProjectItem):
        return raw
    item_id = raw.get('id')
    return ProjectItem(
        item_id=item_id if isinstance(item_id, str) else None,
        content=_resolve_content(raw.get('content')),
        field_values=_field_values(raw),
    )


def resolve_items(raw_items: Iterable[ItemLike]) -> list[ProjectItem]:
    return [resolve_item(raw) for raw in raw_items]


# ---- public parsing ---------------------------------------------------------
def _to_issue(item: ProjectItem, content: IssueContent) -> Issue:
    field_values: dict[str, str] = {}
    for fv in item.field_values:
        if not fv.field_id:
            continue
        value = fv.value
        if value:
            field_values[fv.field_id] = value
    return Issue(
        id=content.ref.id,
        number=content.ref.number,
        owner=content.ref.owner,
        repo=content.ref.repo,
        title=content.title,
        state=content.state,
        body=content.body,
        labels=content.labels,
        assignees=content.assignees,
        url=content.url,
        field_values=field_values,
        item_id=item.item_id,
    )


def parse_items(raw_items: Iterable[ItemLike]) -> list[Issue]:
    issues: list[Issue] = []
    for item in resolve_items(raw_items):
        if isinstance(item.content, IssueContent):
            issues.append(_to_issue(item, item.content))
    return issues


def parse_dependencies(raw_items: Iterable[ItemLike]) -> list[Dependency]:
    """Derive edges from ``subIssues`` / ``blockedBy`` / ``blocking``.

    ``blockedBy`` on B listing A and ``blocking`` on A listing B describe the
    same relationship; both map to ``blocked_by:{A}-{B}`` so only one edge
    survives.
    """
    deps: list[Dependency] = []
    seen: set[str] = set()

    def _push(source: str, target: str, dep_type: DependencyType) -> None:
        dep = Dependency(source, target, dep_type)
        if dep.key in seen:
            return
        seen.add(dep.key)
        deps.append(dep)

    for item in resolve_items(raw_items):
        content = item.content
        if not isinstance(content, IssueContent):
            continue
        current = content.ref.id
        for child in content.sub_issues:
            _push(current, child.id, DependencyType.SUB_ISSUE)
        for blocker in content.blocked_by:
            _push(blocker.id, current, DependencyType.BLOCKED_BY)
        for blocked in content.blocking:
            _push(current, blocked.id, DependencyType.BLOCKED_BY)
    return deps


def matches_filters(item: ItemLike, field_filters: Mapping[str, str] | None) -> bool:
    """True when every non-empty ``field_id -> value`` pair matches the item."""
    resolved = resolve_item(item)
    for field_id, value in (field_filters or {}).items():
        if not value:
            continue
        if not any(fv.matches(field_id, value) for fv in resolved.field_values):
            return False
    return True


def derive_issues(
    raw_items: Iterable[ItemLike],
    *,
    state: StateFilter = 'all',
    field_filters: Mapping[str, str] | None = None,
) -> tuple[list[Issue], list[Dependency]]:
    """Filter + parse issues; dependencies always come from the full item set."""
    items = resolve_items(raw_items)
    filtered = [i for i in items if matches_filters(i, field_filters)] if field_filters else items
    issues = parse_items(filtered)
    if state != 'all':
        issues = [i for i in issues if i.state == state]
    return issues, parse_dependencies(items)


# ---- REST shapes -------------------------------------------------------------
def parse_rest_issues(raw: Iterable[Mapping[str, Any]], owner: str, repo: str) -> list[Issue]:
    """Convert ``GET /repos/{owner}/{repo}/issues`` entries; pull requests are skipped."""
    issues: list[Issue] = []
    for entry in raw:
        if not isinstance(entry, Mapping) or entry.get('pull_request'):
            continue
        number = entry.get('number')
        if not isinstance(number, int):
            continue
        labels = entry.get('labels') if isinstance(entry.get('labels'), list) else []
        assignees = entry.get('assignees') if isinstance(entry.get('assignees'), list) else []
        issues.append(
            Issue(
                id=build_issue_id(owner, repo, number),
                number=number,
                owner=owner,
                repo=repo,
                title=_text(entry.get('title')),
                state=_normalize_state(entry.get('state')),
                body=_text(entry.get('body')),
                labels=tuple(
                    Label(_text(lbl.get('name')), _text(lbl.get('color')))
                    for lbl in cast(list[Any], labels)
                    if isinstance(lbl, Mapping)
                ),
                assignees=tuple(
                    Assignee(_text(a.get('login')), _text(a.get('avatar_url')))
                    for a in cast(list[Any], assignees)
                    if isinstance(a, Mapping)
                ),
                url=_text(entry.get('html_url')),
            )
        )
    return issues


def parse_rest_sub_issues(
    parent_id: str, raw_subs: Iterable[Mapping[str, Any]], owner: str, repo: str
) -> list[Dependency]:
    """``GET .../issues/{n}/sub_issues`` -> ``sub_issue`` edges from ``parent_id``."""
    deps: list[Dependency] = []
    seen: set[str] = set()
    for sub in raw_subs:
        if not isinstance(sub, Mapping):
            continue
        number = sub.get('number')
        if not isinstance(number, int):
            continue
        dep = Dependency(parent_id, build_issue_id(owner, repo, number), DependencyType.SUB_ISSUE)
        if dep.key not in seen:
            seen.add(dep.key)
            deps.append(dep)
    return deps


__all__ = [
    'DraftContent',
    'FieldValue',
    'IssueContent',
    'IssueRef',
    'ProjectItem',
    'StateFilter',
    'build_issue_id',
    'derive_issues',
    'matches_filters',
    'parse_dependencies',
    'parse_issue_id',
    'parse_items',
    'parse_rest_issues',
    'parse_rest_sub_issues',
    'resolve_item',
    'resolve_items',
]
