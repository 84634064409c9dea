from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import redact

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "issuegraph/0.1.0"
HTTP_ERROR_STATUS = 400
DEFAULT_TIMEOUT = 30

PROJECT_ITEMS_QUERY = """
query($projectId: ID!, $cursor: String) {
  node(id: $projectId) {
    ... on ProjectV2 {
      items(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          content {
            ... on Issue {
              number title state body url
              repository { owner { login } name }
              labels(first: 20) { nodes { name color } }
              assignees(first: 10) { nodes { login avatarUrl } }
              subIssues(first: 50) { nodes { number repository { owner { login } name } } }
              blockedBy(first: 50) { nodes { number repository { owner { login } name } } }
              blocking(first: 50) { nodes { number repository { owner { login } name } } }
            }
          }
          fieldValues(first: 20) {
            nodes {
              ... on ProjectV2ItemFieldSingleSelectValue { field { ... on ProjectV2FieldCommon { id } } optionId }
              ... on ProjectV2ItemFieldIterationValue { field { ... on ProjectV2FieldCommon { id } } iterationId }
            }
          }
        }
      }
    }
  }
}
"""

ADD_BLOCKED_BY_MUTATION = """
mutation($issueId: ID!, $blockedByIssueId: ID!) {
  addBlockedBy(input: { issueId: $issueId, blockedByIssueId: $blockedByIssueId }) { issue { id } }
}
"""

REMOVE_BLOCKED_BY_MUTATION = """
mutation($issueId: ID!, $blockedByIssueId: ID!) {
  removeBlockedBy(input: { issueId: $issueId, blockedByIssueId: $blockedByIssueId }) { issue { id } }
}
"""

REMOVE_SUB_ISSUE_MUTATION = """
mutation($issueId: ID!, $subIssueId: ID!) {
  removeSubIssue(input: { issueId: $issueId, subIssueId: $subIssueId }) { issue { id } }
}
"""

ADD_PROJECT_ITEM_MUTATION = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: { projectId: $projectId, contentId: $contentId }) { item { id } }
}
"""


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST/GraphQL API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


@dataclass
class GitHubClient:
    """Lightweight REST/GraphQL client for the calls the graph needs.

    Failures are raised as :class:`GitHubAPIError`; nothing is retried.
    """

    token: str | None = None
    base_url: str = DEFAULT_API_URL
    graphql_url: str = DEFAULT_GRAPHQL_URL
    timeout: float = DEFAULT_TIMEOUT
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        self._session = self.session or requests.Session()
        if self.token:
            self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GitHubAPIError(f"GitHub API {method} {url} failed: {redact(str(exc))}") from exc
        if response.status_code >= HTTP_ERROR_STATUS:
            raise GitHubAPIError(
                f"GitHub API {method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
            )
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    def _paginate(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params)
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    # ---- GraphQL ------------------------------------------------------
    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> Any:
        payload = {"query": query, "variables": variables or {}}
        data = self._request("POST", self.graphql_url, json_body=payload)
        if isinstance(data, dict) and data.get("errors"):
            raise GitHubAPIError(f"GraphQL query failed: {data['errors']}")
        return data

    # ---- Project items ------------------------------------------------
    def fetch_project_items(self, project_id: str) -> list[dict[str, Any]]:
        """Every item of a Projects v2 board; all pages are followed."""
        items: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            data = self.graphql(PROJECT_ITEMS_QUERY, {"projectId": project_id, "cursor": cursor})
            payload = data.get("data") if isinstance(data, dict) else None
            node = payload.get("node") if isinstance(payload, dict) else None
            if not isinstance(node, dict) or not isinstance(node.get("items"), dict):
                raise GitHubAPIError(f"Project {project_id} not found or not a ProjectV2")
            page = node["items"]
            items.extend(n for n in page.get("nodes") or [] if isinstance(n, dict))
            info = page.get("pageInfo") or {}
            cursor = info.get("endCursor")
            if not info.get("hasNextPage") or not cursor:
                break
        return items

    # ---- Issues ---------------------------------------------------------
    def list_issues(self, owner: str, repo: str, *, state: str = "open") -> list[dict[str, Any]]:
        data = self._paginate(f"/repos/{owner}/{repo}/issues", params={"state": state})
        return [entry for entry in data if isinstance(entry, dict)]

    def list_sub_issues(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        data = self._paginate(f"/repos/{owner}/{repo}/issues/{number}/sub_issues")
        return [entry for entry in data if isinstance(entry, dict)]

    def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        data = self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected payload for {owner}/{repo}#{number}")
        return data

    def _issue_field(self, owner: str, repo: str, number: int, key: str) -> Any:
        value = self.get_issue(owner, repo, number).get(key)
        if value is None:
            raise GitHubAPIError(f"{owner}/{repo}#{number} has no {key}")
        return value

    def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str = "",
        assignees: Iterable[str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": title, "body": body}
        if assignees:
            payload["assignees"] = list(assignees)
        data = self._request("POST", f"/repos/{owner}/{repo}/issues", json_body=payload)
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected payload creating issue in {owner}/{repo}")
        return data

    def add_project_item(self, project_id: str, content_id: str) -> str | None:
        data = self.graphql(
            ADD_PROJECT_ITEM_MUTATION, {"projectId": project_id, "contentId": content_id}
        )
        try:
            return str(data["data"]["addProjectV2ItemById"]["item"]["id"])
        except (KeyError, TypeError):
            return None

    # ---- Dependency mutations ------------------------------------------
    def add_sub_issue(self, owner: str, repo: str, parent: int, child: int) -> None:
        child_id = self._issue_field(owner, repo, child, "id")
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{parent}/sub_issues",
            json_body={"sub_issue_id": child_id},
        )

    def remove_sub_issue(self, owner: str, repo: str, parent: int, child: int) -> None:
        self.graphql(
            REMOVE_SUB_ISSUE_MUTATION,
            {
                "issueId": self._issue_field(owner, repo, parent, "node_id"),
                "subIssueId": self._issue_field(owner, repo, child, "node_id"),
            },
        )

    def add_blocked_by(self, owner: str, repo: str, issue: int, blocker: int) -> None:
        """Mark ``issue`` as blocked by ``blocker``."""
        self.graphql(
            ADD_BLOCKED_BY_MUTATION,
            {
                "issueId": self._issue_field(owner, repo, issue, "node_id"),
                "blockedByIssueId": self._issue_field(owner, repo, blocker, "node_id"),
            },
        )

    def remove_blocked_by(self, owner: str, repo: str, issue: int, blocker: int) -> None:
        self.graphql(
            REMOVE_BLOCKED_BY_MUTATION,
            {
                "issueId": self._issue_field(owner, repo, issue, "node_id"),
                "blockedByIssueId": self._issue_field(owner, repo, blocker, "node_id"),
            },
        )


__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "PROJECT_ITEMS_QUERY",
]
