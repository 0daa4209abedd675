"""GitHub implementation of the tracker contract.

REST handles issue CRUD and label search; GraphQL handles Projects (v2)
assignment. HTTP failures are mapped onto the specsync error taxonomy so the
retry layer and the engine can react without looking at status codes:

* 401, and 403 without rate-limit headers -> ``TrackerPermissionError``
* 403/429 with ``X-RateLimit-Remaining: 0`` or ``Retry-After`` -> ``TrackerRateLimitError``
* 5xx, connection errors, timeouts -> ``TransientNetworkError``
* anything else >= 400 -> ``TrackerError``
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import requests
from dotenv import load_dotenv

from .errors import (
    TrackerError,
    TrackerPermissionError,
    TrackerRateLimitError,
    TransientNetworkError,
)
from .logging import get_logger
from .models import IssueRecord, IssueState
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "specsync/0.1.0"
HTTP_ERROR_STATUS = 400
HTTP_SERVER_ERROR = 500
TOKEN_VARS = ("SPECSYNC_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")

_ADD_TO_PROJECT = """
mutation($project: ID!, $content: ID!) {
  addProjectV2ItemById(input: {projectId: $project, contentId: $content}) {
    item { id }
  }
}
"""

_ISSUE_PROJECTS = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) {
      projectItems(first: 100) { nodes { project { id } } }
    }
  }
}
"""


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _error_from_response(response: requests.Response, method: str, url: str) -> TrackerError:
    status = response.status_code
    message = f"GitHub API {method} {url} failed with {status}: {response.text[:200]}"
    headers = response.headers
    remaining = headers.get("X-RateLimit-Remaining")
    retry_after = headers.get("Retry-After")
    if status in (403, 429) and (remaining == "0" or retry_after is not None):
        reset_raw = headers.get("X-RateLimit-Reset")
        reset_at = (
            datetime.fromtimestamp(float(reset_raw), tz=timezone.utc)
            if reset_raw and reset_raw.isdigit()
            else None
        )
        return TrackerRateLimitError(
            message,
            status=status,
            reset_at=reset_at,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if status == 401 or status == 403:
        return TrackerPermissionError(message, status=status)
    if status >= HTTP_SERVER_ERROR:
        return TransientNetworkError(message, status=status)
    return TrackerError(message, status=status)


def issue_from_payload(entry: dict[str, Any], repo: str | None = None) -> IssueRecord:
    labels: set[str] = set()
    for lbl in entry.get("labels") or []:
        if isinstance(lbl, dict) and isinstance(lbl.get("name"), str):
            labels.add(lbl["name"])
        elif isinstance(lbl, str):
            labels.add(lbl)
    state = str(entry.get("state") or "open").lower()
    return IssueRecord(
        number=int(entry["number"]),
        title=str(entry.get("title") or ""),
        body=str(entry.get("body") or ""),
        state=IssueState.CLOSED if state == "closed" else IssueState.OPEN,
        labels=frozenset(labels),
        source_repo=repo,
        updated_at=_parse_timestamp(entry.get("updated_at")),
        node_id=entry.get("node_id") if isinstance(entry.get("node_id"), str) else None,
    )


@dataclass
class GitHubTracker:
    """Tracker client backed by the GitHub REST & GraphQL APIs."""

    token: str
    repo: str
    base_url: str = DEFAULT_API_URL
    graphql_url: str = DEFAULT_GRAPHQL_URL
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    timeout: float = 30.0
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- transport -----------------------------------------------------
    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        idempotent: bool = True,
    ) -> Any:
        url = self._url(path)

        def _run() -> Any:
            try:
                response = self._session.request(
                    method, url, params=params, json=json_body, timeout=self.timeout
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                raise TransientNetworkError(f"GitHub API {method} {url}: {exc}") from exc
            if response.status_code >= HTTP_ERROR_STATUS:
                raise _error_from_response(response, method, url)
            if not response.text:
                return None
            try:
                return response.json()
            except ValueError:
                return response.text

        return run_with_retries(_run, cfg=self.retry, retry_transient=idempotent)

    def _paginate(self, path: str, *, params: dict[str, Any] | None = None) -> list[Any]:
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
            params["page"] = params["page"] + 1
        return results

    # ---- TrackerClient -------------------------------------------------
    def create_issue(self, title: str, body: str, labels: Iterable[str]) -> IssueRecord:
        payload = {"title": title, "body": body, "labels": list(labels)}
        data = self._request(
            "POST", f"/repos/{self.repo}/issues", json_body=payload, idempotent=False
        )
        if not isinstance(data, dict):
            raise TrackerError("GitHub returned no issue payload on create")
        return issue_from_payload(data, self.repo)

    def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        labels: Iterable[str] | None = None,
        state: IssueState | None = None,
    ) -> IssueRecord:
        payload: dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = list(labels)
        if state is not None:
            payload["state"] = IssueState(state).value
        data = self._request("PATCH", f"/repos/{self.repo}/issues/{number}", json_body=payload)
        if not isinstance(data, dict):
            raise TrackerError(f"GitHub returned no issue payload for #{number}")
        return issue_from_payload(data, self.repo)

    def search_issues_by_label(self, label: str) -> list[IssueRecord]:
        data = self._paginate(
            f"/repos/{self.repo}/issues", params={"state": "all", "labels": label}
        )
        return [
            issue_from_payload(entry, self.repo)
            for entry in data
            if isinstance(entry, dict) and "pull_request" not in entry
        ]

    def add_issue_to_project(self, issue_number: int, project_id: str) -> None:
        data = self._request("GET", f"/repos/{self.repo}/issues/{issue_number}")
        node_id = data.get("node_id") if isinstance(data, dict) else None
        if not node_id:
            raise TrackerError(f"Issue #{issue_number} has no node id")
        self.graphql(_ADD_TO_PROJECT, {"project": project_id, "content": node_id})

    def project_contains(self, issue_number: int, project_id: str) -> bool:
        owner, _, name = self.repo.partition("/")
        data = self.graphql(_ISSUE_PROJECTS, {"owner": owner, "name": name, "number": issue_number})
        try:
            nodes = data["data"]["repository"]["issue"]["projectItems"]["nodes"]
        except (KeyError, TypeError) as exc:
            raise TrackerError(f"Cannot read project items for issue #{issue_number}") from exc
        return any(
            ((node or {}).get("project") or {}).get("id") == project_id for node in nodes or []
        )

    def verify_permissions(self, *, org_scope: bool = False) -> None:
        data = self._request("GET", f"/repos/{self.repo}")
        perms = data.get("permissions") if isinstance(data, dict) else None
        if not isinstance(perms, dict):
            raise TrackerPermissionError(f"Cannot determine permissions on {self.repo}")
        if not (perms.get("push") or perms.get("triage") or perms.get("maintain") or perms.get("admin")):
            raise TrackerPermissionError(f"Token lacks write access to issues in {self.repo}")
        if org_scope and not (perms.get("admin") or perms.get("maintain")):
            raise TrackerPermissionError(
                f"Cross-repo sync requires maintain/admin access on {self.repo}"
            )

    # ---- GraphQL -------------------------------------------------------
    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> Any:
        payload = {"query": query, "variables": variables or {}}
        data = self._request("POST", self.graphql_url, json_body=payload)
        if isinstance(data, dict) and data.get("errors"):
            messages = "; ".join(str(e.get("message", e)) for e in data["errors"] if isinstance(e, dict))
            if "rate limit" in messages.lower():
                raise TrackerRateLimitError(f"GraphQL rate limited: {messages}")
            raise TrackerError(f"GraphQL query failed: {messages or data['errors']}")
        return data


def select_token(*, load_env: bool = True, dotenv_path: str | None = None) -> str | None:
    """First non-empty token from the environment, after optional ``.env`` loading."""
    if load_env:
        candidate = Path(dotenv_path or ".env")
        if candidate.exists():
            load_dotenv(str(candidate))
            get_logger().debug("Loaded environment variables", path=str(candidate))
    for name in TOKEN_VARS:
        raw = os.environ.get(name)
        if raw and raw.strip():
            return raw.strip()
    return None


def build_github_tracker(
    repo: str,
    *,
    load_env: bool = True,
    dotenv_path: str | None = None,
    session: requests.Session | None = None,
) -> GitHubTracker:
    token = select_token(load_env=load_env, dotenv_path=dotenv_path)
    if not token:
        raise TrackerPermissionError(
            "No GitHub token found; set SPECSYNC_GITHUB_TOKEN, GITHUB_TOKEN or GH_TOKEN"
        )
    base_url = os.environ.get("SPECSYNC_GITHUB_API", "").strip() or DEFAULT_API_URL
    graphql_url = os.environ.get("SPECSYNC_GITHUB_GRAPHQL", "").strip() or DEFAULT_GRAPHQL_URL
    return GitHubTracker(
        token=token, repo=repo, base_url=base_url, graphql_url=graphql_url, session=session
    )


__all__ = [
    "GitHubTracker",
    "build_github_tracker",
    "select_token",
    "issue_from_payload",
    "DEFAULT_API_URL",
    "DEFAULT_GRAPHQL_URL",
]
