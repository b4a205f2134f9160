"""GitHub REST API adapter."""

import logging
from datetime import datetime
from typing import Any, Dict, List

import requests

from prwatch.adapters.base import (
    AuthorizationError,
    GitPlatformAdapter,
    GitPlatformError,
    NetworkError,
    RateLimitError,
    is_sso_error,
)
from prwatch.models import Account, BranchRef, PullRequest, Repository, Review

LOG = logging.getLogger("prwatch.adapters.github")

PER_PAGE = 100


def _parse_iso(s: str | None) -> datetime | None:
    if not s:
        return None
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _account_from_api(data: Dict[str, Any] | None) -> Account:
    data = data or {}
    return Account(login=data.get("login") or "ghost", avatar_url=data.get("avatar_url") or "")


def _branch_from_api(data: Dict[str, Any] | None) -> BranchRef:
    data = data or {}
    repo = data.get("repo") or {}
    return BranchRef(ref=data.get("ref", ""), repo_full_name=repo.get("full_name", ""))


def _pr_from_api(data: Dict[str, Any], repository_url: str, detail: bool = False) -> PullRequest:
    created = _parse_iso(data["created_at"])
    return PullRequest(
        repository_url=repository_url,
        number=data["number"],
        title=data.get("title") or "",
        state=data.get("state", "open"),
        draft=bool(data.get("draft", False)),
        user=_account_from_api(data.get("user")),
        assignees=[_account_from_api(a) for a in (data.get("assignees") or [])],
        base=_branch_from_api(data.get("base")),
        head=_branch_from_api(data.get("head")),
        created_at=created,
        updated_at=_parse_iso(data.get("updated_at")) or created,
        merged_at=_parse_iso(data.get("merged_at")),
        closed_at=_parse_iso(data.get("closed_at")),
        comments=data.get("comments") or 0,
        review_comments=data.get("review_comments") or 0,
        html_url=data.get("html_url") or "",
        mergeable=data.get("mergeable"),
        mergeable_state=data.get("mergeable_state"),
        detail_loaded=detail,
    )


def _review_from_api(data: Dict[str, Any]) -> Review:
    return Review(
        id=data["id"],
        user=_account_from_api(data.get("user")),
        state=data.get("state") or "COMMENTED",
        submitted_at=_parse_iso(data.get("submitted_at")),
    )


class GitHubAdapter(GitPlatformAdapter):
    """GitHub API implementation."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: int = 30,
        max_pages: int = 10,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._max_pages = max_pages
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"token {token}"
        self._session.headers["Accept"] = "application/vnd.github.v3+json"

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> requests.Response:
        url = f"{self._api_url}{path}" if path.startswith("/") else f"{self._api_url}/{path}"
        try:
            resp = self._session.request(method, url, params=params, json=json, timeout=self._timeout)
        except requests.RequestException as e:
            raise NetworkError(f"{method} {path}: {e}") from e
        if resp.status_code >= 400:
            raise self._error_from_response(resp)
        return resp

    def _error_from_response(self, resp: requests.Response) -> GitPlatformError:
        msg = resp.text or resp.reason or str(resp.status_code)
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            msg = body["message"]
        msg = str(msg)
        if is_sso_error(msg):
            return AuthorizationError(msg, status_code=resp.status_code)
        if resp.status_code in (403, 429):
            headers = resp.headers or {}
            if headers.get("X-RateLimit-Remaining") == "0" or "rate limit" in msg.lower():
                reset = headers.get("X-RateLimit-Reset")
                reset_at = int(reset) if isinstance(reset, str) and reset.isdigit() else None
                return RateLimitError(f"{resp.status_code}: {msg}", status_code=resp.status_code, reset_at=reset_at)
        return GitPlatformError(f"{resp.status_code}: {msg}", status_code=resp.status_code)

    def _paginate(self, path: str, params: Dict[str, Any] | None = None) -> List[Dict[str, Any]]:
        """GET every page of a list endpoint (stops at a short page or max_pages)."""
        items: List[Dict[str, Any]] = []
        for page in range(1, self._max_pages + 1):
            query = {**(params or {}), "per_page": PER_PAGE, "page": page}
            data = self._request("GET", path, params=query).json() or []
            items.extend(data)
            if len(data) < PER_PAGE:
                break
        return items

    def list_pull_requests(self, repo: Repository, state: str = "open") -> List[PullRequest]:
        params = {"state": state, "sort": "created", "direction": "desc"}
        data = self._paginate(f"/repos/{repo.full_name}/pulls", params=params)
        LOG.debug("Listed %d %s PRs for %s", len(data), state, repo.full_name)
        return [_pr_from_api(d, repo.url) for d in data]

    def get_pull_request(self, repo: Repository, number: int) -> PullRequest:
        resp = self._request("GET", f"/repos/{repo.full_name}/pulls/{number}")
        return _pr_from_api(resp.json(), repo.url, detail=True)

    def list_reviews(self, repo: Repository, number: int) -> List[Review]:
        data = self._paginate(f"/repos/{repo.full_name}/pulls/{number}/reviews")
        return [_review_from_api(d) for d in data]

    def add_assignees(self, owner: str, repo: str, number: int, usernames: List[str]) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/assignees",
            json={"assignees": list(usernames)},
        )

    def remove_assignees(self, owner: str, repo: str, number: int, usernames: List[str]) -> None:
        self._request(
            "DELETE",
            f"/repos/{owner}/{repo}/issues/{number}/assignees",
            json={"assignees": list(usernames)},
        )

    def list_org_repositories(self, org: str) -> List[Dict[str, Any]]:
        return self._paginate(f"/orgs/{org}/repos", params={"type": "all"})

    def get_repository(self, full_name: str) -> Dict[str, Any]:
        return self._request("GET", f"/repos/{full_name}").json()
