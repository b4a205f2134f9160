"""Abstract base for Git platform adapters and the errors they raise."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from prwatch.models import PullRequest, Repository, Review

SSO_MARKERS = ("SAML", "SSO")

SSO_REMEDIATION = (
    "Authorize the token for the organization: GitHub -> Settings -> Developer settings -> "
    "Personal access tokens -> Configure SSO -> Authorize, then refresh. "
    "See https://docs.github.com/en/enterprise-cloud@latest/authentication/"
    "authenticating-with-saml-single-sign-on/authorizing-a-personal-access-token-for-use-with-saml-single-sign-on"
)


class GitPlatformError(Exception):
    """Raised when a Git platform API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(GitPlatformError):
    """The request never got an HTTP response (DNS, connection, timeout)."""


class RateLimitError(GitPlatformError):
    """The API refused the request because the rate limit is exhausted."""

    def __init__(self, message: str, status_code: int | None = None, reset_at: int | None = None) -> None:
        super().__init__(message, status_code)
        self.reset_at = reset_at


class AuthorizationError(GitPlatformError):
    """Token is not authorized for the organization (SAML SSO enforcement).

    Needs out-of-band action by the user; never retried automatically.
    """

    def __init__(
        self,
        message: str,
        owner: str = "",
        repo: str = "",
        status_code: int | None = 403,
    ) -> None:
        super().__init__(message, status_code)
        self.owner = owner
        self.repo = repo

    @property
    def remediation(self) -> str:
        return SSO_REMEDIATION

    def for_repository(self, owner: str, repo: str) -> "AuthorizationError":
        """Copy of this error carrying the repository it happened on."""
        return AuthorizationError(str(self), owner=owner, repo=repo, status_code=self.status_code)

    def __str__(self) -> str:
        base = super().__str__()
        if self.owner and self.repo:
            return f"Token not authorized for {self.owner}/{self.repo}: {base}"
        return base


def is_sso_error(message: str) -> bool:
    """True when an error message carries the SSO/SAML marker."""
    return any(marker in (message or "") for marker in SSO_MARKERS)


class GitPlatformAdapter(ABC):
    """Remote repository capability used by the refresh engine.

    Methods are blocking; the fetch coordinator runs them in worker threads.
    """

    @abstractmethod
    def list_pull_requests(self, repo: Repository, state: str = "open") -> List[PullRequest]:
        """List PRs of a repository with list-level fields (state: open, closed, all)."""
        ...

    @abstractmethod
    def get_pull_request(self, repo: Repository, number: int) -> PullRequest:
        """Fetch a single PR with detail fields (comments, mergeability)."""
        ...

    @abstractmethod
    def list_reviews(self, repo: Repository, number: int) -> List[Review]:
        """List review events of a PR."""
        ...

    @abstractmethod
    def add_assignees(self, owner: str, repo: str, number: int, usernames: List[str]) -> None:
        """Add assignees to a PR."""
        ...

    @abstractmethod
    def remove_assignees(self, owner: str, repo: str, number: int, usernames: List[str]) -> None:
        """Remove assignees from a PR."""
        ...

    def list_open_pull_requests(self, repo: Repository) -> List[PullRequest]:
        return self.list_pull_requests(repo, state="open")

    def list_all_pull_requests(self, repo: Repository) -> List[PullRequest]:
        return self.list_pull_requests(repo, state="all")

    @abstractmethod
    def list_org_repositories(self, org: str) -> List[Dict[str, Any]]:
        """List repositories of an organization (raw API dicts)."""
        ...

    @abstractmethod
    def get_repository(self, full_name: str) -> Dict[str, Any]:
        """Fetch repository metadata (raw API dict)."""
        ...
