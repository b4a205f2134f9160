"""Pull request model shared by the live view, the cache and the statistics.

List responses and detail responses from GitHub carry different fields. A
PullRequest always has every field (defaulted); upgrade() fills the
detail-only fields from a detail fetch.
"""

from datetime import datetime
from enum import Enum
from typing import List, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def default_avatar_url(login: str) -> str:
    return f"https://github.com/{login}.png"


class MergeableState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    UNSTABLE = "unstable"
    BLOCKED = "blocked"
    BEHIND = "behind"
    DRAFT = "draft"
    UNKNOWN = "unknown"


class ReviewState(str, Enum):
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    DISMISSED = "DISMISSED"
    PENDING = "PENDING"


class PRKey(NamedTuple):
    """Identity of a pull request across all repositories."""

    repository_url: str
    number: int


class Account(BaseModel):
    """GitHub account as embedded in PRs (author, assignee, reviewer)."""

    model_config = ConfigDict(frozen=True)

    login: str
    avatar_url: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_avatar(cls, data: object) -> object:
        if isinstance(data, dict) and data.get("login") and not data.get("avatar_url"):
            return {**data, "avatar_url": default_avatar_url(data["login"])}
        return data


class BranchRef(BaseModel):
    """Head or base of a pull request."""

    model_config = ConfigDict(frozen=True)

    ref: str = ""
    repo_full_name: str = ""


class Review(BaseModel):
    """One review event on a pull request."""

    model_config = ConfigDict(frozen=True)

    id: int
    user: Account
    state: ReviewState = ReviewState.COMMENTED
    submitted_at: datetime | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _coerce_state(cls, value: object) -> object:
        if isinstance(value, str):
            upper = value.upper()
            if upper in ReviewState.__members__:
                return upper
            return ReviewState.COMMENTED
        return value


class PullRequest(BaseModel):
    """Canonical pull request record."""

    model_config = ConfigDict(frozen=True)

    repository_url: str
    number: int
    title: str = ""
    state: str = "open"
    draft: bool = False
    user: Account
    assignees: List[Account] = Field(default_factory=list)
    base: BranchRef = Field(default_factory=BranchRef)
    head: BranchRef = Field(default_factory=BranchRef)
    created_at: datetime
    updated_at: datetime
    merged_at: datetime | None = None
    closed_at: datetime | None = None
    comments: int = 0
    review_comments: int = 0
    html_url: str = ""
    reviews: List[Review] = Field(default_factory=list)
    mergeable: bool | None = None
    mergeable_state: MergeableState = MergeableState.UNKNOWN
    detail_loaded: bool = False

    @field_validator("mergeable_state", mode="before")
    @classmethod
    def _coerce_mergeable_state(cls, value: object) -> object:
        if value is None:
            return MergeableState.UNKNOWN
        if isinstance(value, str) and value not in {m.value for m in MergeableState}:
            return MergeableState.UNKNOWN
        return value

    @field_validator("assignees")
    @classmethod
    def _unique_assignees(cls, value: List[Account]) -> List[Account]:
        seen: set[str] = set()
        out = []
        for account in value:
            if account.login in seen:
                continue
            seen.add(account.login)
            out.append(account)
        return out

    @property
    def key(self) -> PRKey:
        return PRKey(self.repository_url, self.number)

    @property
    def is_merged(self) -> bool:
        return self.merged_at is not None

    @property
    def assignee_logins(self) -> List[str]:
        return [a.login for a in self.assignees]

    def latest_reviews(self) -> List[Review]:
        """Latest review per reviewer, newest first."""
        ordered = sorted(
            self.reviews,
            key=lambda r: r.submitted_at or datetime.min.replace(tzinfo=self.created_at.tzinfo),
            reverse=True,
        )
        seen: set[str] = set()
        latest = []
        for review in ordered:
            if review.user.login in seen:
                continue
            seen.add(review.user.login)
            latest.append(review)
        return latest

    def upgrade(self, detail: "PullRequest") -> "PullRequest":
        """Return a copy with the detail-only fields taken from `detail`."""
        return self.model_copy(
            update={
                "title": detail.title or self.title,
                "state": detail.state,
                "draft": detail.draft,
                "updated_at": detail.updated_at,
                "merged_at": detail.merged_at,
                "closed_at": detail.closed_at,
                "assignees": detail.assignees,
                "comments": detail.comments,
                "review_comments": detail.review_comments,
                "mergeable": detail.mergeable,
                "mergeable_state": detail.mergeable_state,
                "detail_loaded": True,
            }
        )

    def with_reviews(self, reviews: List[Review]) -> "PullRequest":
        return self.model_copy(update={"reviews": list(reviews)})

    def with_assignee(self, login: str, avatar_url: str | None = None) -> "PullRequest":
        """Copy with login appended to the assignees (no-op if present)."""
        if login in self.assignee_logins:
            return self
        account = Account(login=login, avatar_url=avatar_url or default_avatar_url(login))
        return self.model_copy(update={"assignees": [*self.assignees, account]})

    def without_assignee(self, login: str) -> "PullRequest":
        if login not in self.assignee_logins:
            return self
        return self.model_copy(update={"assignees": [a for a in self.assignees if a.login != login]})
