"""Data models for repositories, pull requests, users and cached state (Pydantic)."""

from prwatch.models.preferences import Preferences
from prwatch.models.pull_request import (
    Account,
    BranchRef,
    MergeableState,
    PRKey,
    PullRequest,
    Review,
    ReviewState,
    default_avatar_url,
)
from prwatch.models.refresh_state import RefreshState, pr_timestamp_key
from prwatch.models.repository import Repository, RepositoryList, parse_repo_url
from prwatch.models.user import TeamUser

__all__ = [
    "Account",
    "BranchRef",
    "MergeableState",
    "PRKey",
    "Preferences",
    "PullRequest",
    "RefreshState",
    "Repository",
    "RepositoryList",
    "Review",
    "ReviewState",
    "TeamUser",
    "default_avatar_url",
    "parse_repo_url",
    "pr_timestamp_key",
]
