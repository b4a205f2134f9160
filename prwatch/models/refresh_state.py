"""Persisted refresh state: timestamps and the PR cache used on cold start."""

from typing import Dict, List

from pydantic import BaseModel, Field

from prwatch.models.pull_request import PullRequest


def pr_timestamp_key(repository_url: str, number: int) -> str:
    """Key of a PR in RefreshState.pr_last_updates."""
    return f"{repository_url}#{number}"


class RefreshState(BaseModel):
    """State stored under the refresh_state key after every merge."""

    last_updates: Dict[str, int] = Field(
        default_factory=dict,
        description="Repository URL -> last successful update (epoch millis)",
    )
    pr_last_updates: Dict[str, int] = Field(
        default_factory=dict,
        description="'<repo url>#<number>' -> last update of that PR (epoch millis)",
    )
    cached_prs: Dict[str, List[PullRequest]] = Field(
        default_factory=dict,
        description="Repository URL -> PRs known at the last merge",
    )

    model_config = {"extra": "ignore"}
