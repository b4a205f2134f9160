"""Live-view filtering, searching and sorting of the canonical PR set."""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Sequence

from pydantic import BaseModel

from prwatch.models import PullRequest, Repository

STATUS_OPEN = "open"
STATUS_DRAFT = "draft"
STATUS_ALL = "all"

SORT_DATE = "date"
SORT_TITLE = "title"
SORT_REPO = "repo"

_DIGITS = re.compile(r"\d+")


@dataclass(frozen=True)
class PRViewFilter:
    """What the live view shows.

    status: open (non-draft), draft or all. selected_repos holds repository
    names; None shows every repository. With descending=True (the default)
    dates sort newest first and titles/repository names alphabetically;
    descending=False reverses that order.
    """

    status: str = STATUS_OPEN
    unassigned_only: bool = False
    search: str = ""
    sort_by: str = SORT_DATE
    descending: bool = True
    selected_repos: FrozenSet[str] | None = None


class ViewCounts(BaseModel):
    total: int
    open: int
    draft: int
    unassigned: int


def _repo_names(repositories: Sequence[Repository]) -> Dict[str, str]:
    return {r.url: r.name for r in repositories}


def _status_matches(pr: PullRequest, status: str) -> bool:
    if status == STATUS_OPEN:
        return not pr.draft
    if status == STATUS_DRAFT:
        return pr.draft
    return True


def matches_search(pr: PullRequest, repo_name: str, search: str) -> bool:
    """Search by PR number ("#424", "PR424") or by title, author, repository and branches."""
    term = search.lower().strip()
    if not term:
        return True
    digits = _DIGITS.search(term)
    if digits and digits.group(0) in str(pr.number):
        return True
    if term.isdigit():
        return False
    return any(
        term in field.lower()
        for field in (pr.title, pr.user.login, repo_name, pr.head.ref, pr.base.ref)
    )


def _selected(prs: Sequence[PullRequest], names: Dict[str, str], view: PRViewFilter) -> List[PullRequest]:
    if view.selected_repos is None:
        return list(prs)
    return [pr for pr in prs if names.get(pr.repository_url, "") in view.selected_repos]


def filter_pull_requests(
    prs: Sequence[PullRequest],
    repositories: Sequence[Repository],
    view: PRViewFilter,
) -> List[PullRequest]:
    """PRs visible under `view`, in their original order."""
    names = _repo_names(repositories)
    out = []
    for pr in _selected(prs, names, view):
        if not _status_matches(pr, view.status):
            continue
        if view.unassigned_only and pr.assignees:
            continue
        if view.search and not matches_search(pr, names.get(pr.repository_url, ""), view.search):
            continue
        out.append(pr)
    return out


def sort_pull_requests(
    prs: Sequence[PullRequest],
    repositories: Sequence[Repository],
    sort_by: str = SORT_DATE,
    descending: bool = True,
) -> List[PullRequest]:
    names = _repo_names(repositories)
    if sort_by == SORT_TITLE:
        ordered = sorted(prs, key=lambda pr: pr.title.lower())
    elif sort_by == SORT_REPO:
        ordered = sorted(prs, key=lambda pr: names.get(pr.repository_url, "").lower())
    else:
        ordered = sorted(prs, key=lambda pr: pr.created_at, reverse=True)
    if not descending:
        ordered.reverse()
    return ordered


def apply_view(
    prs: Sequence[PullRequest],
    repositories: Sequence[Repository],
    view: PRViewFilter,
) -> List[PullRequest]:
    """Filter then sort."""
    visible = filter_pull_requests(prs, repositories, view)
    return sort_pull_requests(visible, repositories, view.sort_by, view.descending)


def view_counts(
    prs: Sequence[PullRequest],
    repositories: Sequence[Repository],
    view: PRViewFilter,
) -> ViewCounts:
    """Counters for the status buttons; unassigned follows the status filter."""
    selected = _selected(prs, _repo_names(repositories), view)
    return ViewCounts(
        total=len(selected),
        open=sum(1 for pr in selected if not pr.draft),
        draft=sum(1 for pr in selected if pr.draft),
        unassigned=sum(1 for pr in selected if _status_matches(pr, view.status) and not pr.assignees),
    )
