"""Repository and team lists: loading, saving and maintenance.

Lists live in YAML or JSON files (JSON is written back as JSON). The
maintenance helpers add repositories of an organization whose names match a
wildcard pattern, and drop archived or unreachable ones.
"""

import fnmatch
import json
import logging
import random
from pathlib import Path
from typing import Any, List

import yaml
from pydantic import ValidationError

from prwatch.adapters.base import GitPlatformAdapter, GitPlatformError
from prwatch.models import Repository, RepositoryList, TeamUser

LOG = logging.getLogger("prwatch.services.repo_catalog")

COLORS = [
    "#FF6B6B", "#4ECDC4", "#45B7D1", "#FFA07A", "#98D8C8",
    "#F7DC6F", "#BB8FCE", "#85C1E2", "#F8B88B", "#FAD7A0",
    "#ABEBC6", "#F9E79F", "#D7BDE2", "#A9CCE3", "#A3E4D7",
]


def _read_data(path: Path) -> Any:
    if not path.is_file():
        return None
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        LOG.error("Failed to read %s: %s", path, e)
        return None


def load_repository_list(path: Path) -> RepositoryList:
    """Load the repository list. Empty list if missing or invalid."""
    data = _read_data(Path(path))
    if not data:
        LOG.warning("No repositories loaded from %s", path)
        return RepositoryList()
    if isinstance(data, list):
        data = {"repos": data}
    try:
        repo_list = RepositoryList.model_validate(data)
    except ValidationError as e:
        LOG.error("Invalid repository list %s: %s", path, e)
        return RepositoryList()
    LOG.info("Repositories loaded: %d", len(repo_list.repos))
    return repo_list


def save_repository_list(path: Path, repo_list: RepositoryList) -> Path:
    """Write the repository list, keeping the default refresh interval."""
    path = Path(path)
    payload = {
        "defaultRefreshInterval": repo_list.default_refresh_interval,
        "repos": [r.model_dump(by_alias=True, exclude_none=True) for r in repo_list.repos],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        raw = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    else:
        raw = yaml.dump(payload, default_flow_style=False, allow_unicode=True, sort_keys=False, width=1000)
    path.write_text(raw, encoding="utf-8")
    LOG.info("Saved %d repositories to %s", len(repo_list.repos), path)
    return path


def load_users(path: Path) -> List[TeamUser]:
    """Load team users ({users: [...]} or a bare list). Empty if missing or invalid."""
    data = _read_data(Path(path))
    if isinstance(data, dict):
        data = data.get("users")
    if not data:
        LOG.warning("No users loaded from %s", path)
        return []
    users = []
    for item in data:
        try:
            users.append(TeamUser.model_validate(item))
        except ValidationError as e:
            LOG.warning("Skipping invalid user entry %r: %s", item, e)
    LOG.info("Users loaded: %d", len(users))
    return users


def add_repositories_by_pattern(
    adapter: GitPlatformAdapter,
    repo_list: RepositoryList,
    org: str,
    pattern: str,
    color: str | None = None,
    refresh_interval: int | None = None,
    replace: bool = False,
    rng: random.Random | None = None,
) -> RepositoryList:
    """Return a new list with the org's repositories whose name matches pattern.

    Add mode (default) keeps existing entries and skips duplicate URLs;
    replace mode keeps only the matched repositories.
    """
    rng = rng or random.Random()
    found = adapter.list_org_repositories(org)
    matched = [r for r in found if fnmatch.fnmatchcase(r.get("name", ""), pattern)]
    LOG.info("%d of %d repositories in %s match %r", len(matched), len(found), org, pattern)
    interval = refresh_interval if refresh_interval is not None else repo_list.default_refresh_interval
    new_repos = [
        Repository(
            url=r["html_url"],
            name=r["name"],
            background_color=color or rng.choice(COLORS),
            refresh_interval=interval,
        )
        for r in matched
    ]
    if replace:
        LOG.warning("Replacing repository list with %d repositories", len(new_repos))
        repos = new_repos
    else:
        existing = {r.url for r in repo_list.repos}
        unique = [r for r in new_repos if r.url not in existing]
        LOG.info("%d new repositories added (%d duplicates skipped)", len(unique), len(new_repos) - len(unique))
        repos = [*repo_list.repos, *unique]
    return RepositoryList(repos=repos, default_refresh_interval=repo_list.default_refresh_interval)


def remove_archived_repositories(
    adapter: GitPlatformAdapter,
    repo_list: RepositoryList,
) -> tuple[RepositoryList, List[Repository]]:
    """Drop archived repositories (and those that can no longer be read).

    Returns (remaining list, removed repositories).
    """
    active: List[Repository] = []
    removed: List[Repository] = []
    for repo in repo_list.repos:
        try:
            data = adapter.get_repository(repo.full_name)
        except (GitPlatformError, ValueError) as e:
            LOG.warning("%s - unreachable (%s), removing", repo.name, e)
            removed.append(repo)
            continue
        if data.get("archived"):
            LOG.info("%s - archived, removing", repo.name)
            removed.append(repo)
        else:
            active.append(repo)
    return RepositoryList(repos=active, default_refresh_interval=repo_list.default_refresh_interval), removed
