"""Watched repository model and the repository list file."""

import re
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_REPO_INTERVAL = 7200

_GITHUB_URL = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+)")


def parse_repo_url(url: str) -> Tuple[str, str]:
    """Return (owner, name) from a GitHub repository URL.

    Raises ValueError when the URL does not point at a GitHub repository.
    """
    match = _GITHUB_URL.search(url or "")
    if not match:
        raise ValueError(f"Invalid GitHub repository URL: {url!r}")
    owner, name = match.group(1), match.group(2)
    if name.endswith(".git"):
        name = name[:-4]
    return owner, name


class Repository(BaseModel):
    """Repository on the watch list; identity is the URL."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    url: str
    name: str
    background_color: str | None = Field(default=None, alias="backgroundColor")
    refresh_interval: int | None = Field(default=None, alias="refreshInterval", ge=1)

    @property
    def owner(self) -> str:
        return parse_repo_url(self.url)[0]

    @property
    def repo_name(self) -> str:
        return parse_repo_url(self.url)[1]

    @property
    def full_name(self) -> str:
        owner, name = parse_repo_url(self.url)
        return f"{owner}/{name}"


class RepositoryList(BaseModel):
    """Contents of the repository list file (repos.yaml / repos.json)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    repos: List[Repository] = Field(default_factory=list)
    default_refresh_interval: int = Field(default=DEFAULT_REPO_INTERVAL, alias="defaultRefreshInterval", ge=1)

    def by_url(self, url: str) -> Repository | None:
        for repo in self.repos:
            if repo.url == url:
                return repo
        return None
