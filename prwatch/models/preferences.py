"""Small persisted preference blob, kept apart from the refresh state."""

from typing import List

from pydantic import BaseModel, Field


class Preferences(BaseModel):
    """UI preferences stored under the preferences key."""

    selected_repos: List[str] | None = Field(
        default=None,
        description="Names of repositories shown in the live view; None means all",
    )

    model_config = {"extra": "ignore"}
