"""Team member shown in the assignment menu and the per-user statistics."""

from pydantic import BaseModel, ConfigDict, model_validator

from prwatch.models.pull_request import default_avatar_url


class TeamUser(BaseModel):
    """Known team member (read-only reference data)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    username: str
    name: str = ""
    avatar: str = ""

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: object) -> object:
        if isinstance(data, dict) and data.get("username"):
            data = dict(data)
            if not data.get("avatar"):
                data["avatar"] = default_avatar_url(data["username"])
            if not data.get("name"):
                data["name"] = data["username"]
        return data
