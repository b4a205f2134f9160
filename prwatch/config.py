"""Configuration loading from YAML, saved user settings and environment.

Secrets (tokens) are taken from environment variables or from files
(Docker secrets), then from the user settings saved by the dashboard, then
from the project config file. Never put real tokens in config files
committed to the repo.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG = logging.getLogger("prwatch.config")

DEFAULT_REFRESH_INTERVAL = 60
MIN_REFRESH_INTERVAL = 10
MAX_REFRESH_INTERVAL = 600
USER_CONFIG_FILE = "user_config.yaml"

_TOKEN_PATTERNS = (
    re.compile(r"^gh[pousr]_[A-Za-z0-9]{30,}$"),
    re.compile(r"^github_pat_[A-Za-z0-9_]{40,}$"),
    re.compile(r"^[0-9a-f]{40}$"),
)


def _read_secret(env_key: str, file_env_key: str) -> str | None:
    """Read secret from env var or from file path in env (e.g. Docker
    secrets)."""
    value = _current_env.get(env_key)
    if value:
        return value.strip()
    file_path = _current_env.get(file_env_key)
    if file_path:
        return Path(file_path).read_text().strip()
    return None


# Injected by load_config so validators can read env/file
_current_env: dict[str, str] = {}


def mask_token(token: str | None) -> str:
    """Return a log-safe rendition of a token (first and last 4 chars)."""
    if not token:
        return "<empty>"
    if len(token) <= 12:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


def validate_token_format(token: str) -> bool:
    """True when token looks like a GitHub personal access token."""
    token = (token or "").strip()
    return any(p.match(token) for p in _TOKEN_PATTERNS)


class GitHubConfig(BaseSettings):
    """GitHub API settings."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")

    token: str | None = Field(default=None, description="PAT; prefer env or secret file")
    api_url: str = Field(default="https://api.github.com", description="API base URL")
    timeout: int = Field(default=30, ge=1, description="HTTP timeout in seconds")


class SchedulerConfig(BaseSettings):
    """Refresh scheduler (polling) settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    tick_seconds: int = Field(default=30, ge=1, description="How often due repositories are re-evaluated")
    max_batch: int = Field(default=50, ge=1, description="Max repositories refreshed per tick")
    jitter: float = Field(default=0.1, ge=0.0, lt=1.0, description="Relative jitter applied to intervals")
    default_repo_interval: int = Field(
        default=7200, ge=1, description="Per-repo interval when the repo list gives none"
    )


class StorageConfig(BaseSettings):
    """Local persistence settings."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    data_dir: str = Field(default=".prwatch", description="Directory for cached state and user settings")


class CatalogConfig(BaseSettings):
    """Where the repository and team lists are read from."""

    model_config = SettingsConfigDict(env_prefix="CATALOG_", extra="ignore")

    repos_path: str = Field(default="config/repos.yaml", description="Repository list (YAML or JSON)")
    users_path: str = Field(default="config/users.yaml", description="Team user list (YAML or JSON)")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )


class UserSettings(BaseModel):
    """Settings edited by the user and saved to the data dir."""

    github_token: str = Field(..., description="GitHub personal access token")
    refresh_interval: int = Field(
        default=DEFAULT_REFRESH_INTERVAL,
        ge=MIN_REFRESH_INTERVAL,
        le=MAX_REFRESH_INTERVAL,
        description="Global refresh interval in seconds",
    )

    @field_validator("github_token")
    @classmethod
    def _token_not_empty(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("token must not be empty")
        if not validate_token_format(value):
            raise ValueError("token does not look like a GitHub personal access token")
        return value

    def __repr__(self) -> str:
        return f"UserSettings(github_token={mask_token(self.github_token)!r}, refresh_interval={self.refresh_interval})"

    __str__ = __repr__


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore")

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    refresh_interval: int = Field(default=DEFAULT_REFRESH_INTERVAL, ge=1, description="Global refresh interval")
    token_source: str = Field(default="default", description="Where the token came from: env, user, file, default")

    @property
    def github_token_resolved(self) -> str:
        """Resolved token, empty string when none is configured."""
        t = self.github.token
        if t and not t.startswith("${"):
            return t
        return ""

    @property
    def data_dir(self) -> Path:
        return Path(self.storage.data_dir)


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            key = value[2:-1].strip()
            return _current_env.get(key, value)
        if value.startswith("$") and not value.startswith("${"):
            key = value[1:].strip()
            return _current_env.get(key, value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def user_config_path(data_dir: Path) -> Path:
    return Path(data_dir) / USER_CONFIG_FILE


def load_user_config(path: Path) -> dict[str, Any]:
    """Read saved user settings as a raw dict (empty when missing or
    invalid)."""
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        LOG.warning("Failed to read user config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def save_user_config(path: Path, settings: UserSettings) -> bool:
    """Persist user settings. Returns False (and logs) on failure."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        raw = yaml.dump(settings.model_dump(mode="json"), default_flow_style=False, sort_keys=False)
        path.write_text(raw, encoding="utf-8")
    except OSError as e:
        LOG.warning("Failed to save user config to %s: %s", path, e)
        return False
    try:
        path.chmod(0o600)
    except OSError:
        LOG.debug("Could not restrict permissions on %s", path)
    LOG.info(
        "Saved user config to %s (token=%s, refresh_interval=%s)",
        path,
        mask_token(settings.github_token),
        settings.refresh_interval,
    )
    return True


def _env_refresh_interval() -> int | None:
    raw = _current_env.get("REFRESH_INTERVAL")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        LOG.warning("Ignoring invalid REFRESH_INTERVAL=%r", raw)
        return None


def load_config(config_path: Path | None = None, user_config: Path | None = None) -> AppConfig:
    """Load config from YAML file, saved user settings and environment.

    Token precedence: GITHUB_TOKEN / GH_TOKEN / GITHUB_TOKEN_FILE, then the
    saved user config, then the project config file, then empty.
    refresh_interval follows the same order and falls back to 60.
    """
    global _current_env

    _current_env = dict(os.environ)

    path = config_path or Path("config.yaml")
    raw: dict[str, Any] = {}
    if path.is_file():
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            LOG.warning("Invalid config file %s, using defaults: %s", path, e)
            raw = {}
        raw = _substitute_env(raw)

    github_raw = dict(raw.get("github") or {})
    storage = StorageConfig(**(raw.get("storage") or {}))
    scheduler = SchedulerConfig(**(raw.get("scheduler") or {}))
    catalog = CatalogConfig(**(raw.get("catalog") or {}))
    logging_cfg = LoggingConfig(**(raw.get("logging") or {}))

    saved = load_user_config(user_config or user_config_path(Path(storage.data_dir)))

    file_token = github_raw.get("token")
    if isinstance(file_token, str) and file_token.startswith("${"):
        file_token = None

    env_token = _read_secret("GITHUB_TOKEN", "GITHUB_TOKEN_FILE") or _read_secret("GH_TOKEN", "GH_TOKEN_FILE")
    if env_token:
        token, source = env_token, "env"
    elif saved.get("github_token"):
        token, source = str(saved["github_token"]).strip(), "user"
    elif file_token:
        token, source = str(file_token).strip(), "file"
    else:
        token, source = "", "default"
    github_raw["token"] = token or None

    refresh_interval = (
        _env_refresh_interval()
        or saved.get("refresh_interval")
        or raw.get("refresh_interval")
        or DEFAULT_REFRESH_INTERVAL
    )

    try:
        github = GitHubConfig(**github_raw)
    except ValidationError as e:
        LOG.warning("Invalid github section in %s, using defaults: %s", path, e)
        github = GitHubConfig(token=token or None)

    return AppConfig(
        github=github,
        scheduler=scheduler,
        storage=storage,
        catalog=catalog,
        logging=logging_cfg,
        refresh_interval=int(refresh_interval),
        token_source=source,
    )
