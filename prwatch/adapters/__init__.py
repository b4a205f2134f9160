"""Git platform adapters."""

from prwatch.adapters.base import (
    AuthorizationError,
    GitPlatformAdapter,
    GitPlatformError,
    NetworkError,
    RateLimitError,
    is_sso_error,
)
from prwatch.adapters.github import GitHubAdapter

__all__ = [
    "AuthorizationError",
    "GitHubAdapter",
    "GitPlatformAdapter",
    "GitPlatformError",
    "NetworkError",
    "RateLimitError",
    "is_sso_error",
]
