"""Logging setup for prwatch.

Level comes from config.yaml (logging.level) or LOGGING_LEVEL; one of DEBUG, INFO,
WARNING, ERROR. Refresh cycles and assignments log at INFO, failed repositories and
failed saves at WARNING, per-request details at DEBUG.

Every root handler gets a TokenRedactingFilter so a GitHub token that slips into a
message (e.g. inside an exception text) is masked before it is written.
"""

import logging
import re

from prwatch.config import LoggingConfig, mask_token

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# urllib3 logs every connection at DEBUG and retries at WARNING
QUIET_LOGGERS = ("urllib3", "requests")

_TOKEN_RE = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})")


def _resolve_level(level: str) -> int:
    return LEVELS.get(level.upper().strip(), logging.INFO)


def redact_tokens(text: str) -> str:
    """Replace anything shaped like a GitHub token with its masked form."""
    return _TOKEN_RE.sub(lambda m: mask_token(m.group(0)), text)


class TokenRedactingFilter(logging.Filter):
    """Rewrites the rendered message of each record with tokens masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_tokens(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class PrWatchLogging:
    """Configures the root logger from LoggingConfig."""

    def __init__(self, config: LoggingConfig) -> None:
        self._level = _resolve_level(config.level)
        self._format = config.format or DEFAULT_FORMAT

    def setup(self) -> None:
        logging.basicConfig(level=self._level, format=self._format, force=True)
        for handler in logging.getLogger().handlers:
            if not any(isinstance(f, TokenRedactingFilter) for f in handler.filters):
                handler.addFilter(TokenRedactingFilter())
        # Above DEBUG the HTTP stack only adds noise
        quiet_level = logging.NOTSET if self._level <= logging.DEBUG else logging.WARNING
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(quiet_level)
