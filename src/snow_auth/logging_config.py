"""Logging configuration for snow-auth.

All package loggers hang off a single ``snow_auth`` logger that writes
to stderr, so stdout stays free for authorization URLs and command
output. Messages pass through a filter that scrubs token material
(authorization codes, access and refresh tokens, client secrets) before
they are emitted.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from snow_auth.config import Config

LOGGER_NAME = "snow_auth"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"

SCRUBBED_PARAMS = ("code", "access_token", "refresh_token", "client_secret", "code_verifier")

_SCRUB_PATTERN = re.compile(
    r"(?P<key>\b(?:" + "|".join(SCRUBBED_PARAMS) + r"))(?P<sep>=|\"?\s*:\s*\"?)(?P<value>[^&\s\"',}]+)"
)

_handler: logging.Handler | None = None


class TokenScrubFilter(logging.Filter):
    """Replace token-bearing parameter values in log messages with ``***``."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = scrub(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


def scrub(text: str) -> str:
    """Mask the values of token-bearing parameters in ``text``.

    Handles both ``key=value`` query syntax and ``"key": "value"`` JSON.
    """
    return _SCRUB_PATTERN.sub(lambda m: f"{m['key']}{m['sep']}***", text)


def setup_logging(config: Config) -> None:
    """Attach the stderr handler to the package logger.

    Safe to call more than once; later calls only change the level.

    Args:
        config: Configuration providing log_level
    """
    global _handler

    level = logging.getLevelName(config.log_level.value)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        _handler.addFilter(TokenScrubFilter())
        logger.addHandler(_handler)
        logger.propagate = False

    _handler.setLevel(level)
    logger.debug("Log level set to %s", config.log_level.value)


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package namespace."""
    if name == LOGGER_NAME or name.startswith(f"{LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Detach the package handler so tests can configure logging again."""
    global _handler
    logger = logging.getLogger(LOGGER_NAME)
    if _handler is not None:
        logger.removeHandler(_handler)
        _handler = None
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
