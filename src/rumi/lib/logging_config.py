"""Logging setup for rumi.

Every module obtains its logger through ``get_logger(__name__)`` so that all
records live under the ``rumi`` namespace. ``setup_logging`` is called once by
the CLI before a command runs.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable

ROOT_LOGGER_NAME = "rumi"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"
REDACTED = "***"


class RedactingFilter(logging.Filter):
    """Mask secret values (passwords, passphrases) in log records."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: set[str] = {s for s in secrets if s}

    def add_secret(self, secret: str | None) -> None:
        """Register another value that must never appear in logs."""
        if secret:
            self._secrets.add(secret)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self._secrets:
            redacted = redacted.replace(secret, REDACTED)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


_redactor = RedactingFilter()


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the rumi namespace."""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def register_secret(secret: str | None) -> None:
    """Register a credential so it is masked in every rumi log record."""
    _redactor.add_secret(secret)


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    level: str | None = None,
) -> None:
    """Configure the rumi logger hierarchy.

    Args:
        verbose: Enable DEBUG output (remote commands are logged)
        quiet: Only log errors
        level: Explicit level name from settings; verbose/quiet take precedence
    """
    if verbose:
        resolved = logging.DEBUG
    elif quiet:
        resolved = logging.ERROR
    elif level:
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    else:
        resolved = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(resolved)

    handler = next(
        (h for h in root.handlers if getattr(h, "_rumi_handler", False)), None
    )
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler._rumi_handler = True  # type: ignore[attr-defined]
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        handler.addFilter(_redactor)
        root.addHandler(handler)
    handler.setLevel(resolved)

    # paramiko is chatty at INFO (banner, auth negotiation)
    logging.getLogger("paramiko").setLevel(
        logging.DEBUG if verbose else logging.WARNING
    )
