"""Logging configuration for Wordloom.

Every record written through the handlers installed by :func:`setup_logging`
carries a ``request_id`` attribute naming the completion request or preview
run active in the current context (``-`` outside of one). Values passed to
:func:`register_secret` are masked before a record reaches any handler.
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

__all__ = [
    "RequestContextFilter",
    "SecretMaskingFilter",
    "bound_request",
    "current_request_id",
    "get_log_path",
    "get_logger",
    "register_secret",
    "setup_logging",
]

_DEFAULT_LOG_DIR = Path.home() / ".wordloom" / "logs"
_LOG_FILENAME = "wordloom.log"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | [%(request_id)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_NO_REQUEST = "-"
_MASK = "****"
_MIN_SECRET_CHARS = 4

_REQUEST_ID: contextvars.ContextVar[str | None] = contextvars.ContextVar("wordloom_request_id", default=None)
_SECRETS: set[str] = set()
_CONFIGURED = False
_LOG_PATH: Path | None = None


class RequestContextFilter(logging.Filter):
    """Stamp records with the request bound in the emitting context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _REQUEST_ID.get() or _NO_REQUEST
        return True


class SecretMaskingFilter(logging.Filter):
    """Replace registered secrets in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not _SECRETS:
            return True
        message = record.getMessage()
        masked = message
        # Longest first so a secret containing another is masked whole.
        for secret in sorted(_SECRETS, key=len, reverse=True):
            masked = masked.replace(secret, _MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install a rotating file handler (plus stderr when *console*) on the root logger.

    Repeated calls are no-ops unless *force* is set; the log file path is
    returned either way.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    directory = Path(log_dir or os.environ.get("WORDLOOM_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / _LOG_FILENAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(RequestContextFilter())
        handler.addFilter(SecretMaskingFilter())

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    quiet_level = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


@contextmanager
def bound_request(request_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block (and tasks it spawns) with *request_id*."""

    reset_token = _REQUEST_ID.set(request_id or None)
    try:
        yield
    finally:
        _REQUEST_ID.reset(reset_token)


def current_request_id() -> str | None:
    """Return the request bound by the innermost :func:`bound_request`, if any."""

    return _REQUEST_ID.get()


def register_secret(value: str | None) -> None:
    """Mask *value* in all subsequent log output. Very short values are ignored."""

    secret = (value or "").strip()
    if len(secret) >= _MIN_SECRET_CHARS:
        _SECRETS.add(secret)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the log file configured by :func:`setup_logging`, if any."""

    return _LOG_PATH
