"""
Gateway logging: one console handler, plus a rotating file when LOG_FILE is set.

Access tokens, client secrets and session credentials are never logged as
they are; `mask_secret` gives a short fingerprint where one helps.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional, Union


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx logs every request URL at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _to_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    *,
    level: Union[int, str] = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,  # 5 MB
    backup_count: int = 3,
) -> None:
    """
    Replace the root logger's handlers with the gateway's.

    Safe to call more than once; the app factory calls it on every build.
    """
    root = logging.getLogger()
    root.setLevel(_to_level(level))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Short, non-reversible fingerprint of a secret for log lines."""
    if not value:
        return "<none>"
    if len(value) <= visible * 2:
        return "***"
    return f"{value[:visible]}***"
