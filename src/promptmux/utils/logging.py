"""Logging setup for PromptMux: one rotating log file, optional console echo."""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
from pathlib import Path

__all__ = ["SecretMaskingFilter", "get_log_path", "reset_logging", "setup_logging"]

LOG_FILENAME = "promptmux.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_DEFAULT_LOG_DIR = Path.home() / ".promptmux" / "logs"
# Third-party loggers that would otherwise drown our own debug output.
_CHATTY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
# OpenAI ("sk-...") and Anthropic ("sk-ant-...") style keys.
_SECRET_PATTERN = re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}")

_log_path: Path | None = None


class SecretMaskingFilter(logging.Filter):
    """Masks API-key-looking tokens in formatted log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _SECRET_PATTERN.sub(_mask, message)
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
    """Install the PromptMux handlers on the root logger and return the log file.

    Repeated calls are no-ops unless ``force`` is set. ``PROMPTMUX_LOG_DIR``
    relocates the log directory when ``log_dir`` is not given.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = Path(log_dir or os.environ.get("PROMPTMUX_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / LOG_FILENAME

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    masking = SecretMaskingFilter()
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(masking)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    quiet_level = max(level, logging.WARNING)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _log_path = path
    return path


def reset_logging() -> None:
    """Detach and close the handlers installed by :func:`setup_logging`."""

    global _log_path
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    _log_path = None


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` ran."""

    return _log_path


def _mask(match: re.Match[str]) -> str:
    token = match.group(0)
    return f"{token[:5]}...{token[-2:]}"
