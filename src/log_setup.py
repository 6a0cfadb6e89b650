"""Logging setup for the alertrelay commands.

Reads the optional "logging" section of config.json. Gateway credentials
come from the environment, so their values are masked in every formatted
record when "redact" is enabled.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MASK = "***"

# Client libraries that are chatty at INFO.
NOISY_LOGGERS = ("telethon",)


class SecretMaskingFormatter(logging.Formatter):
    """Formatter that replaces known secret values with a mask."""

    def __init__(self, secrets: Iterable[str], fmt: str = LOG_FORMAT, datefmt: Optional[str] = DATE_FORMAT) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        for secret in self._secrets:
            text = text.replace(secret, MASK)
        return text


def secret_values(redact: dict) -> list[str]:
    """Values of the environment variables listed under redact.patterns."""

    if not redact.get("enabled", False):
        return []
    return [os.environ[name] for name in redact.get("patterns", []) if os.environ.get(name)]


def _file_handler(file_cfg: dict, project_root: str) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/alertrelay.log")
    if not os.path.isabs(path):
        path = os.path.join(project_root, path)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def configure_logging(config: Optional[dict], project_root: str) -> list[logging.Handler]:
    """Attach console and rotating-file handlers to the root logger.

    Returns the handlers that were added; nothing is touched when logging is
    disabled in config.
    """

    config = config or {}
    if not config.get("enabled", False):
        return []

    load_dotenv()
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    formatter = SecretMaskingFormatter(secret_values(config.get("redact", {})))

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_file_handler(file_cfg, project_root))

    root = logging.getLogger()
    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if level < logging.WARNING:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return handlers
