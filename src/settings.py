"""Static configuration for alertrelay.

All user-editable settings (gateway, loop timing, retention, the routing
catalog) live in a single JSON file. Secrets stay in the environment.
"""

import json
import os
from datetime import timedelta

from core.config import DispatchConfig, LedgerConfig, RetryConfig, SenderConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("ALERTRELAY_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json; a missing file is a startup error."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

CONFIG = _CONFIG

# Where to store the SQLite database; relative paths resolve from the project root.
DB_PATH = _resolve_path(_CONFIG.get("database", {}).get("path", "alertrelay.db"))

# Gateway selection switches adapters without changing core logic.
# - method: "line", "bot" or "telegram"
# - line_format: "flex" or "text"
_gateway = _CONFIG.get("gateway", {})
GATEWAY_METHOD = _gateway.get("method", "line")
LINE_MESSAGE_FORMAT = _gateway.get("line_format", "flex")
GATEWAY_TIMEOUT_SECONDS = float(_gateway.get("timeout_seconds", 10))

_dispatch = _CONFIG.get("dispatch", {})
DISPATCH = DispatchConfig(
    dedup_window=timedelta(minutes=float(_dispatch.get("dedup_window_minutes", 5))),
    default_priority=_dispatch.get("default_priority", "normal"),
)

_retry = _CONFIG.get("retry", {})
LEDGER = LedgerConfig(
    max_attempts=int(_retry.get("max_attempts", 3)),
    retry_interval=timedelta(minutes=float(_retry.get("backoff_minutes", 5))),
)

_sender = _CONFIG.get("sender", {})
SENDER = SenderConfig(
    interval_seconds=float(_sender.get("interval_seconds", 5)),
    batch_size=int(_sender.get("batch_size", 50)),
    push_timeout_seconds=float(_sender.get("push_timeout_seconds", 15)),
)

RETRY = RetryConfig(
    interval_seconds=float(_retry.get("interval_seconds", 60)),
    batch_size=int(_retry.get("batch_size", 50)),
    item_delay_seconds=float(_retry.get("item_delay_seconds", 0.1)),
    push_timeout_seconds=float(_retry.get("push_timeout_seconds", 15)),
)

# Processed messages older than this are removed at startup; 0 keeps everything.
RETENTION_DAYS = int(_CONFIG.get("retention", {}).get("days", 0))

# Message types, groups and recipients used for routing.
CATALOG = _CONFIG.get("catalog", {})

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
