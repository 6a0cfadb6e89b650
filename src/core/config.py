"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class DispatchConfig:
    """Settings for the synchronous dispatch path."""

    dedup_window: timedelta = timedelta(minutes=5)
    default_priority: str = "normal"


@dataclass(frozen=True)
class LedgerConfig:
    """Attempt budget and backoff shared by both delivery loops."""

    max_attempts: int = 3
    retry_interval: timedelta = timedelta(minutes=5)


@dataclass(frozen=True)
class SenderConfig:
    """Settings for the pending-delivery drain loop."""

    interval_seconds: float = 5.0
    batch_size: int = 50
    push_timeout_seconds: float = 15.0


@dataclass(frozen=True)
class RetryConfig:
    """Settings for the transient-failure retry loop."""

    interval_seconds: float = 60.0
    batch_size: int = 50
    item_delay_seconds: float = 0.1
    push_timeout_seconds: float = 15.0
