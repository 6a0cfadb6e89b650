"""Shared constants for the Textual UI."""

from __future__ import annotations

from pathlib import Path

from core.models import DeliveryStatus

ALERT_RED = "#DC3545"
PROJECT_ROOT = Path(__file__).resolve().parents[2]
EXPORTS_DIR = PROJECT_ROOT / "exports"

STATUS_STYLES = {
    DeliveryStatus.PENDING: "yellow",
    DeliveryStatus.SENT: "green",
    DeliveryStatus.FAILED: "bold red",
    DeliveryStatus.SKIPPED: "dim",
}

MESSAGE_LIMIT = 200
