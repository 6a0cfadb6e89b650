"""Shared alert formatting helpers.

Keeping formatting here prevents drift between gateways and keeps alerts
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from datetime import timezone
from typing import Any, Optional

from core.models import AlertContent

TYPE_COLORS = {
    "CRITICAL": "#DC3545",
    "WARNING": "#FFC107",
    "INFO": "#17A2B8",
    "OK": "#28A745",
    "RECOVERY": "#28A745",
}
DEFAULT_COLOR = "#6C757D"

PRIORITY_MARKERS = {"high": "🔴", "normal": "🟡", "low": "🟢"}

TITLE_LIMIT = 100
CONTENT_LIMIT = 500
ALT_TEXT_LIMIT = 400
TEXT_MESSAGE_LIMIT = 5000

DIVIDER = "──────────────"


def truncate(text: str, limit: int) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def header_color(type_code: str, color: Optional[str] = None) -> str:
    if color:
        return color
    return TYPE_COLORS.get(type_code.upper(), DEFAULT_COLOR)


def priority_marker(priority: str) -> str:
    return PRIORITY_MARKERS.get(priority, PRIORITY_MARKERS["normal"])


def _timestamp(alert: AlertContent) -> str:
    return alert.timestamp.astimezone().strftime("%H:%M:%S %d-%m-%Y").strip()


def _source_lines(alert: AlertContent) -> list[tuple[str, str]]:
    lines = []
    if alert.source_host:
        lines.append(("Host", alert.source_host))
    if alert.source_service:
        lines.append(("Service", alert.source_service))
    if alert.source_ip:
        lines.append(("IP", alert.source_ip))
    return lines


def _format_markdown(alert: AlertContent) -> str:
    """Create the Markdown body used by the Telegram user client."""

    def escape_md(value: str) -> str:
        for ch in r"*[`_":
            value = value.replace(ch, f"\\{ch}")
        return value

    lines = [
        f"{priority_marker(alert.priority)} **[{escape_md(alert.type_code)}]** {escape_md(truncate(alert.title, TITLE_LIMIT))}",
        DIVIDER,
        "",
        escape_md(truncate(alert.content, CONTENT_LIMIT)),
    ]
    source = _source_lines(alert)
    if source:
        lines.append("")
        lines.extend(f"**{label}:** {escape_md(value)}" for label, value in source)
    lines.extend([DIVIDER, f"[{_timestamp(alert)}]"])
    return truncate("\n".join(lines), TEXT_MESSAGE_LIMIT)


def _format_html(alert: AlertContent) -> str:
    """Create the HTML body used by the Telegram Bot API gateway."""

    parts = [
        f"{priority_marker(alert.priority)} <b>[{html.escape(alert.type_code)}]</b> "
        f"{html.escape(truncate(alert.title, TITLE_LIMIT))}",
        DIVIDER,
        "",
        html.escape(truncate(alert.content, CONTENT_LIMIT)),
    ]
    source = _source_lines(alert)
    if source:
        parts.append("")
        parts.extend(f"<b>{label}:</b> {html.escape(value)}" for label, value in source)
    parts.extend([DIVIDER, html.escape(f"[{_timestamp(alert)}]")])
    return "\n".join(parts)


def _format_text(alert: AlertContent) -> str:
    lines = [
        f"{priority_marker(alert.priority)} [{alert.type_code}] {truncate(alert.title, TITLE_LIMIT)}",
        "",
        truncate(alert.content, CONTENT_LIMIT),
    ]
    source = _source_lines(alert)
    if source:
        lines.append("")
        lines.extend(f"{label}: {value}" for label, value in source)
    lines.extend(["", f"[{_timestamp(alert)}]"])
    return truncate("\n".join(lines), TEXT_MESSAGE_LIMIT)


def _flex_source_row(label: str, value: str) -> dict[str, Any]:
    return {
        "type": "box",
        "layout": "horizontal",
        "margin": "sm",
        "contents": [
            {"type": "text", "text": f"{label}:", "size": "xs", "color": "#888888", "flex": 2},
            {"type": "text", "text": value, "size": "xs", "wrap": True, "flex": 5},
        ],
    }


def build_flex_message(alert: AlertContent) -> dict[str, Any]:
    """Build the LINE flex bubble: colored header, body, source rows, timestamp footer."""

    body: list[dict[str, Any]] = [
        {
            "type": "text",
            "text": truncate(alert.title, TITLE_LIMIT),
            "weight": "bold",
            "size": "lg",
            "wrap": True,
        },
        {"type": "separator", "margin": "md"},
        {
            "type": "text",
            "text": truncate(alert.content, CONTENT_LIMIT),
            "size": "sm",
            "wrap": True,
            "margin": "md",
        },
    ]
    source = _source_lines(alert)
    if source:
        body.append({"type": "separator", "margin": "md"})
        body.extend(_flex_source_row(label, value) for label, value in source)

    timestamp = alert.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    return {
        "type": "flex",
        "altText": truncate(f"[{alert.type_code}] {alert.title}", ALT_TEXT_LIMIT),
        "contents": {
            "type": "bubble",
            "size": "mega",
            "header": {
                "type": "box",
                "layout": "vertical",
                "backgroundColor": header_color(alert.type_code, alert.color),
                "paddingAll": "lg",
                "contents": [
                    {
                        "type": "text",
                        "text": f"{priority_marker(alert.priority)} [{alert.type_code}]",
                        "color": "#FFFFFF",
                        "size": "sm",
                        "weight": "bold",
                    }
                ],
            },
            "body": {
                "type": "box",
                "layout": "vertical",
                "spacing": "md",
                "paddingAll": "lg",
                "contents": body,
            },
            "footer": {
                "type": "box",
                "layout": "vertical",
                "paddingAll": "sm",
                "contents": [
                    {"type": "text", "text": timestamp, "color": "#888888", "size": "xs", "align": "end"}
                ],
            },
        },
    }


def format_notification(alert: AlertContent, mode: str) -> str:
    """Return the alert formatted for the requested text mode."""

    if mode == "markdown":
        return _format_markdown(alert)
    if mode == "html":
        return _format_html(alert)
    if mode == "text":
        return _format_text(alert)
    raise ValueError(f"Unsupported notification format: {mode}")
