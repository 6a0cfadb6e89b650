from __future__ import annotations

from datetime import datetime, timezone

import pytest

from adapters.notification_formatting import (
    CONTENT_LIMIT,
    DEFAULT_COLOR,
    build_flex_message,
    format_notification,
    header_color,
    truncate,
)
from core.models import AlertContent


def _alert(**overrides) -> AlertContent:
    values = dict(
        type_code="CRITICAL",
        title="Disk <full>",
        content="90% used on /var",
        priority="high",
        timestamp=datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc),
        source_host="db-01",
        source_service="postgres",
    )
    values.update(overrides)
    return AlertContent(**values)


def test_truncate() -> None:
    assert truncate("short", 10) == "short"
    assert truncate("x" * 20, 10) == "xxxxxxx..."
    assert truncate("", 10) == ""


def test_header_color_by_type() -> None:
    assert header_color("CRITICAL") == "#DC3545"
    assert header_color("recovery") == "#28A745"
    assert header_color("CUSTOM") == DEFAULT_COLOR
    assert header_color("CRITICAL", "#B00020") == "#B00020"


def test_html_escapes_and_lists_source() -> None:
    text = format_notification(_alert(), "html")
    assert text.startswith("🔴 <b>[CRITICAL]</b> Disk &lt;full&gt;")
    assert "<b>Host:</b> db-01" in text
    assert "<b>Service:</b> postgres" in text
    assert "IP" not in text


def test_markdown_escapes_markup() -> None:
    text = format_notification(_alert(title="load_avg *high*", priority="low"), "markdown")
    assert text.startswith("🟢 **[CRITICAL]** load\\_avg \\*high\\*")


def test_text_mode_truncates_content() -> None:
    text = format_notification(_alert(content="y" * 2000, source_host=None, source_service=None), "text")
    assert "y" * (CONTENT_LIMIT - 3) + "..." in text
    assert "Host" not in text


def test_unknown_mode() -> None:
    with pytest.raises(ValueError):
        format_notification(_alert(), "pdf")


def test_flex_message_layout() -> None:
    flex = build_flex_message(_alert(source_ip="10.0.0.5"))
    assert flex["type"] == "flex"
    assert flex["altText"] == "[CRITICAL] Disk <full>"
    bubble = flex["contents"]
    assert bubble["header"]["backgroundColor"] == "#DC3545"
    assert bubble["header"]["contents"][0]["text"] == "🔴 [CRITICAL]"
    rows = [item for item in bubble["body"]["contents"] if item["type"] == "box"]
    assert [row["contents"][1]["text"] for row in rows] == ["db-01", "postgres", "10.0.0.5"]
    assert bubble["footer"]["contents"][0]["text"] == "2024-05-01 08:30:00 UTC"


def test_flex_header_uses_configured_type_color() -> None:
    flex = build_flex_message(_alert(type_code="DISK", color="#6610F2"))
    assert flex["contents"]["header"]["backgroundColor"] == "#6610F2"
