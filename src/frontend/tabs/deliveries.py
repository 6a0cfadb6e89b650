"""Deliveries tab for one message, with JSON/CSV export."""

from __future__ import annotations

import csv
import json
from datetime import datetime
from typing import Any, Optional

from rich.text import Text
from textual import on
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Static

from ..constants import EXPORTS_DIR, STATUS_STYLES


def _fmt(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


class DeliveriesTab(Container):
    """Ledger rows of the selected message."""

    def __init__(self, storage, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._storage = storage
        self._message_id: Optional[int] = None
        self._rows: list[dict[str, Any]] = []
        self._table_ready = False

    def compose(self):
        with Vertical(id="deliveries-panel"):
            yield Static("No message selected", id="deliveries-title")
            yield DataTable(id="deliveries-table", cursor_type="row")
            with Horizontal(id="deliveries-actions"):
                yield Button("Export JSON", id="export-json", variant="success")
                yield Button("Export CSV", id="export-csv")
            yield Static("", id="deliveries-output")

    def on_mount(self) -> None:
        table = self.query_one("#deliveries-table", DataTable)
        table.add_column("id", key="id", width=6)
        table.add_column("recipient", key="recipient", width=10)
        table.add_column("status", key="status", width=8)
        table.add_column("attempts", key="attempts", width=8)
        table.add_column("updated", key="updated", width=19)
        table.add_column("next retry", key="next_retry", width=19)
        table.add_column("last error", key="last_error", width=40)
        table.zebra_stripes = True
        table.styles.height = "1fr"
        self.query_one("#deliveries-actions").styles.height = 3
        self._table_ready = True

    @property
    def message_id(self) -> Optional[int]:
        return self._message_id

    def show(self, message_id: int) -> None:
        self._message_id = message_id
        self.reload()

    def reload(self) -> None:
        if not self._table_ready or self._message_id is None:
            return
        table = self.query_one("#deliveries-table", DataTable)
        table.clear()
        entries = self._storage.list_deliveries(self._message_id)
        self._rows = []
        for entry in entries:
            self._rows.append(
                {
                    "id": entry.id,
                    "message_id": entry.message_id,
                    "recipient_id": entry.recipient_id,
                    "status": entry.status.value,
                    "attempt_count": entry.attempt_count,
                    "created_at": entry.created_at.isoformat(),
                    "updated_at": entry.updated_at.isoformat(),
                    "sent_at": entry.sent_at.isoformat() if entry.sent_at else None,
                    "last_error": entry.last_error,
                }
            )
            table.add_row(
                str(entry.id),
                str(entry.recipient_id),
                Text(entry.status.value, style=STATUS_STYLES.get(entry.status, "")),
                str(entry.attempt_count),
                _fmt(entry.updated_at),
                _fmt(entry.next_retry_at),
                entry.last_error or "",
                key=str(entry.id),
            )
        self.query_one("#deliveries-title", Static).update(
            f"Message #{self._message_id}: {len(entries)} deliveries"
        )

    @on(Button.Pressed, "#export-json")
    def _on_export_json(self) -> None:
        self._export_rows("json")

    @on(Button.Pressed, "#export-csv")
    def _on_export_csv(self) -> None:
        self._export_rows("csv")

    def _export_rows(self, fmt: str) -> None:
        if not self._rows:
            self._set_output("No deliveries to export.")
            return
        EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = EXPORTS_DIR / f"deliveries-{self._message_id}-{timestamp}.{fmt}"
        try:
            if fmt == "json":
                path.write_text(json.dumps(self._rows, indent=2, ensure_ascii=False), encoding="utf-8")
            else:
                with path.open("w", encoding="utf-8", newline="") as handle:
                    writer = csv.DictWriter(handle, fieldnames=list(self._rows[0].keys()))
                    writer.writeheader()
                    writer.writerows(self._rows)
            self._set_output(f"exported {len(self._rows)} deliveries to {path}")
        except OSError as exc:
            self._set_output(f"export failed: {exc.strerror or exc}")

    def _set_output(self, message: str) -> None:
        self.query_one("#deliveries-output", Static).update(message)
