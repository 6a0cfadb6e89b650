"""Messages tab: recent alerts with their delivery progress."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.containers import Container, Vertical
from textual.message import Message as TextualMessage
from textual.widgets import DataTable, Static

from core.models import DeliveryStatus, MessageSummary

from ..constants import MESSAGE_LIMIT


class MessagesTab(Container):
    """Table of the newest messages; selecting a row opens its deliveries."""

    class Selected(TextualMessage):
        def __init__(self, message_id: int) -> None:
            super().__init__()
            self.message_id = message_id

    def __init__(self, storage, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._storage = storage
        self._summaries: dict[int, MessageSummary] = {}
        self._table_ready = False

    def compose(self):
        with Vertical(id="messages-panel"):
            yield DataTable(id="messages-table", cursor_type="row")
            yield Static("", id="messages-output")

    def on_mount(self) -> None:
        table = self.query_one("#messages-table", DataTable)
        table.add_column("id", key="id", width=6)
        table.add_column("created", key="created", width=19)
        table.add_column("type", key="type", width=10)
        table.add_column("title", key="title", width=36)
        table.add_column("source", key="source", width=22)
        table.add_column("sent", key="sent", width=5)
        table.add_column("pending", key="pending", width=8)
        table.add_column("failed", key="failed", width=7)
        table.add_column("done", key="done", width=5)
        table.zebra_stripes = True
        table.styles.height = "1fr"
        self._table_ready = True
        self.reload()

    def reload(self) -> None:
        if not self._table_ready:
            return
        table = self.query_one("#messages-table", DataTable)
        table.clear()
        summaries = self._storage.list_messages(MESSAGE_LIMIT)
        self._summaries = {summary.message.id: summary for summary in summaries}
        for summary in summaries:
            message = summary.message
            counts = summary.counts
            failed = counts.get(DeliveryStatus.FAILED, 0)
            table.add_row(
                str(message.id),
                message.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
                message.type_code,
                _clip(message.title, 36),
                _clip(" / ".join(v for v in (message.source.host, message.source.service) if v), 22),
                str(counts.get(DeliveryStatus.SENT, 0)),
                str(counts.get(DeliveryStatus.PENDING, 0)),
                Text(str(failed), style="bold red" if failed else ""),
                "yes" if message.processed_at else "",
                key=str(message.id),
            )
        self.query_one("#messages-output", Static).update(f"{len(summaries)} messages")

    def selected_summary(self) -> MessageSummary | None:
        table = self.query_one("#messages-table", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        if row_key.value is None:
            return None
        return self._summaries.get(int(row_key.value))

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.row_key.value is not None:
            self.post_message(self.Selected(int(event.row_key.value)))


def _clip(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."
