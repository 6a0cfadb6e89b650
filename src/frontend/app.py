"""Main Textual app for the alertrelay delivery monitor."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Center, Container, Horizontal, Vertical
from textual.widgets import Button, ContentSwitcher, Footer, Static, Tab, Tabs

from core.models import DeliveryStatus

from .constants import ALERT_RED
from .modals import RequeueConfirmScreen
from .tabs.deliveries import DeliveriesTab
from .tabs.messages import MessagesTab


class MonitorApp(App):
    """Read-mostly view over the message store and delivery ledger."""

    CSS = """
    #header { height: auto; padding: 0 1; }
    #header-row { height: auto; }
    #header-right { align-horizontal: right; }
    .subtle { color: $text-muted; }
    #tabs-bar { height: 3; }
    #content { height: 1fr; }
    .modal-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: thick $warning;
        background: $surface;
    }
    .modal-title { text-style: bold; }
    .modal-actions { height: 3; margin-top: 1; }
    RequeueConfirmScreen { align: center middle; }
    """

    BINDINGS = [
        ("r", "refresh", "Refresh"),
        ("u", "requeue", "Requeue failed"),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, storage, ledger, db_path: str = "", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._storage = storage
        self._ledger = ledger
        self._db_path = db_path

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            with Horizontal(id="header-row"):
                with Vertical(id="header-left"):
                    yield Static(self._title_text(), id="title")
                with Vertical(id="header-right"):
                    yield Static(f"db: {self._db_path}", classes="subtle")
                    yield Static("", id="header-status", classes="subtle")
                    yield Button("Refresh", id="refresh-btn")

        with Container(id="tabs-bar"):
            with Center(id="tabs-center"):
                yield Tabs(
                    Tab("Messages", id="messages"),
                    Tab("Deliveries", id="deliveries"),
                    id="tabs",
                )

        with ContentSwitcher(id="content", initial="messages"):
            yield MessagesTab(self._storage, id="messages")
            yield DeliveriesTab(self._storage, id="deliveries")
        yield Footer()

    def on_tabs_tab_activated(self, event: Tabs.TabActivated) -> None:
        if event.tab.id:
            self.query_one("#content", ContentSwitcher).current = event.tab.id

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "refresh-btn":
            self.action_refresh()

    def on_messages_tab_selected(self, event: MessagesTab.Selected) -> None:
        self.query_one(DeliveriesTab).show(event.message_id)
        self.query_one("#tabs", Tabs).active = "deliveries"

    def action_refresh(self) -> None:
        self.query_one(MessagesTab).reload()
        self.query_one(DeliveriesTab).reload()
        self.query_one("#header-status", Static).update("refreshed")

    def action_requeue(self) -> None:
        message_id = self._current_message_id()
        if message_id is None:
            self.notify("Select a message first", severity="warning")
            return
        failed = self._storage.delivery_counts(message_id).get(DeliveryStatus.FAILED, 0)
        if not failed:
            self.notify(f"Message #{message_id} has no failed deliveries")
            return
        self.push_screen(
            RequeueConfirmScreen(message_id, failed),
            lambda confirmed: self._handle_requeue(message_id, confirmed),
        )

    def _handle_requeue(self, message_id: int, confirmed: bool | None) -> None:
        if not confirmed:
            return
        count = self._ledger.requeue_failed(message_id)
        self.notify(f"Requeued {count} deliveries for message #{message_id}")
        self.action_refresh()

    def _current_message_id(self) -> int | None:
        switcher = self.query_one("#content", ContentSwitcher)
        if switcher.current == "deliveries":
            return self.query_one(DeliveriesTab).message_id
        summary = self.query_one(MessagesTab).selected_summary()
        return summary.message.id if summary else None

    @staticmethod
    def _title_text() -> Text:
        return Text.assemble(
            ("ALERT", ALERT_RED),
            ("RELAY > Delivery Monitor", "bold"),
        )
