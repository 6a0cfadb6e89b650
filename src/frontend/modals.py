"""Modal dialogs for the Textual monitor."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Static


class RequeueConfirmScreen(ModalScreen[bool]):
    """Confirm resetting the failed deliveries of a message."""

    def __init__(self, message_id: int, failed: int) -> None:
        super().__init__()
        self._message_id = message_id
        self._failed = failed

    def compose(self) -> ComposeResult:
        yield Container(
            Static("Requeue failed deliveries?", classes="modal-title"),
            Static(
                f"Message #{self._message_id}: {self._failed} failed deliveries get a fresh attempt budget.",
                classes="modal-body",
            ),
            Horizontal(
                Button("Requeue", id="requeue-confirm", variant="warning"),
                Button("Cancel", id="requeue-cancel"),
                classes="modal-actions",
            ),
            classes="modal-dialog",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "requeue-confirm")
