from typing import Protocol, runtime_checkable

from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Static


@runtime_checkable
class _AppWithClipboard(Protocol):
    def copy_text_to_clipboard(self, text: str) -> None: ...


class CellDetailScreen(ModalScreen[None]):
    """Full, unwrapped value of the cell under the cursor."""

    BINDINGS = [
        ("escape", "dismiss", "Close"),
        ("q", "dismiss", "Close"),
        ("y", "yank", "Yank Cell"),
    ]

    def __init__(self, cell_text: str, title_text: str) -> None:
        super().__init__()
        self._cell_text = cell_text
        self._title_text = title_text

    def compose(self) -> ComposeResult:
        line_count = self._cell_text.count("\n") + 1
        with Vertical(id="cell-detail"):
            with Horizontal(id="cell-detail-bar"):
                yield Static(self._title_text, id="cell-detail-title", markup=False)
                yield Static(
                    f"{len(self._cell_text)} chars, {line_count} lines",
                    id="cell-detail-size",
                )
            yield Static(
                "[bold cyan]y[/] Yank  [bold cyan]esc/q[/] Back", id="cell-detail-keys"
            )
            with VerticalScroll(id="cell-detail-scroll"):
                yield Static(self._cell_text, id="cell-detail-text", markup=False)

    def on_mount(self) -> None:
        self.query_one("#cell-detail-scroll", VerticalScroll).focus()

    def action_yank(self) -> None:
        app = self.app
        if isinstance(app, _AppWithClipboard):
            app.copy_text_to_clipboard(self._cell_text)
