from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.events import Key, Resize
from textual.screen import ModalScreen
from textual.widgets import Static

from dbpam.cell_editor import CellEditor, editable_text
from dbpam.config import QueryLibrary
from dbpam.controller import Controller, ControllerExit, NormalState
from dbpam.editor import BlockingEditor, ExternalEditor
from dbpam.errors import ClipboardError
from dbpam.exporter import Clipboard, SystemClipboard
from dbpam.grid import ResultGrid
from dbpam.log import get_logger
from dbpam.prompt import CommandExecutor
from dbpam.render import render_frame
from dbpam.ui_screens import CellDetailScreen
from dbpam.viewport import DEFAULT_COLUMN_CAP

TICK_SECONDS = 0.25


class _TerminalClipboard:
    """Copies through the terminal (OSC 52) and the OS clipboard."""

    def __init__(self, app: App[Any], system: Clipboard) -> None:
        self._app = app
        self._system = system

    def copy(self, text: str) -> None:
        self._app.copy_to_clipboard(text)
        try:
            self._system.copy(text)
        except ClipboardError as error:
            # The terminal copy already went out; many terminals honour it.
            get_logger(__name__).info("system_clipboard_unavailable", error=error.message)
            self._app.notify(
                f"{error.message}; copied through the terminal", severity="information"
            )


class ResultViewerApp(App[ControllerExit]):
    DEFAULT_CSS = """
    #frame {
        height: 1fr;
    }

    CellDetailScreen {
        align: center middle;
    }

    #cell-detail {
        width: 90%;
        height: 80%;
        padding: 1 2;
        background: rgb(20, 24, 30);
        border: heavy rgb(80, 120, 180);
    }

    #cell-detail-bar {
        height: 1;
        background: rgb(18, 60, 90);
        color: rgb(235, 245, 255);
    }

    #cell-detail-title {
        width: 1fr;
    }

    #cell-detail-size {
        width: auto;
        color: rgb(150, 170, 190);
    }

    #cell-detail-keys {
        height: 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "interrupt", "Quit", show=False, priority=True),
    ]

    def __init__(
        self,
        grid: ResultGrid,
        *,
        executor: CommandExecutor | None = None,
        library: QueryLibrary | None = None,
        row_limit: int = 0,
        column_cap: int = DEFAULT_COLUMN_CAP,
        auto_refresh: float = 0.0,
        editor: BlockingEditor | None = None,
        clipboard: Clipboard | None = None,
    ) -> None:
        super().__init__()
        self._editor = editor or ExternalEditor(self.suspend)
        self._clipboard = clipboard or _TerminalClipboard(self, SystemClipboard())
        self._pam_logger = get_logger(__name__)
        self.controller = Controller(
            grid,
            cell_editor=CellEditor(self._editor),
            clipboard=self._clipboard,
            editor=self._editor,
            executor=executor,
            library=library,
            row_limit=row_limit,
            column_cap=column_cap,
            auto_refresh=auto_refresh,
        )

    def compose(self) -> ComposeResult:
        yield Static("", id="frame")

    def on_mount(self) -> None:
        self.controller.resize(self.size.width, self.size.height)
        self._refresh_frame()
        self.set_interval(TICK_SECONDS, self._on_tick)

    def on_resize(self, event: Resize) -> None:
        self.controller.resize(event.size.width, event.size.height)
        self._refresh_frame()

    async def on_key(self, event: Key) -> None:
        if isinstance(self.screen, ModalScreen):
            return
        event.stop()
        event.prevent_default()
        if event.key == "enter" and isinstance(self.controller.state, NormalState):
            self._show_cell_detail()
            return
        key = event.character if event.is_printable and event.character else event.key
        await self._handle(key)

    async def action_interrupt(self) -> None:
        await self._handle("ctrl+c")

    def copy_text_to_clipboard(self, text: str) -> None:
        try:
            self._clipboard.copy(text)
        except ClipboardError as error:
            self.notify(error.message, severity="error")
            return
        self.notify("Yanked cell to clipboard.")

    async def _handle(self, key: str) -> None:
        await self.controller.handle_key(key)
        self._refresh_frame()
        self._exit_if_finished()

    async def _on_tick(self) -> None:
        if await self.controller.tick():
            self._refresh_frame()
        self._exit_if_finished()

    def _exit_if_finished(self) -> None:
        if self.controller.exit is not None:
            self._pam_logger.info("viewer_exit", reason=self.controller.exit.reason.value)
            self.exit(self.controller.exit)

    def _refresh_frame(self) -> None:
        self.query_one("#frame", Static).update(render_frame(self.controller))

    def _show_cell_detail(self) -> None:
        grid = self.controller.grid
        if grid.is_empty:
            self.controller.set_status("No cell to view.")
            self._refresh_frame()
            return
        viewport = self.controller.viewport
        cell = grid.cell(viewport.row, viewport.col)
        text = "NULL" if cell.is_null else editable_text(cell)
        title = f"{cell.column_name} ({cell.database_type or 'unknown'}) row {cell.row_index + 1}"
        self.push_screen(CellDetailScreen(text, title))
