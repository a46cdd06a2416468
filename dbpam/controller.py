from dataclasses import dataclass, replace
from enum import Enum
import time
from typing import Awaitable, Callable

from dbpam.cell_editor import CellEditor
from dbpam.config import QueryLibrary, SavedQuery
from dbpam.editor import BlockingEditor
from dbpam.errors import EditCancelled, MaterializeError, PamError, UsageError
from dbpam.exporter import Clipboard, ExportFormat, export_selection
from dbpam.grid import ResultGrid, load_grid
from dbpam.log import get_logger
from dbpam.prompt import QUERY_COMMANDS, CommandExecutor, PromptCommand, parse_command_line
from dbpam.sqltext import collapse_whitespace, is_unfiltered_mutation
from dbpam.viewport import DEFAULT_COLUMN_CAP, Viewport, column_widths

DEFAULT_STATUS_TTL = 2.0


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class StatusMessage:
    text: str
    severity: Severity
    expires_at: float


@dataclass(frozen=True)
class NormalState:
    pass


@dataclass(frozen=True)
class VisualState:
    pass


@dataclass(frozen=True)
class DeleteState:
    target: str = "cell"


@dataclass(frozen=True)
class ConfirmState:
    description: str
    command: PromptCommand


@dataclass(frozen=True)
class PromptState:
    buffer: str = ""


@dataclass(frozen=True)
class ExportState:
    pass


ControllerState = NormalState | VisualState | DeleteState | ConfirmState | PromptState | ExportState


class ExitReason(str, Enum):
    QUIT = "quit"
    RERUN = "rerun"
    FATAL = "fatal"


@dataclass(frozen=True)
class ControllerExit:
    reason: ExitReason
    sql: str = ""
    error: str = ""


_CANCEL_KEYS = {"escape", "ctrl+c"}


class Controller:
    """Owns the grid and viewport and turns keys into state changes.

    Keys arrive one at a time; ``handle_key`` awaits any database call,
    editor session or clipboard write before the next key is taken.
    """

    def __init__(
        self,
        grid: ResultGrid,
        *,
        cell_editor: CellEditor,
        clipboard: Clipboard,
        editor: BlockingEditor,
        executor: CommandExecutor | None = None,
        library: QueryLibrary | None = None,
        row_limit: int = 0,
        terminal_width: int = 80,
        terminal_height: int = 24,
        column_cap: int = DEFAULT_COLUMN_CAP,
        status_ttl: float = DEFAULT_STATUS_TTL,
        auto_refresh: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.grid = grid
        self.viewport = Viewport.for_grid(grid, terminal_width, terminal_height, column_cap)
        self.state: ControllerState = NormalState()
        self.status: StatusMessage | None = None
        self.exit: ControllerExit | None = None
        self.original_sql = grid.template_sql or grid.display_sql
        self._cell_editor = cell_editor
        self._clipboard = clipboard
        self._editor = editor
        self._executor = executor
        self._library = library
        self._row_limit = row_limit
        self._column_cap = column_cap
        self._status_ttl = status_ttl
        self._auto_refresh = auto_refresh
        self._clock = clock
        self._next_refresh = clock() + auto_refresh
        self._logger = get_logger(__name__)
        self._handlers: dict[type, Callable[[str], Awaitable[None]]] = {
            NormalState: self._on_normal_key,
            VisualState: self._on_visual_key,
            DeleteState: self._on_delete_key,
            ConfirmState: self._on_confirm_key,
            PromptState: self._on_prompt_key,
            ExportState: self._on_export_key,
        }
        self._navigation: dict[str, Callable[[Viewport], Viewport]] = {
            "h": lambda viewport: viewport.move(0, -1),
            "left": lambda viewport: viewport.move(0, -1),
            "j": lambda viewport: viewport.move(1, 0),
            "down": lambda viewport: viewport.move(1, 0),
            "k": lambda viewport: viewport.move(-1, 0),
            "up": lambda viewport: viewport.move(-1, 0),
            "l": lambda viewport: viewport.move(0, 1),
            "right": lambda viewport: viewport.move(0, 1),
            "0": Viewport.first_column,
            "_": Viewport.first_column,
            "home": Viewport.first_column,
            "$": Viewport.last_column,
            "end": Viewport.last_column,
            "g": Viewport.first_row,
            "G": Viewport.last_row,
            "pageup": Viewport.page_up,
            "ctrl+u": Viewport.page_up,
            "pagedown": Viewport.page_down,
            "ctrl+d": Viewport.page_down,
        }

    @property
    def finished(self) -> bool:
        return self.exit is not None

    def set_status(self, text: str, severity: Severity = Severity.INFO) -> None:
        self.status = StatusMessage(text, severity, self._clock() + self._status_ttl)

    def resize(self, terminal_width: int, terminal_height: int) -> None:
        self.viewport = self.viewport.resize(terminal_width, terminal_height)

    async def handle_key(self, key: str) -> None:
        if self.finished:
            return
        handler = self._handlers[type(self.state)]
        try:
            await handler(key)
        except MaterializeError as error:
            self._logger.error("materialize_failed", error=error.message)
            self.exit = ControllerExit(ExitReason.FATAL, error=error.message)
        except PamError as error:
            self.set_status(error.message, Severity(error.severity))
            self.viewport = self.viewport.clear_visual()
            self.state = NormalState()

    async def tick(self) -> bool:
        """Expire the banner and run the optional auto-refresh. True if anything changed."""
        now = self._clock()
        changed = False
        if self.status is not None and now >= self.status.expires_at:
            self.status = None
            changed = True
        if self._auto_refresh > 0 and now >= self._next_refresh:
            self._next_refresh = now + self._auto_refresh
            if isinstance(self.state, NormalState):
                try:
                    changed = await self.refresh() or changed
                except MaterializeError as error:
                    self.exit = ControllerExit(ExitReason.FATAL, error=error.message)
                except PamError as error:
                    self.set_status(error.message, Severity.ERROR)
                    changed = True
        return changed

    async def refresh(self) -> bool:
        """Re-run the query behind the current grid, keeping the cursor where it was."""
        grid = self.grid
        if grid.handle is None or grid.read_only or not grid.source_sql:
            return False
        refreshed = await load_grid(
            grid.handle,
            grid.source_sql,
            self._row_limit,
            args=grid.args,
            display_sql=grid.display_sql,
            table_name=grid.table_name,
            primary_key=grid.primary_key,
            title=grid.title,
        )
        refreshed.template_sql = grid.template_sql
        self.grid = refreshed
        self.viewport = self.viewport.with_shape(
            refreshed.row_count, column_widths(refreshed, self._column_cap)
        )
        return True

    def replace_grid(self, grid: ResultGrid) -> None:
        self.grid = grid
        self.original_sql = grid.template_sql or grid.display_sql
        self.viewport = Viewport.for_grid(
            grid,
            self.viewport.terminal_width,
            self.viewport.terminal_height,
            self._column_cap,
        )

    def mode_hint(self) -> str:
        state = self.state
        if isinstance(state, VisualState):
            return "VISUAL y:copy esc:exit"
        if isinstance(state, DeleteState):
            return f"DELETE {state.target} r:row c:cell enter:confirm esc:cancel"
        if isinstance(state, ConfirmState):
            return f"CONFIRM {state.description} y:run"
        if isinstance(state, PromptState):
            return "PROMPT enter:run esc:cancel"
        if isinstance(state, ExportState):
            return "COPY c:csv t:tsv j:json m:markdown h:html s:sql esc:cancel"
        if self.grid.mutable and not self.grid.is_empty:
            return "e:edit d:delete v:visual y:copy ;:prompt q:quit"
        return "read-only v:visual y:copy ;:prompt q:quit"

    async def _on_normal_key(self, key: str) -> None:
        move = self._navigation.get(key)
        if move is not None:
            self.viewport = move(self.viewport)
            return
        if key == "v":
            self.viewport = self.viewport.toggle_visual()
            self.state = VisualState() if self.viewport.visual else NormalState()
        elif key == "y":
            if self.grid.is_empty:
                raise UsageError("Nothing to copy")
            self.state = ExportState()
        elif key == "e":
            await self._edit_cell()
        elif key == "d":
            self._require_editable()
            self.viewport = self.viewport.clear_visual()
            self.state = DeleteState("cell")
        elif key == ";":
            self.viewport = self.viewport.clear_visual()
            self.state = PromptState()
        elif key == "E":
            self._edit_and_rerun()
        elif key == "s":
            self._save_current_query()
        elif key in {"q", "ctrl+c"}:
            self.exit = ControllerExit(ExitReason.QUIT)

    async def _on_visual_key(self, key: str) -> None:
        if key in {"escape", "v"}:
            self.viewport = self.viewport.clear_visual()
            self.state = NormalState()
            return
        await self._on_normal_key(key)
        if isinstance(self.state, VisualState) and not self.viewport.visual:
            self.state = NormalState()

    async def _on_delete_key(self, key: str) -> None:
        if key in _CANCEL_KEYS:
            self.state = NormalState()
            self.set_status("Delete cancelled")
        elif key == "r":
            self.state = DeleteState("row")
        elif key == "c":
            self.state = DeleteState("cell")
        elif key == "enter":
            target = self.state.target if isinstance(self.state, DeleteState) else "cell"
            self.state = NormalState()
            if target == "row":
                banner = await self._cell_editor.delete_row(self.grid, self.viewport.row)
            else:
                banner = await self._cell_editor.clear_cell(
                    self.grid, self.viewport.row, self.viewport.col
                )
            self._reshape()
            self.set_status(banner, Severity.SUCCESS)

    async def _on_confirm_key(self, key: str) -> None:
        state = self.state
        self.state = NormalState()
        if key in {"y", "enter"} and isinstance(state, ConfirmState):
            await self._dispatch(state.command)
            return
        raise EditCancelled("Cancelled")

    async def _on_prompt_key(self, key: str) -> None:
        buffer = self.state.buffer if isinstance(self.state, PromptState) else ""
        if key in _CANCEL_KEYS:
            self.state = NormalState()
        elif key == "enter":
            self.state = NormalState()
            await self._submit_prompt(buffer)
        elif key == "backspace":
            self.state = PromptState(buffer[:-1])
        elif key == "space":
            self.state = PromptState(buffer + " ")
        elif len(key) == 1:
            self.state = PromptState(buffer + key)

    async def _on_export_key(self, key: str) -> None:
        export_format = ExportFormat.from_key(key)
        self.state = NormalState()
        if export_format is None:
            self.viewport = self.viewport.clear_visual()
            if key not in _CANCEL_KEYS:
                self.set_status(f"Unknown copy format: {key}")
            return
        try:
            banner = export_selection(self.grid, self.viewport, export_format, self._clipboard)
        finally:
            self.viewport = self.viewport.clear_visual()
        self.set_status(banner, Severity.SUCCESS)

    async def _submit_prompt(self, buffer: str) -> None:
        command = parse_command_line(buffer, self.grid.table_name)
        if command is None:
            return
        if command.name == "save":
            self._save_query(command.text.strip())
            return
        if self._executor is None:
            raise UsageError("Command executor not available")
        if command.name in QUERY_COMMANDS and is_unfiltered_mutation(command.text):
            self.state = ConfirmState(
                description=f"{collapse_whitespace(command.text)} affects every row",
                command=command,
            )
            return
        await self._dispatch(command)

    async def _dispatch(self, command: PromptCommand) -> None:
        if self._executor is None:
            raise UsageError("Command executor not available")
        grid = await self._executor.execute(command)
        if grid is not None:
            self.replace_grid(grid)
            self.set_status("View updated", Severity.SUCCESS)
            return
        await self.refresh()
        self.set_status("Command executed", Severity.SUCCESS)

    async def _edit_cell(self) -> None:
        self._require_editable()
        self.viewport = self.viewport.clear_visual()
        self.state = NormalState()
        banner = await self._cell_editor.edit_cell(
            self.grid, self.viewport.row, self.viewport.col
        )
        self._reshape()
        self.set_status(banner, Severity.SUCCESS)

    def _edit_and_rerun(self) -> None:
        if not self.original_sql:
            raise UsageError("No query to edit")
        edited = self._editor.edit(self.original_sql, ".sql").strip()
        if not edited or edited == self.original_sql.strip():
            raise EditCancelled("No changes made")
        self.exit = ControllerExit(ExitReason.RERUN, sql=edited)

    def _save_current_query(self) -> None:
        if self.grid.title and not self.grid.read_only:
            self._save_query(self.grid.title)
            return
        self.state = PromptState("save ")

    def _save_query(self, name: str) -> None:
        if self._library is None:
            raise UsageError("Query library not available")
        if not name:
            raise UsageError("Usage: save <name>")
        if not self.original_sql:
            raise UsageError("No query to save")
        existing = self._library.find(name)
        query = SavedQuery(
            name=name,
            sql=self.original_sql,
            table_name=self.grid.table_name,
            primary_key=self.grid.primary_key,
        )
        if existing is not None:
            query = replace(query, id=existing.id)
        saved = self._library.save(query)
        self.grid.title = saved.name
        self.set_status(f"Saved query {saved.name} (#{saved.id})", Severity.SUCCESS)

    def _require_editable(self) -> None:
        if self.grid.is_empty:
            raise UsageError("Nothing to edit")
        if not self.grid.mutable:
            raise UsageError("Editing needs a single-table query")

    def _reshape(self) -> None:
        self.viewport = self.viewport.with_shape(
            self.grid.row_count, column_widths(self.grid, self._column_cap)
        )
