from rich.text import Text

from dbpam.controller import Controller, PromptState, Severity
from dbpam.sqltext import collapse_whitespace
from dbpam.viewport import HORIZONTAL_PADDING

EMPTY_TEXT = "Nothing to show here..."
ELLIPSIS = "…"
SEPARATOR = "│"

_SEVERITY_STYLES = {
    Severity.INFO: "cyan",
    Severity.SUCCESS: "green",
    Severity.ERROR: "bold red",
}


def single_line(text: str) -> str:
    return text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ").replace("\t", " ")


def format_cell(text: str, width: int) -> str:
    text = single_line(text)
    if len(text) > width:
        return text[: max(width - 1, 0)] + ELLIPSIS
    return text.ljust(width)


def _clip(text: str, width: int) -> str:
    return format_cell(text, width).rstrip()


def status_line(controller: Controller) -> str:
    grid = controller.grid
    viewport = controller.viewport
    if grid.is_empty:
        position = f"Row 0/{grid.row_count}, Col 0/{grid.column_count}"
    else:
        position = (
            f"Row {viewport.row + 1}/{grid.row_count}, "
            f"Col {viewport.col + 1}/{grid.column_count}"
        )
    parts = [f"{grid.elapsed:.3f}s", position, controller.mode_hint()]
    if controller.status is not None:
        parts.append(controller.status.text)
    return " | ".join(parts)


def status_text(controller: Controller, width: int) -> Text:
    line = status_line(controller)
    text = Text(" " + _clip(line, width))
    if controller.status is not None:
        # Offset into the unclipped line; clipping only cuts from the right.
        banner_start = 1 + len(line) - len(controller.status.text)
        text.stylize(_SEVERITY_STYLES[controller.status.severity], banner_start)
    return text


def render_frame(controller: Controller) -> Text:
    grid = controller.grid
    viewport = controller.viewport
    width = max(viewport.terminal_width - HORIZONTAL_PADDING, 1)
    frame = Text(no_wrap=True, overflow="crop")

    title = grid.title or "pam"
    if grid.table_name:
        title = f"{title} ({grid.table_name})"
    frame.append(" " + _clip(title, width) + "\n", style="bold")
    shown_sql = grid.last_executed or grid.display_sql or controller.original_sql
    frame.append(" " + _clip(collapse_whitespace(shown_sql), width) + "\n", style="dim")

    columns = viewport.visible_columns() if grid.columns else []
    header = Text(" ")
    rule = Text(" ")
    for position, index in enumerate(columns):
        if position:
            header.append(SEPARATOR, style="dim")
            rule.append("┼", style="dim")
        header.append(format_cell(grid.columns[index].name, viewport.widths[index]), style="bold cyan")
        rule.append("─" * viewport.widths[index], style="dim")
    frame.append_text(header)
    frame.append("\n")
    frame.append_text(rule)
    frame.append("\n")

    if grid.is_empty:
        frame.append(" " + EMPTY_TEXT + "\n", style="italic")
    for row_index in viewport.visible_row_indices():
        line = Text(" ")
        for position, index in enumerate(columns):
            if position:
                line.append(SEPARATOR, style="dim")
            cell = grid.rows[row_index][index]
            style = "magenta" if cell.is_null else ""
            if row_index == viewport.row and index == viewport.col:
                style = "reverse bold"
            elif viewport.visual and viewport.is_selected(row_index, index):
                style = "reverse"
            line.append(format_cell(cell.display_value, viewport.widths[index]), style=style)
        frame.append_text(line)
        frame.append("\n")

    if not grid.is_empty:
        cell = grid.cell(viewport.row, viewport.col)
        preview = f"{cell.column_name}: {cell.display_value}"
        frame.append(" " + _clip(preview, width) + "\n", style="italic")

    frame.append_text(status_text(controller, width))

    if isinstance(controller.state, PromptState):
        frame.append("\n")
        frame.append(" ;" + controller.state.buffer + "█", style="bold")
    return frame
