import csv
from dataclasses import dataclass
from enum import Enum
import html
import io
import json
from typing import Protocol

import pyperclip

from dbpam.errors import ClipboardError, UsageError
from dbpam.grid import ResultGrid
from dbpam.log import get_logger
from dbpam.synthesizer import sql_literal
from dbpam.viewport import Viewport


class ExportFormat(Enum):
    CSV = ("c", "CSV")
    TSV = ("t", "TSV")
    JSON = ("j", "JSON")
    MARKDOWN = ("m", "Markdown")
    HTML = ("h", "HTML")
    SQL = ("s", "SQL")

    def __init__(self, key: str, label: str) -> None:
        self.key = key
        self.label = label

    @classmethod
    def from_key(cls, key: str) -> "ExportFormat | None":
        for export_format in cls:
            if export_format.key == key:
                return export_format
        return None


@dataclass(frozen=True)
class Selection:
    headers: list[str]
    rows: list[list[str | None]]
    table_name: str = ""

    @property
    def cell_count(self) -> int:
        return sum(len(row) for row in self.rows)


class Clipboard(Protocol):
    def copy(self, text: str) -> None: ...


class SystemClipboard:
    def copy(self, text: str) -> None:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as error:
            raise ClipboardError(f"Clipboard unavailable: {error}") from error


def selection_from(grid: ResultGrid, viewport: Viewport) -> Selection:
    bounds = viewport.selection_bounds()
    if bounds is None:
        raise UsageError("Nothing to copy")
    row_start, row_end, col_start, col_end = bounds
    headers = grid.headers()[col_start : col_end + 1]
    rows = [
        [
            None if cell.is_null else cell.display_value
            for cell in grid.rows[row_index][col_start : col_end + 1]
        ]
        for row_index in range(row_start, row_end + 1)
    ]
    return Selection(headers=headers, rows=rows, table_name=grid.table_name)


def _text(value: str | None) -> str:
    return "NULL" if value is None else value


def _csv(selection: Selection, delimiter: str = ",") -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(selection.headers)
    for row in selection.rows:
        writer.writerow([_text(value) for value in row])
    return buffer.getvalue()


def _tsv(selection: Selection) -> str:
    lines = ["\t".join(selection.headers)]
    lines.extend("\t".join(_text(value) for value in row) for row in selection.rows)
    return "\n".join(lines) + "\n"


def _json(selection: Selection) -> str:
    records = [
        {header: _text(value) for header, value in zip(selection.headers, row)}
        for row in selection.rows
    ]
    return json.dumps(records, indent=2, ensure_ascii=False)


def _markdown_cell(value: str) -> str:
    return value.replace("\\", "\\\\").replace("|", "\\|").replace("\n", "<br>")


def _markdown(selection: Selection) -> str:
    lines = [
        "| " + " | ".join(_markdown_cell(header) for header in selection.headers) + " |",
        "| " + " | ".join("---" for _ in selection.headers) + " |",
    ]
    for row in selection.rows:
        lines.append("| " + " | ".join(_markdown_cell(_text(value)) for value in row) + " |")
    return "\n".join(lines) + "\n"


_HTML_STYLE = (
    "table{border-collapse:collapse;font-family:sans-serif}"
    "th,td{border:1px solid #ccc;padding:4px 8px;text-align:left}"
    "th{background:#f0f0f0}"
    "tr.odd td{background:#fafafa}"
)


def _html(selection: Selection) -> str:
    lines = [
        "<!doctype html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<style>{_HTML_STYLE}</style>",
        "</head>",
        "<body>",
        "<table>",
        "<thead>",
        "<tr>" + "".join(f"<th>{html.escape(header)}</th>" for header in selection.headers) + "</tr>",
        "</thead>",
        "<tbody>",
    ]
    for index, row in enumerate(selection.rows):
        row_class = "odd" if index % 2 else "even"
        cells = "".join(f"<td>{html.escape(_text(value))}</td>" for value in row)
        lines.append(f'<tr class="{row_class}">{cells}</tr>')
    lines.extend(["</tbody>", "</table>", "</body>", "</html>"])
    return "\n".join(lines) + "\n"


def _sql(selection: Selection) -> str:
    if not selection.table_name:
        raise UsageError("SQL export needs a single-table query")
    columns = ", ".join(selection.headers)
    statements = [
        f"INSERT INTO {selection.table_name} ({columns}) VALUES "
        f"({', '.join(sql_literal(value) for value in row)});"
        for row in selection.rows
    ]
    return "\n".join(statements) + "\n"


_FORMATTERS = {
    ExportFormat.CSV: _csv,
    ExportFormat.TSV: _tsv,
    ExportFormat.JSON: _json,
    ExportFormat.MARKDOWN: _markdown,
    ExportFormat.HTML: _html,
    ExportFormat.SQL: _sql,
}


def format_selection(selection: Selection, export_format: ExportFormat) -> str:
    return _FORMATTERS[export_format](selection)


def export_selection(
    grid: ResultGrid,
    viewport: Viewport,
    export_format: ExportFormat,
    clipboard: Clipboard,
) -> str:
    """Copy the selection (or the focused cell) and return the banner text."""
    selection = selection_from(grid, viewport)
    text = format_selection(selection, export_format)
    clipboard.copy(text)
    count = selection.cell_count
    noun = "cell" if count == 1 else "cells"
    get_logger(__name__).info("selection_exported", format=export_format.label, cells=count)
    return f"Copied {count} {noun} as {export_format.label} to clipboard"
