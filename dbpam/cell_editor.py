from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
import json
from typing import Any
from uuid import UUID

from dbpam.editor import BlockingEditor
from dbpam.errors import ConcurrencyError, EditCancelled, UsageError
from dbpam.grid import Cell, ResultGrid
from dbpam.handle import DatabaseHandle, Dialect
from dbpam.log import get_logger
from dbpam.synthesizer import (
    Statement,
    build_delete,
    build_row_count,
    build_update,
    validate_mutation,
)

_TRUE_WORDS = {"true", "t", "yes", "y", "1"}
_FALSE_WORDS = {"false", "f", "no", "n", "0"}


def _json_document(value: Any) -> Any | None:
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str) and value.lstrip()[:1] in {"{", "["}:
        try:
            document = json.loads(value)
        except ValueError:
            return None
        if isinstance(document, (dict, list)):
            return document
    return None


def editable_text(cell: Cell) -> str:
    """Text handed to the editor: empty for NULL, JSON pretty-printed."""
    if cell.is_null:
        return ""
    document = _json_document(cell.raw_value)
    if document is not None:
        return json.dumps(document, indent=2, ensure_ascii=False)
    return cell.display_value


def coerce_value(text: str, previous: Any) -> Any:
    """Convert editor text to the Python type of the value it replaces.

    Strictly typed drivers reject a str for an integer, date or uuid
    parameter; text that does not parse as the previous type is passed
    through unchanged.
    """
    if text == "":
        return None
    if isinstance(previous, bool):
        lowered = text.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        return text
    try:
        if isinstance(previous, int):
            return int(text)
        if isinstance(previous, float):
            return float(text)
        if isinstance(previous, Decimal):
            return Decimal(text)
        # datetime is a date subclass
        if isinstance(previous, datetime):
            return datetime.fromisoformat(text)
        if isinstance(previous, date):
            return date.fromisoformat(text)
        if isinstance(previous, time):
            return time.fromisoformat(text)
        if isinstance(previous, UUID):
            return UUID(text)
    except (ValueError, InvalidOperation):
        return text
    return text


class CellEditor:
    def __init__(self, editor: BlockingEditor) -> None:
        self._editor = editor
        self._logger = get_logger(__name__)

    async def edit_cell(self, grid: ResultGrid, row_index: int, column_index: int) -> str:
        handle = self._require_mutable(grid)
        cell = grid.cell(row_index, column_index)
        initial = editable_text(cell)
        suffix = ".json" if _json_document(cell.raw_value) is not None else ".txt"
        edited = self._editor.edit(initial, suffix).rstrip()
        if edited == initial.rstrip():
            raise EditCancelled("No changes made")
        new_value = coerce_value(edited, cell.raw_value)
        await self._update(grid, handle, cell, new_value)
        return "Updated successfully"

    async def clear_cell(self, grid: ResultGrid, row_index: int, column_index: int) -> str:
        handle = self._require_mutable(grid)
        cell = grid.cell(row_index, column_index)
        await self._update(grid, handle, cell, None)
        return "Cell cleared"

    async def delete_row(self, grid: ResultGrid, row_index: int) -> str:
        handle = self._require_mutable(grid)
        row = grid.rows[row_index]
        statement = build_delete(handle, grid.table_name, row)
        await self._run_guarded(handle, statement, grid.table_name, row, None)
        grid.remove_row(row_index)
        grid.last_executed = statement.display
        self._logger.info("row_deleted", table=grid.table_name, row=row_index)
        return "Row deleted"

    def _require_mutable(self, grid: ResultGrid) -> DatabaseHandle:
        if grid.is_empty:
            raise UsageError("Nothing to edit")
        if grid.read_only or not grid.table_name:
            raise UsageError("Editing needs a single-table query")
        if grid.handle is None:
            raise UsageError("No database connection")
        return grid.handle

    async def _update(
        self, grid: ResultGrid, handle: DatabaseHandle, cell: Cell, new_value: Any
    ) -> None:
        row = grid.rows[cell.row_index]
        statement = build_update(handle, grid.table_name, cell, new_value, row)
        await self._run_guarded(handle, statement, grid.table_name, row, cell.column_index)
        grid.patch_cell(cell.row_index, cell.column_index, new_value)
        grid.last_executed = statement.display
        self._logger.info(
            "cell_updated", table=grid.table_name, column=cell.column_name, row=cell.row_index
        )

    async def _run_guarded(
        self,
        handle: DatabaseHandle,
        statement: Statement,
        table_name: str,
        row: list[Cell],
        skip_index: int | None,
    ) -> None:
        validate_mutation(handle.dialect(), statement.sql)
        if handle.dialect() is Dialect.CLICKHOUSE:
            # ALTER TABLE mutations report no row count; check the filter first.
            count = build_row_count(handle, table_name, row, skip_index)
            cursor = await handle.execute_rows(count.sql, *count.args)
            matched = int(cursor.rows[0][0]) if cursor.rows else 0
            if matched != 1:
                raise ConcurrencyError(matched)
            await handle.execute(statement.sql, *statement.args)
            return
        affected = await handle.execute(statement.sql, *statement.args)
        if affected != 1:
            self._logger.warning("mutation_mismatch", sql=statement.sql, affected=affected)
            raise ConcurrencyError(affected)
