from dataclasses import dataclass, field, replace
import json
import time
from typing import Any, Sequence

from dbpam.errors import MaterializeError, PamError
from dbpam.handle import ColumnInfo, DatabaseHandle, RowCursor
from dbpam.log import get_logger
from dbpam.sqltext import extract_table_name

NULL_TEXT = "NULL"


@dataclass(frozen=True)
class Cell:
    column_name: str
    column_index: int
    row_index: int
    display_value: str
    raw_value: Any = None
    database_type: str = ""

    @property
    def is_null(self) -> bool:
        return self.raw_value is None


def display_value(value: Any) -> str:
    if value is None:
        return NULL_TEXT
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _scan_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8")
    return value


def make_cell(column: ColumnInfo, column_index: int, row_index: int, value: Any) -> Cell:
    raw_value = _scan_value(value)
    return Cell(
        column_name=column.name,
        column_index=column_index,
        row_index=row_index,
        display_value=display_value(raw_value),
        raw_value=raw_value,
        database_type=column.database_type,
    )


@dataclass
class ResultGrid:
    columns: list[ColumnInfo]
    rows: list[list[Cell]]
    source_sql: str = ""
    display_sql: str = ""
    table_name: str = ""
    primary_key: str = ""
    handle: DatabaseHandle | None = None
    elapsed: float = 0.0
    title: str = ""
    last_executed: str = ""
    read_only: bool = field(default=False)
    # Arguments bound to source_sql's placeholders.
    args: list[Any] = field(default_factory=list)
    # Query text with its :name markers, kept for save and edit.
    template_sql: str = ""

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.columns)

    @property
    def is_empty(self) -> bool:
        return not self.rows or not self.columns

    @property
    def mutable(self) -> bool:
        return bool(self.table_name) and self.handle is not None and not self.read_only

    def headers(self) -> list[str]:
        return [column.name for column in self.columns]

    def cell(self, row_index: int, column_index: int) -> Cell:
        return self.rows[row_index][column_index]

    def patch_cell(self, row_index: int, column_index: int, raw_value: Any) -> Cell:
        """Replace one cell's value in place, keeping its position and type."""
        previous = self.rows[row_index][column_index]
        updated = replace(
            previous,
            raw_value=raw_value,
            display_value=display_value(raw_value),
        )
        self.rows[row_index][column_index] = updated
        return updated

    def remove_row(self, row_index: int) -> list[Cell]:
        removed = self.rows.pop(row_index)
        for index in range(row_index, len(self.rows)):
            self.rows[index] = [replace(cell, row_index=index) for cell in self.rows[index]]
        return removed


def materialize(
    cursor: RowCursor,
    *,
    source_sql: str = "",
    display_sql: str = "",
    table_name: str = "",
    primary_key: str = "",
    handle: DatabaseHandle | None = None,
    elapsed: float = 0.0,
    title: str = "",
) -> ResultGrid:
    columns = list(cursor.columns)
    rows: list[list[Cell]] = []
    try:
        for row_index, values in enumerate(cursor.rows):
            if len(values) != len(columns):
                raise MaterializeError(
                    f"Row {row_index + 1} has {len(values)} values for {len(columns)} columns"
                )
            rows.append(
                [
                    make_cell(column, column_index, row_index, value)
                    for column_index, (column, value) in enumerate(zip(columns, values))
                ]
            )
    except UnicodeDecodeError as error:
        raise MaterializeError(f"Failed to decode value: {error}") from error
    except (TypeError, ValueError) as error:
        raise MaterializeError(f"Failed to read row {len(rows) + 1}: {error}") from error
    return ResultGrid(
        columns=columns,
        rows=rows,
        source_sql=source_sql,
        display_sql=display_sql or source_sql,
        table_name=table_name,
        primary_key=primary_key,
        handle=handle,
        elapsed=elapsed,
        title=title,
    )


def grid_from_values(
    headers: Sequence[str],
    values: Sequence[Sequence[Any]],
    title: str = "",
) -> ResultGrid:
    """Read-only grid for listings that did not come from a query."""
    cursor = RowCursor(columns=[ColumnInfo(name) for name in headers], rows=list(values))
    grid = materialize(cursor, title=title)
    grid.read_only = True
    return grid


async def load_grid(
    handle: DatabaseHandle,
    sql: str,
    row_limit: int = 0,
    *,
    args: Sequence[Any] = (),
    display_sql: str = "",
    table_name: str | None = None,
    primary_key: str = "",
    title: str = "",
) -> ResultGrid:
    logger = get_logger(__name__)
    effective_sql = handle.apply_row_limit(sql, row_limit)
    started_at = time.monotonic()
    cursor = await handle.execute_rows(effective_sql, *args)
    elapsed = time.monotonic() - started_at
    resolved_table = extract_table_name(sql) if table_name is None else table_name
    columns = list(cursor.columns)
    if resolved_table:
        try:
            metadata = await handle.table_metadata(resolved_table)
        except PamError as error:
            logger.debug("metadata_unavailable", table=resolved_table, error=error.message)
        else:
            if not primary_key and metadata.primary_keys:
                primary_key = metadata.primary_keys[0]
            columns = [
                column
                if column.database_type
                else ColumnInfo(column.name, metadata.column_types.get(column.name, ""))
                for column in columns
            ]
    logger.info(
        "grid_loaded",
        rows=len(cursor.rows),
        columns=len(columns),
        table=resolved_table,
        elapsed=round(elapsed, 3),
    )
    grid = materialize(
        RowCursor(columns=columns, rows=cursor.rows),
        source_sql=effective_sql,
        display_sql=display_sql or sql,
        table_name=resolved_table,
        primary_key=primary_key,
        handle=handle,
        elapsed=elapsed,
        title=title,
    )
    grid.args = list(args)
    return grid
