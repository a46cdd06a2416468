from dataclasses import dataclass, field
from decimal import Decimal
import re
from typing import Any, Sequence

from dbpam.errors import ValidationError
from dbpam.grid import Cell
from dbpam.handle import DatabaseHandle, Dialect


@dataclass(frozen=True)
class Statement:
    sql: str
    args: list[Any]
    display: str


def sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


@dataclass
class _Builder:
    handle: DatabaseHandle
    args: list[Any] = field(default_factory=list)

    def bind(self, value: Any) -> tuple[str, str]:
        self.args.append(value)
        return self.handle.placeholder(len(self.args)), sql_literal(value)

    def assignment(self, column: str, value: Any) -> tuple[str, str]:
        if value is None or value == "":
            return f"{column} = NULL", f"{column} = NULL"
        placeholder, literal = self.bind(value)
        return f"{column} = {placeholder}", f"{column} = {literal}"

    def predicate(self, cell: Cell) -> tuple[str, str]:
        if cell.is_null:
            return f"{cell.column_name} IS NULL", f"{cell.column_name} IS NULL"
        placeholder, literal = self.bind(cell.raw_value)
        return (
            f"{cell.column_name} = {placeholder}",
            f"{cell.column_name} = {literal}",
        )


def _row_filter(
    builder: _Builder, row: Sequence[Cell], skip_index: int | None = None
) -> tuple[str, str]:
    predicates = [builder.predicate(cell) for cell in row if cell.column_index != skip_index]
    return (
        " AND ".join(sql for sql, _ in predicates),
        " AND ".join(display for _, display in predicates),
    )


def build_update(
    handle: DatabaseHandle,
    table_name: str,
    cell: Cell,
    new_value: Any,
    row: Sequence[Cell],
) -> Statement:
    """UPDATE of one cell, filtered by every other value observed in its row.

    An empty or None ``new_value`` sets the column to NULL. A row with no
    other columns is filtered by the target cell's own observed value.
    """
    if not row:
        raise ValidationError("Refusing to update without row values to filter on")
    if not table_name:
        raise ValidationError("Refusing to update without a table name")
    builder = _Builder(handle)
    set_sql, set_display = builder.assignment(cell.column_name, new_value)
    others = [other for other in row if other.column_index != cell.column_index]
    where_sql, where_display = _row_filter(builder, others or [cell])
    if handle.dialect() is Dialect.CLICKHOUSE:
        head = f"ALTER TABLE {table_name} UPDATE"
    else:
        head = f"UPDATE {table_name} SET"
    return Statement(
        sql=f"{head} {set_sql} WHERE {where_sql}",
        args=builder.args,
        display=f"{head} {set_display} WHERE {where_display}",
    )


def build_delete(handle: DatabaseHandle, table_name: str, row: Sequence[Cell]) -> Statement:
    if not row:
        raise ValidationError("Refusing to delete without row values to filter on")
    if not table_name:
        raise ValidationError("Refusing to delete without a table name")
    builder = _Builder(handle)
    where_sql, where_display = _row_filter(builder, row)
    if handle.dialect() is Dialect.CLICKHOUSE:
        head = f"ALTER TABLE {table_name} DELETE WHERE"
    else:
        head = f"DELETE FROM {table_name} WHERE"
    return Statement(
        sql=f"{head} {where_sql}",
        args=builder.args,
        display=f"{head} {where_display}",
    )


_UPDATE_RE = re.compile(r"^\s*UPDATE\b", re.IGNORECASE)
_DELETE_RE = re.compile(r"^\s*DELETE\b", re.IGNORECASE)
_ALTER_RE = re.compile(r"^\s*ALTER\s+TABLE\s+\S+\s+(UPDATE|DELETE)\b", re.IGNORECASE)
_SET_RE = re.compile(r"\bSET\b", re.IGNORECASE)
_WHERE_RE = re.compile(r"\bWHERE\b", re.IGNORECASE)


def validate_mutation(dialect: Dialect, sql: str) -> None:
    """Structural checks a synthesized mutation must pass before it runs."""
    if not _WHERE_RE.search(sql):
        raise ValidationError("Mutation has no WHERE clause")
    if dialect is Dialect.CLICKHOUSE:
        if not _ALTER_RE.match(sql):
            raise ValidationError("ClickHouse mutations must use ALTER TABLE")
        return
    if _UPDATE_RE.match(sql):
        if not _SET_RE.search(sql):
            raise ValidationError("UPDATE has no SET clause")
        return
    if not _DELETE_RE.match(sql):
        raise ValidationError("Only UPDATE and DELETE statements can be validated")


def build_row_count(
    handle: DatabaseHandle,
    table_name: str,
    row: Sequence[Cell],
    skip_index: int | None = None,
) -> Statement:
    """SELECT count(*) over the same row filter a mutation would use.

    Used where the driver cannot report affected rows for a mutation.
    """
    if not row:
        raise ValidationError("Refusing to count without row values to filter on")
    builder = _Builder(handle)
    filtered = [cell for cell in row if cell.column_index != skip_index] or list(row)
    where_sql, where_display = _row_filter(builder, filtered)
    head = f"SELECT count(*) FROM {table_name} WHERE"
    return Statement(
        sql=f"{head} {where_sql}",
        args=builder.args,
        display=f"{head} {where_display}",
    )
