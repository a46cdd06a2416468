from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

import pytest

from dbpam.cell_editor import CellEditor, coerce_value, editable_text
from dbpam.errors import ConcurrencyError, EditCancelled, UsageError
from dbpam.grid import load_grid
from dbpam.handle import ColumnInfo, Dialect, RowCursor
from conftest import FakeEditor, FakeHandle, make_grid


def _users(handle: FakeHandle):
    return make_grid(
        ["id", "name", "email"],
        [[1, "Alice", "a@x"], [2, "Bob", "b@x"]],
        table_name="users",
        handle=handle,
    )


@pytest.mark.asyncio
async def test_edit_cell_updates_database_and_patches_grid() -> None:
    handle = FakeHandle(Dialect.POSTGRES, affected=1)
    grid = _users(handle)
    banner = await CellEditor(FakeEditor("Alicia\n")).edit_cell(grid, 0, 1)
    assert handle.executed == [
        ("UPDATE users SET name = $1 WHERE id = $2 AND email = $3", ("Alicia", 1, "a@x"))
    ]
    assert [cell.raw_value for cell in grid.rows[0]] == [1, "Alicia", "a@x"]
    assert [cell.raw_value for cell in grid.rows[1]] == [2, "Bob", "b@x"]
    assert banner == "Updated successfully"
    assert grid.last_executed.startswith("UPDATE users SET name = 'Alicia'")


@pytest.mark.asyncio
async def test_concurrency_miss_leaves_grid_untouched() -> None:
    handle = FakeHandle(Dialect.POSTGRES, affected=0)
    grid = _users(handle)
    with pytest.raises(ConcurrencyError) as caught:
        await CellEditor(FakeEditor("Alicia")).edit_cell(grid, 0, 1)
    assert caught.value.affected == 0
    assert grid.cell(0, 1).raw_value == "Alice"


@pytest.mark.asyncio
async def test_more_than_one_affected_row_is_a_concurrency_error() -> None:
    handle = FakeHandle(Dialect.POSTGRES, affected=2)
    grid = _users(handle)
    with pytest.raises(ConcurrencyError):
        await CellEditor(FakeEditor()).delete_row(grid, 0)
    assert grid.row_count == 2


@pytest.mark.asyncio
async def test_unchanged_edit_is_a_no_op() -> None:
    handle = FakeHandle()
    grid = _users(handle)
    with pytest.raises(EditCancelled):
        await CellEditor(FakeEditor("Alice   \n")).edit_cell(grid, 0, 1)
    assert handle.executed == []


@pytest.mark.asyncio
async def test_cancelled_editor_does_not_touch_database() -> None:
    handle = FakeHandle()
    grid = _users(handle)
    with pytest.raises(EditCancelled):
        await CellEditor(FakeEditor(None)).edit_cell(grid, 0, 1)
    assert handle.executed == []


@pytest.mark.asyncio
async def test_editing_requires_table_name() -> None:
    handle = FakeHandle()
    grid = make_grid(["id"], [[1]], handle=handle)
    with pytest.raises(UsageError):
        await CellEditor(FakeEditor("2")).edit_cell(grid, 0, 0)
    assert handle.executed == []


@pytest.mark.asyncio
async def test_editing_requires_handle() -> None:
    grid = make_grid(["id"], [[1]], table_name="t")
    with pytest.raises(UsageError):
        await CellEditor(FakeEditor("2")).clear_cell(grid, 0, 0)


@pytest.mark.asyncio
async def test_empty_grid_rejects_mutations() -> None:
    handle = FakeHandle()
    grid = make_grid(["id"], [], table_name="t", handle=handle)
    editor = CellEditor(FakeEditor("x"))
    with pytest.raises(UsageError):
        await editor.edit_cell(grid, 0, 0)
    with pytest.raises(UsageError):
        await editor.delete_row(grid, 0)


@pytest.mark.asyncio
async def test_clear_cell_sets_null() -> None:
    handle = FakeHandle(Dialect.POSTGRES)
    grid = _users(handle)
    banner = await CellEditor(FakeEditor()).clear_cell(grid, 1, 2)
    assert handle.executed[0][0] == "UPDATE users SET email = NULL WHERE id = $1 AND name = $2"
    assert grid.cell(1, 2).is_null
    assert grid.cell(1, 2).display_value == "NULL"
    assert banner == "Cell cleared"


@pytest.mark.asyncio
async def test_delete_all_null_row() -> None:
    handle = FakeHandle(Dialect.SQLITE)
    grid = make_grid(["id", "notes"], [[None, None]], table_name="scratch", handle=handle)
    banner = await CellEditor(FakeEditor()).delete_row(grid, 0)
    assert handle.executed == [("DELETE FROM scratch WHERE id IS NULL AND notes IS NULL", ())]
    assert grid.row_count == 0
    assert banner == "Row deleted"


@pytest.mark.asyncio
async def test_json_values_are_pretty_printed_for_editing() -> None:
    handle = FakeHandle()
    grid = make_grid(["id", "doc"], [[1, {"a": 1}]], table_name="docs", handle=handle)
    editor = FakeEditor('{"a": 2}')
    await CellEditor(editor).edit_cell(grid, 0, 1)
    assert editor.seen == [('{\n  "a": 1\n}', ".json")]
    assert handle.executed[0][1] == ('{"a": 2}', 1)


@pytest.mark.asyncio
async def test_clickhouse_checks_row_count_before_mutating() -> None:
    handle = FakeHandle(
        Dialect.CLICKHOUSE,
        cursors=[RowCursor(columns=[ColumnInfo("count()")], rows=[(1,)])],
    )
    grid = make_grid(["id", "name"], [[7, "x"]], table_name="events", handle=handle)
    await CellEditor(FakeEditor("y")).edit_cell(grid, 0, 1)
    assert handle.queried == [("SELECT count(*) FROM events WHERE id = %(p1)s", (7,))]
    assert handle.executed == [
        ("ALTER TABLE events UPDATE name = %(p1)s WHERE id = %(p2)s", ("y", 7))
    ]


@pytest.mark.asyncio
async def test_clickhouse_ambiguous_row_is_refused() -> None:
    handle = FakeHandle(
        Dialect.CLICKHOUSE,
        cursors=[RowCursor(columns=[ColumnInfo("count()")], rows=[(3,)])],
    )
    grid = make_grid(["id", "name"], [[7, "x"]], table_name="events", handle=handle)
    with pytest.raises(ConcurrencyError):
        await CellEditor(FakeEditor()).delete_row(grid, 0)
    assert handle.executed == []


@pytest.mark.asyncio
async def test_all_null_filter_updates_exactly_one_sqlite_row(sqlite_handle) -> None:
    await sqlite_handle.execute("INSERT INTO scratch (id, notes) VALUES (1, 'kept')")
    grid = await load_grid(sqlite_handle, "SELECT id, notes FROM scratch ORDER BY id", 0)
    assert grid.cell(0, 0).is_null
    await CellEditor(FakeEditor("filled")).edit_cell(grid, 0, 1)
    cursor = await sqlite_handle.execute_rows("SELECT id, notes FROM scratch ORDER BY id")
    assert cursor.rows == [(None, "filled"), (1, "kept")]


@pytest.mark.asyncio
async def test_edit_and_delete_against_sqlite(sqlite_handle) -> None:
    grid = await load_grid(sqlite_handle, "SELECT * FROM users ORDER BY id", 0)
    editor = CellEditor(FakeEditor("Bobby"))
    await editor.edit_cell(grid, 1, 1)
    await editor.delete_row(grid, 0)
    cursor = await sqlite_handle.execute_rows("SELECT id, name FROM users ORDER BY id")
    assert cursor.rows == [(2, "Bobby"), (3, "Carol")]
    assert grid.row_count == 2
    assert grid.cell(0, 1).raw_value == "Bobby"


def test_editable_text() -> None:
    grid = make_grid(["a", "b", "c"], [[None, '[1, 2]', "plain"]])
    assert editable_text(grid.cell(0, 0)) == ""
    assert editable_text(grid.cell(0, 1)) == "[\n  1,\n  2\n]"
    assert editable_text(grid.cell(0, 2)) == "plain"


@pytest.mark.parametrize(
    "text, previous, expected",
    [
        ("42", 1, 42),
        ("4.5", 1.0, 4.5),
        ("1.10", Decimal("2.00"), Decimal("1.10")),
        ("false", True, False),
        ("abc", 1, "abc"),
        ("", "x", None),
        ("7", "x", "7"),
        ("2024-02-01", date(2024, 1, 1), date(2024, 2, 1)),
        ("2024-02-01 08:30:00", datetime(2024, 1, 1, 12, 0), datetime(2024, 2, 1, 8, 30)),
        ("08:30", time(12, 0), time(8, 30)),
        ("not a date", date(2024, 1, 1), "not a date"),
        (
            "12345678-1234-5678-1234-567812345678",
            UUID(int=0),
            UUID("12345678-1234-5678-1234-567812345678"),
        ),
    ],
)
def test_coerce_value(text, previous, expected) -> None:
    result = coerce_value(text, previous)
    assert result == expected
    assert type(result) is type(expected)
