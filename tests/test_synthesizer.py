import re

import pytest

from dbpam.errors import ValidationError
from dbpam.handle import Dialect
from dbpam.synthesizer import (
    build_delete,
    build_row_count,
    build_update,
    sql_literal,
    validate_mutation,
)
from conftest import FakeHandle, make_grid


def _users_grid(handle: FakeHandle):
    return make_grid(
        ["id", "name", "email"],
        [[1, "Alice", "a@x"], [2, "Bob", "b@x"]],
        table_name="users",
        handle=handle,
    )


def test_update_filters_on_every_other_column_with_postgres_placeholders() -> None:
    handle = FakeHandle(Dialect.POSTGRES)
    grid = _users_grid(handle)
    statement = build_update(handle, "users", grid.cell(0, 1), "Alicia", grid.rows[0])
    assert statement.sql == "UPDATE users SET name = $1 WHERE id = $2 AND email = $3"
    assert statement.args == ["Alicia", 1, "a@x"]
    assert statement.display == (
        "UPDATE users SET name = 'Alicia' WHERE id = 1 AND email = 'a@x'"
    )


def test_update_with_empty_value_sets_null_without_argument() -> None:
    handle = FakeHandle(Dialect.POSTGRES)
    grid = _users_grid(handle)
    statement = build_update(handle, "users", grid.cell(0, 2), "", grid.rows[0])
    assert statement.sql == "UPDATE users SET email = NULL WHERE id = $1 AND name = $2"
    assert statement.args == [1, "Alice"]


def test_update_uses_is_null_for_null_filter_cells() -> None:
    handle = FakeHandle(Dialect.SQLITE)
    grid = make_grid(["id", "a", "b"], [[None, None, "x"]], table_name="t", handle=handle)
    statement = build_update(handle, "t", grid.cell(0, 2), "y", grid.rows[0])
    assert statement.sql == "UPDATE t SET b = ? WHERE id IS NULL AND a IS NULL"
    assert statement.args == ["y"]


def test_delete_with_all_null_row() -> None:
    handle = FakeHandle(Dialect.SQLITE)
    grid = make_grid(["id", "notes"], [[None, None]], table_name="scratch", handle=handle)
    statement = build_delete(handle, "scratch", grid.rows[0])
    assert statement.sql == "DELETE FROM scratch WHERE id IS NULL AND notes IS NULL"
    assert statement.args == []


def test_delete_refuses_empty_row() -> None:
    handle = FakeHandle(Dialect.POSTGRES)
    with pytest.raises(ValidationError):
        build_delete(handle, "users", [])
    assert handle.executed == []


def test_update_refuses_empty_row() -> None:
    handle = FakeHandle(Dialect.POSTGRES)
    grid = _users_grid(handle)
    with pytest.raises(ValidationError):
        build_update(handle, "users", grid.cell(0, 0), "x", [])


def test_single_column_update_filters_on_its_own_old_value() -> None:
    handle = FakeHandle(Dialect.POSTGRES)
    grid = make_grid(["name"], [["Alice"]], table_name="people", handle=handle)
    statement = build_update(handle, "people", grid.cell(0, 0), "Alicia", grid.rows[0])
    assert statement.sql == "UPDATE people SET name = $1 WHERE name = $2"
    assert statement.args == ["Alicia", "Alice"]


@pytest.mark.parametrize(
    "dialect, expected",
    [
        (Dialect.POSTGRES, "DELETE FROM t WHERE a = $1 AND b = $2 AND c = $3"),
        (Dialect.ORACLE, "DELETE FROM t WHERE a = :1 AND b = :2 AND c = :3"),
        (Dialect.SQLSERVER, "DELETE FROM t WHERE a = ? AND b = ? AND c = ?"),
        (Dialect.MYSQL, "DELETE FROM t WHERE a = %s AND b = %s AND c = %s"),
        (
            Dialect.CLICKHOUSE,
            "ALTER TABLE t DELETE WHERE a = %(p1)s AND b = %(p2)s AND c = %(p3)s",
        ),
    ],
)
def test_delete_uses_dialect_placeholders(dialect: Dialect, expected: str) -> None:
    handle = FakeHandle(dialect)
    grid = make_grid(["a", "b", "c"], [[1, 2, 3]], table_name="t", handle=handle)
    statement = build_delete(handle, "t", grid.rows[0])
    assert statement.sql == expected
    assert statement.args == [1, 2, 3]


def test_placeholder_count_matches_arguments_and_indexes_are_a_permutation() -> None:
    handle = FakeHandle(Dialect.POSTGRES)
    grid = make_grid(
        ["a", "b", "c", "d", "e"],
        [[1, None, "x", None, 5]],
        table_name="t",
        handle=handle,
    )
    for target in range(5):
        statement = build_update(handle, "t", grid.cell(0, target), "new", grid.rows[0])
        indexes = sorted(int(value) for value in re.findall(r"\$(\d+)", statement.sql))
        assert indexes == list(range(1, len(statement.args) + 1))


def test_row_filter_has_one_predicate_per_non_target_column() -> None:
    handle = FakeHandle(Dialect.SQLITE)
    grid = make_grid(["a", "b", "c", "d"], [[1, None, "x", None]], table_name="t", handle=handle)
    statement = build_update(handle, "t", grid.cell(0, 2), "y", grid.rows[0])
    where = statement.sql.split(" WHERE ", 1)[1]
    predicates = where.split(" AND ")
    assert [predicate.split()[0] for predicate in predicates] == ["a", "b", "d"]


def test_clickhouse_update_uses_alter_table() -> None:
    handle = FakeHandle(Dialect.CLICKHOUSE)
    grid = make_grid(["id", "name"], [[7, "x"]], table_name="events", handle=handle)
    statement = build_update(handle, "events", grid.cell(0, 1), "y", grid.rows[0])
    assert statement.sql == "ALTER TABLE events UPDATE name = %(p1)s WHERE id = %(p2)s"
    validate_mutation(Dialect.CLICKHOUSE, statement.sql)


def test_row_count_reuses_the_update_filter() -> None:
    handle = FakeHandle(Dialect.CLICKHOUSE)
    grid = make_grid(["id", "name"], [[7, None]], table_name="events", handle=handle)
    statement = build_row_count(handle, "events", grid.rows[0], skip_index=0)
    assert statement.sql == "SELECT count(*) FROM events WHERE name IS NULL"
    assert statement.args == []


@pytest.mark.parametrize(
    "dialect, sql",
    [
        (Dialect.POSTGRES, "UPDATE users SET name = $1"),
        (Dialect.POSTGRES, "UPDATE users WHERE id = 1"),
        (Dialect.SQLITE, "DELETE FROM users"),
        (Dialect.CLICKHOUSE, "DELETE FROM events WHERE id = 1"),
    ],
)
def test_validate_mutation_rejects_unsafe_sql(dialect: Dialect, sql: str) -> None:
    with pytest.raises(ValidationError):
        validate_mutation(dialect, sql)


def test_sql_literal_escapes_quotes() -> None:
    assert sql_literal("O'Brien") == "'O''Brien'"
    assert sql_literal(None) == "NULL"
    assert sql_literal(3) == "3"
    assert sql_literal(True) == "TRUE"
