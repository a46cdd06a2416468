from pathlib import Path
import sys
from typing import Any, AsyncIterator, Sequence

if True:
    PROJECT_ROOT = Path(__file__).resolve().parents[1]
    if str(PROJECT_ROOT) not in sys.path:
        sys.path.insert(0, str(PROJECT_ROOT))

    import pytest
    import pytest_asyncio

    from dbpam.drivers import DbApiHandle, open_sqlite
    from dbpam.errors import ClipboardError, DatabaseError, EditCancelled
    from dbpam.grid import ResultGrid, materialize
    from dbpam.handle import (
        ColumnInfo,
        Dialect,
        RowCursor,
        TableMetadata,
        apply_row_limit,
        placeholder_for,
    )
    from dbpam.log import setup_logging


LONG_TEXT_VALUE = (
    "This is a deliberately long cell value used to validate column truncation "
    "behavior in the grid while preserving the full value in the cell detail "
    "screen."
)


class FakeHandle:
    """Scripted handle: records statements and answers with canned results."""

    def __init__(
        self,
        dialect: Dialect = Dialect.POSTGRES,
        affected: int = 1,
        cursors: Sequence[RowCursor] = (),
        metadata: dict[str, TableMetadata] | None = None,
    ) -> None:
        self.name = "fake"
        self._dialect = dialect
        self.affected = affected
        self.cursors = list(cursors)
        self.metadata = metadata or {}
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.queried: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False

    def dialect(self) -> Dialect:
        return self._dialect

    def placeholder(self, index: int) -> str:
        return placeholder_for(self._dialect, index)

    def apply_row_limit(self, sql: str, limit: int) -> str:
        return apply_row_limit(self._dialect, sql, limit)

    async def execute_rows(self, sql: str, *args: Any) -> RowCursor:
        self.queried.append((sql, args))
        if not self.cursors:
            return RowCursor(columns=[], rows=[])
        return self.cursors.pop(0)

    async def execute(self, sql: str, *args: Any) -> int:
        self.executed.append((sql, args))
        return self.affected

    async def table_metadata(self, table_name: str) -> TableMetadata:
        if table_name not in self.metadata:
            raise DatabaseError(f"Table not found: {table_name}")
        return self.metadata[table_name]

    async def list_tables(self) -> list[str]:
        return sorted(self.metadata)

    async def close(self) -> None:
        self.closed = True


class FakeEditor:
    """Returns scripted responses; None means the user quit without saving."""

    def __init__(self, *responses: str | None) -> None:
        self.responses = list(responses)
        self.seen: list[tuple[str, str]] = []

    def edit(self, content: str, suffix: str = ".txt") -> str:
        self.seen.append((content, suffix))
        response = self.responses.pop(0) if self.responses else None
        if response is None:
            raise EditCancelled()
        return response


class FakeClipboard:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.texts: list[str] = []

    def copy(self, text: str) -> None:
        if self.fail:
            raise ClipboardError("Clipboard unavailable: no display")
        self.texts.append(text)


def make_grid(
    headers: Sequence[str],
    rows: Sequence[Sequence[Any]],
    table_name: str = "",
    handle: Any = None,
    source_sql: str = "",
) -> ResultGrid:
    cursor = RowCursor(columns=[ColumnInfo(name, "text") for name in headers], rows=list(rows))
    return materialize(
        cursor,
        source_sql=source_sql or (f"SELECT * FROM {table_name}" if table_name else ""),
        table_name=table_name,
        handle=handle,
    )


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path))
    setup_logging(verbose=True, path=tmp_path / "pam.log")
    return tmp_path


@pytest_asyncio.fixture()
async def sqlite_handle() -> AsyncIterator[DbApiHandle]:
    handle = open_sqlite("local", ":memory:")
    await handle.execute(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, email TEXT)"
    )
    await handle.execute(
        "CREATE TABLE orders ("
        "id INTEGER PRIMARY KEY, "
        "user_id INTEGER REFERENCES users (id), "
        "total REAL, "
        "note TEXT)"
    )
    await handle.execute("CREATE TABLE scratch (id INTEGER, notes TEXT)")
    for row in [(1, "Alice", "a@x"), (2, "Bob", "b@x"), (3, "Carol", None)]:
        await handle.execute("INSERT INTO users (id, name, email) VALUES (?, ?, ?)", *row)
    for row in [(1, 1, 9.5, "first"), (2, 1, 20.0, LONG_TEXT_VALUE), (3, 2, 5.25, None)]:
        await handle.execute(
            "INSERT INTO orders (id, user_id, total, note) VALUES (?, ?, ?, ?)", *row
        )
    await handle.execute("INSERT INTO scratch (id, notes) VALUES (NULL, NULL)")
    yield handle
    await handle.close()
