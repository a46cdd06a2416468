from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
import importlib
from typing import Any, Callable, Sequence
from uuid import UUID
from urllib.parse import unquote, urlparse

import asyncpg

from dbpam.config import ConnectionConfig
from dbpam.errors import ConfigError, DatabaseError
from dbpam.handle import (
    ColumnInfo,
    Dialect,
    ForeignKey,
    RowCursor,
    TableMetadata,
    apply_row_limit,
    placeholder_for,
    validate_identifier,
)
from dbpam.log import get_logger


@dataclass(frozen=True)
class _Catalog:
    """Catalog queries of one dialect; each takes the table name as ``{p}``."""

    columns: str
    primary_keys: str
    foreign_keys: str
    tables: str
    fold_upper: bool = False


_CATALOGS: dict[Dialect, _Catalog] = {
    Dialect.POSTGRES: _Catalog(
        columns="""
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = {p}
            ORDER BY ordinal_position
        """,
        primary_keys="""
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_schema = current_schema()
              AND tc.table_name = {p}
            ORDER BY kcu.ordinal_position
        """,
        foreign_keys="""
            SELECT kcu.column_name, ccu.table_name, ccu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
              ON tc.constraint_name = ccu.constraint_name
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = current_schema()
              AND tc.table_name = {p}
        """,
        tables="""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = current_schema()
            ORDER BY table_name
        """,
    ),
    Dialect.SQLITE: _Catalog(
        columns="SELECT name, type FROM pragma_table_info({p}) ORDER BY cid",
        primary_keys="SELECT name FROM pragma_table_info({p}) WHERE pk > 0 ORDER BY pk",
        foreign_keys='SELECT "from", "table", "to" FROM pragma_foreign_key_list({p})',
        tables=(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ),
    ),
    Dialect.MYSQL: _Catalog(
        columns="""
            SELECT column_name, column_type
            FROM information_schema.columns
            WHERE table_schema = DATABASE() AND table_name = {p}
            ORDER BY ordinal_position
        """,
        primary_keys="""
            SELECT column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = DATABASE() AND table_name = {p}
              AND constraint_name = 'PRIMARY'
            ORDER BY ordinal_position
        """,
        foreign_keys="""
            SELECT column_name, referenced_table_name, referenced_column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = DATABASE() AND table_name = {p}
              AND referenced_table_name IS NOT NULL
        """,
        tables="SHOW TABLES",
    ),
    Dialect.SQLSERVER: _Catalog(
        columns="""
            SELECT COLUMN_NAME, DATA_TYPE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_NAME = {p}
            ORDER BY ORDINAL_POSITION
        """,
        primary_keys="""
            SELECT kcu.COLUMN_NAME
            FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
            JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
              ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
            WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY' AND tc.TABLE_NAME = {p}
            ORDER BY kcu.ORDINAL_POSITION
        """,
        foreign_keys="""
            SELECT kcu.COLUMN_NAME, ref.TABLE_NAME, ref.COLUMN_NAME
            FROM INFORMATION_SCHEMA.REFERENTIAL_CONSTRAINTS rc
            JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
              ON rc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
            JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE ref
              ON rc.UNIQUE_CONSTRAINT_NAME = ref.CONSTRAINT_NAME
             AND kcu.ORDINAL_POSITION = ref.ORDINAL_POSITION
            WHERE kcu.TABLE_NAME = {p}
        """,
        tables=(
            "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME"
        ),
    ),
    Dialect.ORACLE: _Catalog(
        columns="""
            SELECT column_name, data_type
            FROM user_tab_columns
            WHERE table_name = {p}
            ORDER BY column_id
        """,
        primary_keys="""
            SELECT cols.column_name
            FROM user_constraints cons
            JOIN user_cons_columns cols ON cons.constraint_name = cols.constraint_name
            WHERE cons.constraint_type = 'P' AND cons.table_name = {p}
            ORDER BY cols.position
        """,
        foreign_keys="""
            SELECT cols.column_name, ref.table_name, ref.column_name
            FROM user_constraints cons
            JOIN user_cons_columns cols ON cons.constraint_name = cols.constraint_name
            JOIN user_cons_columns ref
              ON cons.r_constraint_name = ref.constraint_name
             AND cols.position = ref.position
            WHERE cons.constraint_type = 'R' AND cons.table_name = {p}
        """,
        tables="SELECT table_name FROM user_tables ORDER BY table_name",
        fold_upper=True,
    ),
    Dialect.CLICKHOUSE: _Catalog(
        columns="""
            SELECT name, type
            FROM system.columns
            WHERE database = currentDatabase() AND table = {p}
            ORDER BY position
        """,
        primary_keys="""
            SELECT name
            FROM system.columns
            WHERE database = currentDatabase() AND table = {p} AND is_in_primary_key
            ORDER BY position
        """,
        foreign_keys="",
        tables="SHOW TABLES",
    ),
    Dialect.FIREBIRD: _Catalog(
        columns="""
            SELECT TRIM(rf.RDB$FIELD_NAME), CAST(f.RDB$FIELD_TYPE AS VARCHAR(10))
            FROM RDB$RELATION_FIELDS rf
            JOIN RDB$FIELDS f ON rf.RDB$FIELD_SOURCE = f.RDB$FIELD_NAME
            WHERE rf.RDB$RELATION_NAME = {p}
            ORDER BY rf.RDB$FIELD_POSITION
        """,
        primary_keys="""
            SELECT TRIM(s.RDB$FIELD_NAME)
            FROM RDB$RELATION_CONSTRAINTS rc
            JOIN RDB$INDEX_SEGMENTS s ON rc.RDB$INDEX_NAME = s.RDB$INDEX_NAME
            WHERE rc.RDB$CONSTRAINT_TYPE = 'PRIMARY KEY' AND rc.RDB$RELATION_NAME = {p}
            ORDER BY s.RDB$FIELD_POSITION
        """,
        foreign_keys="",
        tables="""
            SELECT TRIM(RDB$RELATION_NAME)
            FROM RDB$RELATIONS
            WHERE COALESCE(RDB$SYSTEM_FLAG, 0) = 0 AND RDB$VIEW_BLR IS NULL
            ORDER BY RDB$RELATION_NAME
        """,
        fold_upper=True,
    ),
}


class _CatalogHandle(ABC):
    """Metadata lookups shared by every handle, expressed through ``execute_rows``."""

    name: str
    _dialect: Dialect

    def dialect(self) -> Dialect:
        return self._dialect

    def placeholder(self, index: int) -> str:
        return placeholder_for(self._dialect, index)

    def apply_row_limit(self, sql: str, limit: int) -> str:
        return apply_row_limit(self._dialect, sql, limit)

    @abstractmethod
    async def execute_rows(self, sql: str, *args: Any) -> RowCursor: ...

    async def table_metadata(self, table_name: str) -> TableMetadata:
        catalog = _CATALOGS[self._dialect]
        lookup_name = validate_identifier(table_name).split(".")[-1]
        if catalog.fold_upper:
            lookup_name = lookup_name.upper()
        placeholder = self.placeholder(1)
        column_rows = (await self.execute_rows(catalog.columns.format(p=placeholder), lookup_name)).rows
        if not column_rows:
            raise DatabaseError(f"Table not found: {table_name}")
        key_rows = (
            await self.execute_rows(catalog.primary_keys.format(p=placeholder), lookup_name)
        ).rows
        foreign_keys: list[ForeignKey] = []
        if catalog.foreign_keys:
            foreign_rows = (
                await self.execute_rows(catalog.foreign_keys.format(p=placeholder), lookup_name)
            ).rows
            foreign_keys = [
                ForeignKey(column=str(row[0]), referenced_table=str(row[1]), referenced_column=str(row[2]))
                for row in foreign_rows
            ]
        return TableMetadata(
            table_name=table_name,
            columns=[str(row[0]) for row in column_rows],
            column_types={str(row[0]): str(row[1]) for row in column_rows},
            primary_keys=[str(row[0]) for row in key_rows],
            foreign_keys=foreign_keys,
        )

    async def list_tables(self) -> list[str]:
        cursor = await self.execute_rows(_CATALOGS[self._dialect].tables)
        return [str(row[0]) for row in cursor.rows]


def _command_tag_count(status: str) -> int:
    last = status.rsplit(" ", 1)[-1] if status else ""
    return int(last) if last.isdigit() else 0


# Raised by drivers for arguments they cannot encode, before the server is reached.
_ARGUMENT_ERRORS: tuple[type[BaseException], ...] = (OverflowError, TypeError, ValueError)


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in {"true", "t", "yes", "y", "1"}:
        return True
    if lowered in {"false", "f", "no", "n", "0"}:
        return False
    raise ValueError(f"not a boolean: {text}")


_PG_TEXT_ADAPTERS: dict[str, Callable[[str], Any]] = {
    "int2": int,
    "int4": int,
    "int8": int,
    "float4": float,
    "float8": float,
    "numeric": Decimal,
    "bool": _parse_bool,
    "date": date.fromisoformat,
    "time": time.fromisoformat,
    "timestamp": datetime.fromisoformat,
    "timestamptz": datetime.fromisoformat,
    "uuid": UUID,
}


def _adapt_args(type_names: Sequence[str], args: Sequence[Any]) -> list[Any]:
    """Convert text arguments to the Python type asyncpg expects for each parameter.

    asyncpg binds with the binary protocol and refuses a ``str`` for an
    integer, date or uuid parameter; non-text arguments pass through.
    """
    adapted = []
    for index, (type_name, value) in enumerate(zip(type_names, args), start=1):
        adapter = _PG_TEXT_ADAPTERS.get(type_name)
        if isinstance(value, str) and adapter is not None:
            try:
                value = adapter(value)
            except (ValueError, ArithmeticError) as error:
                raise DatabaseError(
                    f"Invalid {type_name} value for ${index}: {value!r}"
                ) from error
        adapted.append(value)
    return adapted


class PostgresHandle(_CatalogHandle):
    def __init__(self, name: str, connection: asyncpg.Connection) -> None:
        self.name = name
        self._dialect = Dialect.POSTGRES
        self._connection = connection
        self._logger = get_logger(__name__)

    @classmethod
    async def connect(cls, name: str, url: str) -> "PostgresHandle":
        try:
            connection = await asyncpg.connect(url)
        except (asyncpg.PostgresError, OSError) as error:
            raise DatabaseError(f"Failed to connect to {name}: {error}") from error
        return cls(name, connection)

    async def execute_rows(self, sql: str, *args: Any) -> RowCursor:
        self._logger.debug("execute_rows", sql=sql, args=len(args))
        try:
            statement = await self._connection.prepare(sql)
            columns = [
                ColumnInfo(attribute.name, attribute.type.name)
                for attribute in statement.get_attributes()
            ]
            type_names = [parameter.name for parameter in statement.get_parameters()]
            records = await statement.fetch(*_adapt_args(type_names, args))
        except (asyncpg.PostgresError, asyncpg.InterfaceError, *_ARGUMENT_ERRORS) as error:
            raise DatabaseError(str(error)) from error
        return RowCursor(columns=columns, rows=[tuple(record) for record in records])

    async def execute(self, sql: str, *args: Any) -> int:
        self._logger.debug("execute", sql=sql, args=len(args))
        try:
            if not args:
                # Multi-statement scripts only run through the simple query protocol.
                status = await self._connection.execute(sql)
            else:
                statement = await self._connection.prepare(sql)
                type_names = [parameter.name for parameter in statement.get_parameters()]
                await statement.fetch(*_adapt_args(type_names, args))
                status = statement.get_statusmsg()
        except (asyncpg.PostgresError, asyncpg.InterfaceError, *_ARGUMENT_ERRORS) as error:
            raise DatabaseError(str(error)) from error
        return _command_tag_count(status)

    async def close(self) -> None:
        await self._connection.close()


def _type_name(type_code: Any) -> str:
    if type_code is None:
        return ""
    if isinstance(type_code, str):
        return type_code
    if isinstance(type_code, type):
        return type_code.__name__
    return str(getattr(type_code, "name", type_code))


class DbApiHandle(_CatalogHandle):
    """Any PEP 249 connection; calls run in a worker thread off the event loop."""

    def __init__(
        self,
        name: str,
        dialect: Dialect,
        connection: Any,
        error_types: tuple[type[BaseException], ...],
    ) -> None:
        self.name = name
        self._dialect = dialect
        self._connection = connection
        self._error_types = (*error_types, *_ARGUMENT_ERRORS)
        self._logger = get_logger(__name__)

    def _params(self, args: Sequence[Any]) -> Any:
        if self._dialect is Dialect.CLICKHOUSE:
            return {f"p{index}": value for index, value in enumerate(args, start=1)}
        return tuple(args)

    def _run(self, sql: str, args: Sequence[Any], fetch: bool) -> tuple[Any, list[Any], int]:
        cursor = self._connection.cursor()
        try:
            if args:
                cursor.execute(sql, self._params(args))
            else:
                cursor.execute(sql)
            if fetch:
                description = cursor.description or []
                rows = list(cursor.fetchall()) if description else []
                count = cursor.rowcount
                # End the read transaction so the next query sees fresh rows.
                self._connection.commit()
                return description, rows, count
            count = cursor.rowcount
            self._connection.commit()
            return [], [], count
        except self._error_types:
            self._connection.rollback()
            raise
        finally:
            cursor.close()

    async def execute_rows(self, sql: str, *args: Any) -> RowCursor:
        self._logger.debug("execute_rows", sql=sql, args=len(args))
        try:
            description, rows, _ = await asyncio.to_thread(self._run, sql, args, True)
        except self._error_types as error:
            raise DatabaseError(str(error)) from error
        columns = [ColumnInfo(str(item[0]), _type_name(item[1])) for item in description]
        return RowCursor(columns=columns, rows=[tuple(row) for row in rows])

    async def execute(self, sql: str, *args: Any) -> int:
        self._logger.debug("execute", sql=sql, args=len(args))
        try:
            _, _, count = await asyncio.to_thread(self._run, sql, args, False)
        except self._error_types as error:
            raise DatabaseError(str(error)) from error
        return count

    async def close(self) -> None:
        await asyncio.to_thread(self._connection.close)


def _sqlite_path(url: str) -> str:
    for prefix in ("sqlite:///", "sqlite://", "file:"):
        if url.startswith(prefix):
            return url[len(prefix):] or ":memory:"
    return url


def open_sqlite(name: str, url: str) -> DbApiHandle:
    import sqlite3

    connection = sqlite3.connect(_sqlite_path(url), check_same_thread=False)
    return DbApiHandle(name, Dialect.SQLITE, connection, (sqlite3.Error,))


def _driver(module_name: str, extra: str) -> Any:
    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError as error:
        raise ConfigError(
            f"Driver {module_name} is not installed; install dbpam[{extra}]"
        ) from error


def _open_mysql(name: str, url: str) -> DbApiHandle:
    pymysql = _driver("pymysql", "mysql")
    parsed = urlparse(url)
    connection = pymysql.connect(
        host=parsed.hostname or "localhost",
        port=parsed.port or 3306,
        user=unquote(parsed.username or ""),
        password=unquote(parsed.password or ""),
        database=parsed.path.lstrip("/") or None,
    )
    return DbApiHandle(name, Dialect.MYSQL, connection, (pymysql.Error,))


def _open_sqlserver(name: str, url: str) -> DbApiHandle:
    pyodbc = _driver("pyodbc", "sqlserver")
    return DbApiHandle(name, Dialect.SQLSERVER, pyodbc.connect(url), (pyodbc.Error,))


def _open_oracle(name: str, url: str) -> DbApiHandle:
    oracledb = _driver("oracledb", "oracle")
    dsn = url.split("://", 1)[1] if "://" in url else url
    return DbApiHandle(name, Dialect.ORACLE, oracledb.connect(dsn), (oracledb.Error,))


def _open_clickhouse(name: str, url: str) -> DbApiHandle:
    dbapi = _driver("clickhouse_driver.dbapi", "clickhouse")
    return DbApiHandle(name, Dialect.CLICKHOUSE, dbapi.connect(dsn=url), (dbapi.Error,))


def _open_firebird(name: str, url: str) -> DbApiHandle:
    driver = _driver("firebird.driver", "firebird")
    parsed = urlparse(url)
    host = parsed.hostname or "localhost"
    port = f"/{parsed.port}" if parsed.port else ""
    database = f"{host}{port}:{parsed.path}"
    connection = driver.connect(
        database,
        user=unquote(parsed.username or ""),
        password=unquote(parsed.password or ""),
    )
    return DbApiHandle(name, Dialect.FIREBIRD, connection, (driver.Error,))


_OPENERS: dict[Dialect, Callable[[str, str], DbApiHandle]] = {
    Dialect.SQLITE: open_sqlite,
    Dialect.MYSQL: _open_mysql,
    Dialect.SQLSERVER: _open_sqlserver,
    Dialect.ORACLE: _open_oracle,
    Dialect.CLICKHOUSE: _open_clickhouse,
    Dialect.FIREBIRD: _open_firebird,
}


async def open_handle(connection: ConnectionConfig) -> PostgresHandle | DbApiHandle:
    logger = get_logger(__name__)
    dialect = Dialect.parse(connection.db_type)
    logger.info("handle_open", connection=connection.name, dialect=dialect.value)
    if dialect is Dialect.POSTGRES:
        return await PostgresHandle.connect(connection.name, connection.url)
    opener = _OPENERS[dialect]
    try:
        return await asyncio.to_thread(opener, connection.name, connection.url)
    except ConfigError:
        raise
    except Exception as error:
        raise DatabaseError(f"Failed to connect to {connection.name}: {error}") from error
