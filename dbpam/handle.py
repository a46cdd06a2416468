from dataclasses import dataclass, field
from enum import Enum
import re
from typing import Any, Protocol, Sequence

from dbpam.errors import ConfigError, UsageError


class Dialect(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    SQLSERVER = "sqlserver"
    ORACLE = "oracle"
    CLICKHOUSE = "clickhouse"
    FIREBIRD = "firebird"

    @classmethod
    def parse(cls, name: str) -> "Dialect":
        key = name.strip().lower()
        dialect = _DIALECT_ALIASES.get(key)
        if dialect is None:
            raise ConfigError(f"Unsupported database type: {name}")
        return dialect


_DIALECT_ALIASES: dict[str, Dialect] = {
    "postgres": Dialect.POSTGRES,
    "postgresql": Dialect.POSTGRES,
    "pg": Dialect.POSTGRES,
    "mysql": Dialect.MYSQL,
    "mariadb": Dialect.MYSQL,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
    "sqlserver": Dialect.SQLSERVER,
    "mssql": Dialect.SQLSERVER,
    "oracle": Dialect.ORACLE,
    "godror": Dialect.ORACLE,
    "clickhouse": Dialect.CLICKHOUSE,
    "firebird": Dialect.FIREBIRD,
}


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    database_type: str = ""


@dataclass(frozen=True)
class RowCursor:
    columns: list[ColumnInfo]
    rows: list[Sequence[Any]]


@dataclass(frozen=True)
class ForeignKey:
    column: str
    referenced_table: str
    referenced_column: str


@dataclass(frozen=True)
class TableMetadata:
    table_name: str
    columns: list[str]
    column_types: dict[str, str] = field(default_factory=dict)
    primary_keys: list[str] = field(default_factory=list)
    foreign_keys: list[ForeignKey] = field(default_factory=list)


class DatabaseHandle(Protocol):
    name: str

    def dialect(self) -> Dialect: ...

    def placeholder(self, index: int) -> str: ...

    def apply_row_limit(self, sql: str, limit: int) -> str: ...

    async def execute_rows(self, sql: str, *args: Any) -> RowCursor: ...

    async def execute(self, sql: str, *args: Any) -> int: ...

    async def table_metadata(self, table_name: str) -> TableMetadata: ...

    async def list_tables(self) -> list[str]: ...

    async def close(self) -> None: ...


def placeholder_for(dialect: Dialect, index: int) -> str:
    """Native positional placeholder of the dialect's driver for argument ``index``."""
    if index < 1:
        raise ValueError(f"Placeholder index must be >= 1, got {index}")
    if dialect is Dialect.POSTGRES:
        return f"${index}"
    if dialect is Dialect.ORACLE:
        return f":{index}"
    if dialect is Dialect.MYSQL:
        return "%s"
    if dialect is Dialect.CLICKHOUSE:
        return f"%(p{index})s"
    return "?"


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)?$")


def validate_identifier(name: str, label: str = "table") -> str:
    if not _IDENTIFIER_RE.match(name):
        raise UsageError(f"Invalid {label} identifier: {name}")
    return name


_LEADING_KEYWORD_RE = re.compile(r"^\s*\(?\s*([A-Za-z]+)")
_TRAILING_LIMIT_RE = re.compile(
    r"\bLIMIT\s+\d+(\s*,\s*\d+)?(\s+OFFSET\s+\d+)?\s*$", re.IGNORECASE
)
_FETCH_RE = re.compile(r"\bFETCH\s+(FIRST|NEXT)\b", re.IGNORECASE)
_OFFSET_FETCH_RE = re.compile(r"\bOFFSET\b.*\bFETCH\b", re.IGNORECASE | re.DOTALL)
_TOP_RE = re.compile(r"^\s*SELECT\s+(DISTINCT\s+)?TOP\b", re.IGNORECASE)
_SELECT_HEAD_RE = re.compile(r"^\s*SELECT(\s+DISTINCT)?\b", re.IGNORECASE)
_SELECT_RE = re.compile(r"^\s*SELECT\b", re.IGNORECASE)
_ROWNUM_RE = re.compile(r"\bROWNUM\b", re.IGNORECASE)
_FIRST_RE = re.compile(r"\bFIRST\b", re.IGNORECASE)


def leading_keyword(sql: str) -> str:
    match = _LEADING_KEYWORD_RE.match(sql)
    return match.group(1).upper() if match else ""


def _strip_terminator(sql: str) -> str:
    return sql.strip().rstrip(";").rstrip()


def apply_row_limit(dialect: Dialect, sql: str, limit: int) -> str:
    """Cap the rows a query can return, or return ``sql`` unchanged when unsafe."""
    if limit <= 0:
        return sql
    keyword = leading_keyword(sql)
    body = _strip_terminator(sql)
    if dialect is Dialect.SQLSERVER:
        if keyword != "SELECT" or _TOP_RE.match(body) or _OFFSET_FETCH_RE.search(body):
            return sql
        return _SELECT_HEAD_RE.sub(lambda m: f"{m.group(0)} TOP {limit}", body, count=1)
    if dialect is Dialect.FIREBIRD:
        if keyword != "SELECT" or _FIRST_RE.search(body) or _TRAILING_LIMIT_RE.search(body):
            return sql
        return _SELECT_RE.sub(lambda m: f"{m.group(0)} FIRST {limit}", body, count=1)
    if dialect is Dialect.ORACLE:
        if keyword not in {"SELECT", "WITH"}:
            return sql
        if _FETCH_RE.search(body) or _ROWNUM_RE.search(body):
            return sql
        return f"{body}\nFETCH FIRST {limit} ROWS ONLY"
    allowed = {"SELECT"} if dialect is Dialect.CLICKHOUSE else {"SELECT", "WITH"}
    if keyword not in allowed or _TRAILING_LIMIT_RE.search(body) or _FETCH_RE.search(body):
        return sql
    return f"{body}\nLIMIT {limit}"
