from dataclasses import dataclass, field, replace
import json
from pathlib import Path
from typing import Any, Protocol

from dbpam.errors import ConfigError
from dbpam.handle import Dialect

DEFAULT_ROW_LIMIT = 1000
DEFAULT_COLUMN_WIDTH = 40


@dataclass(frozen=True)
class SavedQuery:
    name: str
    sql: str
    id: int = -1
    table_name: str = ""
    primary_key: str = ""


@dataclass(frozen=True)
class ConnectionConfig:
    name: str
    db_type: str
    url: str
    queries: list[SavedQuery] = field(default_factory=list)
    last_query: SavedQuery | None = None


@dataclass(frozen=True)
class AppConfig:
    connections: list[ConnectionConfig] = field(default_factory=list)
    current_connection: str = ""
    row_limit: int = DEFAULT_ROW_LIMIT
    column_width: int = DEFAULT_COLUMN_WIDTH


class QueryLibrary(Protocol):
    def find(self, selector: str) -> SavedQuery | None: ...

    def save(self, query: SavedQuery) -> SavedQuery: ...

    def record_last(self, query: SavedQuery) -> None: ...


def config_dir() -> Path:
    return Path.home() / ".config" / "dbpam"


def _config_path() -> Path:
    return config_dir() / "config.json"


def _query_from_json(item: dict[str, Any]) -> SavedQuery:
    return SavedQuery(
        name=item.get("name", ""),
        sql=item.get("sql", ""),
        id=int(item.get("id", -1)),
        table_name=item.get("table_name", ""),
        primary_key=item.get("primary_key", ""),
    )


def _query_to_json(query: SavedQuery) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": query.name, "id": query.id, "sql": query.sql}
    if query.table_name:
        payload["table_name"] = query.table_name
    if query.primary_key:
        payload["primary_key"] = query.primary_key
    return payload


def load_config() -> AppConfig:
    config_path = _config_path()
    if not config_path.exists():
        return AppConfig()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        connections = [
            ConnectionConfig(
                name=item["name"],
                db_type=item["db_type"],
                url=item["url"],
                queries=[_query_from_json(query) for query in item.get("queries", [])],
                last_query=(
                    _query_from_json(item["last_query"]) if item.get("last_query") else None
                ),
            )
            for item in data.get("connections", [])
        ]
        return AppConfig(
            connections=connections,
            current_connection=data.get("current_connection", ""),
            row_limit=int(data.get("row_limit", DEFAULT_ROW_LIMIT)),
            column_width=int(data.get("column_width", DEFAULT_COLUMN_WIDTH)),
        )
    except (ValueError, KeyError, TypeError) as error:
        raise ConfigError(f"Malformed config file {config_path}: {error}") from error


def save_config(config: AppConfig) -> None:
    config_dir().mkdir(parents=True, exist_ok=True)
    payload = {
        "current_connection": config.current_connection,
        "row_limit": config.row_limit,
        "column_width": config.column_width,
        "connections": [
            {
                "name": connection.name,
                "db_type": connection.db_type,
                "url": connection.url,
                "queries": [_query_to_json(query) for query in connection.queries],
                "last_query": (
                    _query_to_json(connection.last_query) if connection.last_query else None
                ),
            }
            for connection in config.connections
        ],
    }
    _config_path().write_text(json.dumps(payload, indent=2), encoding="utf-8")


def find_connection(config: AppConfig, name: str) -> ConnectionConfig:
    for connection in config.connections:
        if connection.name == name:
            return connection
    raise ConfigError(f"Unknown connection: {name}")


def current_connection(config: AppConfig) -> ConnectionConfig:
    if not config.current_connection:
        raise ConfigError("No active connection; use 'pam switch <name>'")
    return find_connection(config, config.current_connection)


def _replace_connection(config: AppConfig, connection: ConnectionConfig) -> AppConfig:
    connections = [
        connection if existing.name == connection.name else existing
        for existing in config.connections
    ]
    return replace(config, connections=connections)


def add_connection(config: AppConfig, connection: ConnectionConfig) -> AppConfig:
    if any(existing.name == connection.name for existing in config.connections):
        raise ConfigError(f"Connection name already exists: {connection.name}")
    Dialect.parse(connection.db_type)
    updated_connections = [*config.connections, connection]
    current = config.current_connection or connection.name
    return replace(config, connections=updated_connections, current_connection=current)


def remove_connection(config: AppConfig, name: str) -> AppConfig:
    find_connection(config, name)
    connections = [existing for existing in config.connections if existing.name != name]
    current = "" if config.current_connection == name else config.current_connection
    return replace(config, connections=connections, current_connection=current)


def switch_connection(config: AppConfig, name: str) -> AppConfig:
    find_connection(config, name)
    return replace(config, current_connection=name)


def disconnect(config: AppConfig) -> AppConfig:
    return replace(config, current_connection="")


def next_query_id(connection: ConnectionConfig) -> int:
    """Smallest positive id not used by a saved query."""
    used = {query.id for query in connection.queries}
    candidate = 1
    while candidate in used:
        candidate += 1
    return candidate


def find_query(connection: ConnectionConfig, selector: str) -> SavedQuery | None:
    """Decimal selectors match ids, anything else matches names."""
    selector = selector.strip()
    if selector.isdigit():
        query_id = int(selector)
        return next((query for query in connection.queries if query.id == query_id), None)
    return next((query for query in connection.queries if query.name == selector), None)


def add_query(connection: ConnectionConfig, query: SavedQuery) -> tuple[ConnectionConfig, SavedQuery]:
    if not query.name:
        raise ConfigError("Saved queries need a name")
    if query.name.isdigit():
        raise ConfigError(f"Query names cannot be numbers: {query.name}")
    if query.id == -1:
        existing = find_query(connection, query.name)
        if existing is not None:
            raise ConfigError(f"Query name already exists: {query.name}")
        query = replace(query, id=next_query_id(connection))
    elif any(
        saved.name == query.name and saved.id != query.id for saved in connection.queries
    ):
        raise ConfigError(f"Query name already exists: {query.name}")
    queries = [saved for saved in connection.queries if saved.id != query.id]
    queries.append(query)
    queries.sort(key=lambda saved: saved.id)
    return replace(connection, queries=queries), query


def remove_query(connection: ConnectionConfig, selector: str) -> ConnectionConfig:
    query = find_query(connection, selector)
    if query is None:
        raise ConfigError(f"Unknown query: {selector}")
    return replace(
        connection, queries=[saved for saved in connection.queries if saved.id != query.id]
    )


class ConfigQueryLibrary:
    """Saved queries of one connection, persisted in the config file."""

    def __init__(self, connection_name: str) -> None:
        self._connection_name = connection_name

    def _connection(self) -> tuple[AppConfig, ConnectionConfig]:
        config = load_config()
        return config, find_connection(config, self._connection_name)

    def find(self, selector: str) -> SavedQuery | None:
        _, connection = self._connection()
        return find_query(connection, selector)

    def save(self, query: SavedQuery) -> SavedQuery:
        config, connection = self._connection()
        updated, saved = add_query(connection, query)
        save_config(_replace_connection(config, updated))
        return saved

    def record_last(self, query: SavedQuery) -> None:
        config, connection = self._connection()
        save_config(_replace_connection(config, replace(connection, last_query=query)))

    def last(self) -> SavedQuery | None:
        _, connection = self._connection()
        return connection.last_query

    def queries(self) -> list[SavedQuery]:
        _, connection = self._connection()
        return list(connection.queries)

    def remove(self, selector: str) -> SavedQuery:
        config, connection = self._connection()
        query = find_query(connection, selector)
        if query is None:
            raise ConfigError(f"Unknown query: {selector}")
        save_config(_replace_connection(config, remove_query(connection, selector)))
        return query
