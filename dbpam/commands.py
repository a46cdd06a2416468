import shlex
from typing import Awaitable, Callable, Mapping, Sequence

from dbpam.config import QueryLibrary, SavedQuery
from dbpam.errors import ConfigError, MissingParameterError, UsageError
from dbpam.grid import ResultGrid, grid_from_values, load_grid
from dbpam.handle import DatabaseHandle, Dialect, validate_identifier
from dbpam.log import get_logger
from dbpam.params import (
    BoundQuery,
    bind_parameters,
    extract_parameters,
    missing_parameters,
    resolve_values,
    split_invocation,
)
from dbpam.prompt import PromptCommand
from dbpam.sqltext import is_row_producing, looks_like_sql

_EXPLAIN_PREFIXES = {
    Dialect.POSTGRES: "EXPLAIN ",
    Dialect.MYSQL: "EXPLAIN ",
    Dialect.SQLITE: "EXPLAIN QUERY PLAN ",
    Dialect.CLICKHOUSE: "EXPLAIN ",
}


class PamCommandExecutor:
    """The one dispatcher behind both the shell and the in-viewer prompt."""

    def __init__(
        self,
        handle: DatabaseHandle,
        library: QueryLibrary | None = None,
        row_limit: int = 0,
        parameter_values: Mapping[str, str] | None = None,
        positional_values: Sequence[str] = (),
    ) -> None:
        self._handle = handle
        self._library = library
        self._row_limit = row_limit
        # Values given for :name markers so far; later runs fall back to them.
        self.parameter_values: dict[str, str] = {}
        # Command-line values, checked against the first query that runs.
        self._pending_named = dict(parameter_values or {})
        self._pending_positionals = list(positional_values)
        self._logger = get_logger(__name__)
        self.last_affected: int | None = None
        self._commands: dict[str, Callable[[PromptCommand], Awaitable[ResultGrid | None]]] = {
            "run": self._run,
            "query": self._run,
            "tables": self._tables,
            "explore": self._explore,
            "info": self._info,
            "explain": self._explain,
        }

    @property
    def command_names(self) -> list[str]:
        return sorted(self._commands)

    async def execute(self, command: PromptCommand) -> ResultGrid | None:
        handler = self._commands.get(command.name)
        if handler is None:
            raise UsageError(f"Unknown command: {command.name}")
        self._logger.info("command", name=command.name)
        return await handler(command)

    def resolve_query(self, text: str) -> SavedQuery:
        """SQL text becomes an inline query; anything else is a saved-query selector."""
        text = text.strip()
        if not text:
            raise UsageError("Expected SQL or a saved query name")
        if looks_like_sql(text) or self._library is None:
            return SavedQuery(name="", sql=text)
        query = self._library.find(text)
        if query is None:
            raise ConfigError(f"Unknown query: {text}")
        return query

    def _invocation(self, text: str) -> tuple[str, list[str], dict[str, str]]:
        named, positionals = self._pending_named, self._pending_positionals
        self._pending_named, self._pending_positionals = {}, []
        text = text.strip()
        if looks_like_sql(text):
            return text, positionals, named
        try:
            tokens = shlex.split(text)
        except ValueError as error:
            raise UsageError(f"Invalid arguments: {error}") from error
        body, more_positionals, more_named = split_invocation(tokens)
        return body, [*positionals, *more_positionals], {**named, **more_named}

    def bind(
        self, sql: str, named: Mapping[str, str], positionals: Sequence[str]
    ) -> BoundQuery:
        """Substitute :name markers, remembering every value given explicitly.

        Raises MissingParameterError naming the parameters still without a value.
        """
        parameters = extract_parameters(sql)
        if not parameters:
            return BoundQuery(sql=sql, args=[], display_sql="")
        values = resolve_values(parameters, named, positionals, self.parameter_values)
        explicit = dict(named)
        explicit.update(zip((parameter.name for parameter in parameters), positionals))
        self.parameter_values.update({name: value for name, value in explicit.items() if value})
        missing = missing_parameters(parameters, values)
        if missing:
            raise MissingParameterError(missing)
        return bind_parameters(sql, values, self._handle.placeholder)

    async def _run(self, command: PromptCommand) -> ResultGrid | None:
        text, positionals, named = self._invocation(command.text)
        query = self.resolve_query(text)
        bound = self.bind(query.sql, named, positionals)
        if self._library is not None:
            self._library.record_last(query)
        self.last_affected = None
        if is_row_producing(bound.sql):
            grid = await load_grid(
                self._handle,
                bound.sql,
                self._row_limit,
                args=bound.args,
                display_sql=bound.display_sql,
                table_name=query.table_name or None,
                primary_key=query.primary_key,
                title=query.name,
            )
            grid.template_sql = query.sql
            return grid
        self.last_affected = await self._handle.execute(bound.sql, *bound.args)
        self._logger.info("statement_executed", affected=self.last_affected)
        return None

    async def _tables(self, command: PromptCommand) -> ResultGrid:
        names = await self._handle.list_tables()
        return grid_from_values(["table"], [[name] for name in names], title="tables")

    async def _explore(self, command: PromptCommand) -> ResultGrid:
        if not command.args:
            raise UsageError("Usage: explore <table> [limit]")
        table_name = validate_identifier(command.args[0])
        limit = self._row_limit
        if len(command.args) > 1:
            if not command.args[1].isdigit():
                raise UsageError(f"Invalid row limit: {command.args[1]}")
            limit = int(command.args[1])
        return await load_grid(
            self._handle,
            f"SELECT * FROM {table_name}",
            limit,
            table_name=table_name,
            title=table_name,
        )

    async def _info(self, command: PromptCommand) -> ResultGrid:
        if not command.args:
            raise UsageError("Usage: info <table>")
        table_name = validate_identifier(command.args[0])
        metadata = await self._handle.table_metadata(table_name)
        references = {
            foreign_key.column: f"{foreign_key.referenced_table}.{foreign_key.referenced_column}"
            for foreign_key in metadata.foreign_keys
        }
        rows = [
            [
                column,
                metadata.column_types.get(column, ""),
                "yes" if column in metadata.primary_keys else "",
                references.get(column, ""),
            ]
            for column in metadata.columns
        ]
        return grid_from_values(
            ["column", "type", "primary_key", "references"],
            rows,
            title=f"info {table_name}",
        )

    async def _explain(self, command: PromptCommand) -> ResultGrid:
        prefix = _EXPLAIN_PREFIXES.get(self._handle.dialect())
        if prefix is None:
            raise UsageError(f"explain is not supported for {self._handle.dialect().value}")
        text, positionals, named = self._invocation(command.text)
        query = self.resolve_query(text)
        bound = self.bind(query.sql, named, positionals)
        grid = await load_grid(self._handle, prefix + bound.sql, 0, args=bound.args, table_name="")
        grid.title = f"explain {query.name}".rstrip()
        grid.read_only = True
        return grid
