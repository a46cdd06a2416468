import argparse
import asyncio
from dataclasses import replace
import shlex
import sys

from dbpam.commands import PamCommandExecutor
from dbpam.config import (
    AppConfig,
    ConfigQueryLibrary,
    ConnectionConfig,
    SavedQuery,
    add_connection,
    current_connection,
    disconnect,
    load_config,
    remove_connection,
    save_config,
    switch_connection,
)
from dbpam.controller import ExitReason
from dbpam.drivers import open_handle
from dbpam.editor import ExternalEditor
from dbpam.errors import EditCancelled, ExitCode, MissingParameterError, PamError, UsageError
from dbpam.log import get_logger, setup_logging
from dbpam.params import split_invocation
from dbpam.prompt import PromptCommand
from dbpam.tui import ResultViewerApp

DATA_COMMANDS = ("run", "query", "tables", "explore", "info", "explain")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pam", description="Run saved SQL queries and browse the results."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init", help="create the config file")

    add_parser = subparsers.add_parser("add", help="add a connection")
    add_parser.add_argument("name")
    add_parser.add_argument("db_type")
    add_parser.add_argument("url")

    remove_parser = subparsers.add_parser("remove", help="remove a connection or saved query")
    remove_parser.add_argument("name")
    remove_parser.add_argument("--query", action="store_true", help="remove a saved query")

    list_parser = subparsers.add_parser("list", help="list saved queries")
    list_parser.add_argument("--connections", action="store_true")

    subparsers.add_parser("status", help="show the active connection")

    switch_parser = subparsers.add_parser("switch", help="make a connection active")
    switch_parser.add_argument("name")

    subparsers.add_parser("disconnect", help="clear the active connection")
    subparsers.add_parser("history", help="show the last query run")

    edit_parser = subparsers.add_parser("edit", help="edit or create a saved query")
    edit_parser.add_argument("name")

    for name in ("run", "query"):
        run_parser = subparsers.add_parser(name, help="run SQL or a saved query")
        run_parser.add_argument(
            "text",
            nargs=argparse.REMAINDER,
            help="SQL, saved query name or id, then values for its :name parameters",
        )

    subparsers.add_parser("tables", help="list tables")

    explore_parser = subparsers.add_parser("explore", help="browse a table")
    explore_parser.add_argument("table")
    explore_parser.add_argument("limit", nargs="?")

    info_parser = subparsers.add_parser("info", help="show table columns and keys")
    info_parser.add_argument("table")

    explain_parser = subparsers.add_parser("explain", help="show a query plan")
    explain_parser.add_argument("text", nargs="+")
    return parser


def _print_connections(config: AppConfig) -> None:
    if not config.connections:
        print("No connections. Add one with: pam add <name> <type> <url>")
        return
    for connection in config.connections:
        marker = "*" if connection.name == config.current_connection else " "
        print(f"{marker} {connection.name} ({connection.db_type})")


def _print_queries(connection: ConnectionConfig) -> None:
    if not connection.queries:
        print(f"No saved queries for {connection.name}.")
        return
    for query in connection.queries:
        print(f"{query.id:>4}  {query.name}")
        print(f"      {' '.join(query.sql.split())}")


def _edit_query(name: str) -> None:
    config = load_config()
    connection = current_connection(config)
    library = ConfigQueryLibrary(connection.name)
    existing = library.find(name)
    initial = existing.sql if existing else "SELECT 1;\n"
    edited = ExternalEditor().edit(initial, ".sql").strip()
    if not edited:
        raise EditCancelled("Empty query, nothing saved")
    if existing is not None:
        saved = library.save(replace(existing, sql=edited))
    else:
        saved = library.save(SavedQuery(name=name, sql=edited))
    print(f"Saved query {saved.name} (#{saved.id})")


def _ask_for_values(executor: PamCommandExecutor, missing: list[str]) -> None:
    print("Enter runtime params")
    for name in missing:
        try:
            value = input(f"{name} > ").strip()
        except (EOFError, KeyboardInterrupt) as error:
            raise EditCancelled("Aborted") from error
        if value:
            executor.parameter_values[name] = value


def _data_command(args: argparse.Namespace) -> PromptCommand:
    if args.command == "explore":
        return PromptCommand("explore", " ".join(filter(None, [args.table, args.limit])))
    if args.command == "info":
        return PromptCommand("info", args.table)
    if args.command == "explain":
        return PromptCommand("explain", " ".join(args.text))
    return PromptCommand(args.command)


async def _view(
    command: PromptCommand,
    config: AppConfig,
    parameter_values: dict[str, str] | None = None,
    positional_values: list[str] | None = None,
) -> int:
    logger = get_logger(__name__)
    connection = current_connection(config)
    library = ConfigQueryLibrary(connection.name)
    if command.name == "run" and not command.text:
        last = library.last()
        if last is None:
            raise UsageError("No query given and no previous query to run")
        command = PromptCommand("run", shlex.quote(last.name) if last.name else last.sql)
    handle = await open_handle(connection)
    try:
        executor = PamCommandExecutor(
            handle,
            library,
            config.row_limit,
            parameter_values=parameter_values,
            positional_values=positional_values or (),
        )
        while True:
            try:
                grid = await executor.execute(command)
            except MissingParameterError as error:
                _ask_for_values(executor, error.missing)
                continue
            if grid is None:
                print(f"Command executed ({executor.last_affected} row(s) affected)")
                return ExitCode.SUCCESS
            app = ResultViewerApp(
                grid,
                executor=executor,
                library=library,
                row_limit=config.row_limit,
                column_cap=config.column_width,
            )
            result = await app.run_async()
            if result is None or result.reason is ExitReason.QUIT:
                return ExitCode.SUCCESS
            if result.reason is ExitReason.FATAL:
                print(f"Error: {result.error}", file=sys.stderr)
                return ExitCode.GENERAL_ERROR
            logger.info("rerun", sql=result.sql)
            command = PromptCommand("run", result.sql)
    finally:
        await handle.close()


def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "init":
        config = load_config()
        save_config(config)
        print("Config initialized.")
        return ExitCode.SUCCESS
    if args.command == "add":
        updated = add_connection(load_config(), ConnectionConfig(args.name, args.db_type, args.url))
        save_config(updated)
        print(f"Saved connection: {args.name}")
        return ExitCode.SUCCESS
    if args.command == "remove":
        config = load_config()
        if args.query:
            query = ConfigQueryLibrary(current_connection(config).name).remove(args.name)
            print(f"Removed query: {query.name}")
            return ExitCode.SUCCESS
        save_config(remove_connection(config, args.name))
        print(f"Removed connection: {args.name}")
        return ExitCode.SUCCESS
    if args.command == "list":
        config = load_config()
        if args.connections:
            _print_connections(config)
        else:
            _print_queries(current_connection(config))
        return ExitCode.SUCCESS
    if args.command == "status":
        config = load_config()
        if not config.current_connection:
            print("Not connected.")
        else:
            connection = current_connection(config)
            print(f"Connected to {connection.name} ({connection.db_type})")
        return ExitCode.SUCCESS
    if args.command == "switch":
        save_config(switch_connection(load_config(), args.name))
        print(f"Switched to {args.name}")
        return ExitCode.SUCCESS
    if args.command == "disconnect":
        save_config(disconnect(load_config()))
        print("Disconnected.")
        return ExitCode.SUCCESS
    if args.command == "history":
        last = ConfigQueryLibrary(current_connection(load_config()).name).last()
        print(last.sql if last else "No queries run yet.")
        return ExitCode.SUCCESS
    if args.command == "edit":
        _edit_query(args.name)
        return ExitCode.SUCCESS
    if args.command in {"run", "query"}:
        text, positionals, named = split_invocation(args.text)
        return asyncio.run(_view(PromptCommand("run", text), load_config(), named, positionals))
    return asyncio.run(_view(_data_command(args), load_config()))


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    if args.command is None:
        parser.print_help()
        return
    try:
        code = _dispatch(args)
    except EditCancelled as error:
        print(error.message)
        code = ExitCode.SUCCESS
    except PamError as error:
        print(f"Error: {error.message}", file=sys.stderr)
        code = error.exit_code
    sys.exit(int(code))


if __name__ == "__main__":
    main()
