from dataclasses import dataclass
from typing import Protocol

from dbpam.grid import ResultGrid
from dbpam.sqltext import expand_shorthand, looks_like_sql

QUERY_COMMANDS = frozenset({"run", "query"})


@dataclass(frozen=True)
class PromptCommand:
    name: str
    text: str = ""

    @property
    def args(self) -> list[str]:
        return self.text.split()


class CommandExecutor(Protocol):
    async def execute(self, command: PromptCommand) -> ResultGrid | None: ...


def parse_command_line(line: str, table_name: str = "") -> PromptCommand | None:
    """Classify a prompt line as SQL or a sub-command.

    SQL is run through ``run``; the SQL after ``run``/``query`` is expanded
    against ``table_name`` when one is known. Returns None for blank input.
    """
    text = line.strip()
    if not text:
        return None
    if looks_like_sql(text):
        name, rest = "run", text
    else:
        parts = text.split(maxsplit=1)
        name = parts[0].lower()
        rest = parts[1].strip() if len(parts) > 1 else ""
    if name in QUERY_COMMANDS and table_name and rest:
        rest = expand_shorthand(rest, table_name)
    return PromptCommand(name=name, text=rest)
