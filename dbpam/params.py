"""Named parameters in saved queries.

A query marks a runtime value with ``:name`` and may give it a default with
``:name|value`` or ``:name|'quoted value'``. Markers inside comments and
string literals are left alone, as are ``::`` casts and times like ``10:30``.
"""

from dataclasses import dataclass
import re
from typing import Callable, Mapping, Sequence

from dbpam.errors import UsageError
from dbpam.sqltext import looks_like_sql
from dbpam.synthesizer import sql_literal

_TOKEN_RE = re.compile(
    r"(?P<skip>--[^\n]*|/\*.*?\*/|'(?:''|[^'])*')"
    r"|(?<![:\w]):(?P<name>[A-Za-z_]\w*)"
    r"(?:\|(?P<default>'(?:''|\\.|[^'\\])*'|[^'\s\\;,)]+))?",
    re.DOTALL,
)
_NUMBER_RE = re.compile(r"[+-]?\d+(?:\.\d+)?")


@dataclass(frozen=True)
class Parameter:
    name: str
    default: str | None = None

    @property
    def required(self) -> bool:
        return not self.default


@dataclass(frozen=True)
class BoundQuery:
    sql: str
    args: list[str]
    display_sql: str


def _unquote(default: str) -> str:
    if len(default) >= 2 and default.startswith("'") and default.endswith("'"):
        return default[1:-1].replace("''", "'").replace("\\'", "'")
    return default


def extract_parameters(sql: str) -> list[Parameter]:
    """Parameters in order of first appearance.

    A later marker for the same name only matters when it supplies a
    default the earlier ones lacked.
    """
    found: dict[str, Parameter] = {}
    for match in _TOKEN_RE.finditer(sql):
        name = match.group("name")
        if not name:
            continue
        default = match.group("default")
        if name not in found or (found[name].default is None and default is not None):
            found[name] = Parameter(name, None if default is None else _unquote(default))
    return list(found.values())


def split_cli_values(tokens: Sequence[str]) -> tuple[list[str], dict[str, str]]:
    """Separate ``--name=value`` and ``--name value`` flags from plain words.

    A flag without a value maps to "", which falls back to the default.
    """
    positionals: list[str] = []
    named: dict[str, str] = {}
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token.startswith("--") and len(token) > 2:
            name, separator, value = token[2:].partition("=")
            if not separator and index + 1 < len(tokens) and not tokens[index + 1].startswith("--"):
                index += 1
                value = tokens[index]
            named[name] = value
        else:
            positionals.append(token)
        index += 1
    return positionals, named


def split_invocation(tokens: Sequence[str]) -> tuple[str, list[str], dict[str, str]]:
    """Split ``run`` arguments into the query text, positional and named values.

    The first word is the SQL or saved-query selector. Unquoted SQL spread
    over several words is joined back together and takes no positional values.
    """
    positionals, named = split_cli_values(tokens)
    if not positionals:
        return "", [], named
    head = positionals[0]
    if looks_like_sql(head) and len(head.split()) == 1:
        return " ".join(positionals), [], named
    return head, positionals[1:], named


def resolve_values(
    parameters: Sequence[Parameter],
    named: Mapping[str, str] | None = None,
    positionals: Sequence[str] = (),
    remembered: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Pick a value per parameter, leaving out the ones nothing supplies.

    Positional values fill parameters in order of first appearance and beat
    ``--name`` values. Explicit values beat remembered ones, and those beat
    defaults. An empty default makes the parameter required.
    """
    known = {parameter.name for parameter in parameters}
    named = dict(named or {})
    for name in named:
        if name not in known:
            raise UsageError(f"Unknown parameter: {name}")
    for parameter, value in zip(parameters, positionals):
        named[parameter.name] = value
    remembered = remembered or {}
    values: dict[str, str] = {}
    for parameter in parameters:
        candidates = (named.get(parameter.name), remembered.get(parameter.name), parameter.default)
        for candidate in candidates:
            if candidate:
                values[parameter.name] = candidate
                break
    return values


def missing_parameters(parameters: Sequence[Parameter], values: Mapping[str, str]) -> list[str]:
    return [parameter.name for parameter in parameters if parameter.name not in values]


def display_literal(value: str) -> str:
    if _NUMBER_RE.fullmatch(value):
        return value
    return sql_literal(value)


def bind_parameters(
    sql: str, values: Mapping[str, str], placeholder: Callable[[int], str]
) -> BoundQuery:
    """Swap each marker for a driver placeholder and collect the arguments.

    Indexed placeholders (``$1``, ``:1``, ``%(p1)s``) get one argument per
    parameter. Positional ones (``?``, ``%s``) get one per occurrence.
    Returns the SQL unchanged, with no display text, when it has no markers.
    """
    by_occurrence = placeholder(1) == placeholder(2)
    indexes: dict[str, int] = {}
    args: list[str] = []

    def substitute(match: re.Match[str]) -> str:
        name = match.group("name")
        if not name:
            return match.group(0)
        if name not in values:
            raise UsageError(f"Missing value for parameter: {name}")
        if by_occurrence or name not in indexes:
            args.append(values[name])
            indexes[name] = len(args)
        return placeholder(indexes[name])

    def literal(match: re.Match[str]) -> str:
        name = match.group("name")
        return display_literal(values[name]) if name else match.group(0)

    bound = _TOKEN_RE.sub(substitute, sql)
    if not args:
        return BoundQuery(sql=sql, args=[], display_sql="")
    return BoundQuery(sql=bound, args=args, display_sql=_TOKEN_RE.sub(literal, sql))
