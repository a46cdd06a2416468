"""Keyword sniffing over SQL text.

Nothing here parses SQL. Every helper looks at leading keywords or a few
anchors and leaves anything it does not recognise alone.
"""

import re

from dbpam.handle import leading_keyword

SQL_KEYWORDS = frozenset(
    {"SELECT", "INSERT", "UPDATE", "DELETE", "WITH", "EXPLAIN", "DESCRIBE", "SHOW", "PRAGMA"}
)
ROW_PRODUCING_KEYWORDS = frozenset(
    {"SELECT", "WITH", "SHOW", "DESCRIBE", "DESC", "EXPLAIN", "PRAGMA", "VALUES"}
)

_FROM_RE = re.compile(r"\bFROM\b", re.IGNORECASE)
_INTO_RE = re.compile(r"\bINTO\b", re.IGNORECASE)
_WHERE_RE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_JOIN_RE = re.compile(r"\bJOIN\b", re.IGNORECASE)
_SUBQUERY_RE = re.compile(r"\bFROM\s*\(", re.IGNORECASE)
_SELECT_TAIL_RE = re.compile(
    r"\s+(?=(WHERE|ORDER|GROUP|LIMIT|HAVING|UNION)\b)", re.IGNORECASE
)
_UPDATE_SET_RE = re.compile(r"^(\s*UPDATE)\s+(SET\b)", re.IGNORECASE)
_DELETE_RE = re.compile(r"^(\s*DELETE)\b", re.IGNORECASE)
_INSERT_RE = re.compile(r"^(\s*INSERT)\b", re.IGNORECASE)
_TABLE_AFTER_FROM_RE = re.compile(
    r"""\bFROM\s+("[^"]+"|`[^`]+`|\[[^\]]+\]|[A-Za-z_][\w$.]*)"""
    r"""(?:\s+(?:AS\s+)?(?!WHERE\b|ORDER\b|GROUP\b|LIMIT\b|HAVING\b|UNION\b)[A-Za-z_]\w*)?\s*(,)?""",
    re.IGNORECASE,
)


def looks_like_sql(text: str) -> bool:
    return leading_keyword(text) in SQL_KEYWORDS


def is_row_producing(sql: str) -> bool:
    return leading_keyword(sql) in ROW_PRODUCING_KEYWORDS


def is_unfiltered_mutation(sql: str) -> bool:
    """UPDATE or DELETE that would touch every row of its table."""
    return leading_keyword(sql) in {"UPDATE", "DELETE"} and not _WHERE_RE.search(sql)


def has_join_clause(sql: str) -> bool:
    return bool(_JOIN_RE.search(sql))


def collapse_whitespace(sql: str) -> str:
    return " ".join(sql.split())


def extract_table_name(sql: str) -> str:
    """Name of the single table a query reads from, or "" when there is none."""
    if has_join_clause(sql) or _SUBQUERY_RE.search(sql):
        return ""
    match = _TABLE_AFTER_FROM_RE.search(sql)
    if match is None or match.group(2):
        return ""
    name = match.group(1)
    if name[0] in "\"`[":
        return name[1:-1]
    return name


def expand_shorthand(sql: str, table_name: str) -> str:
    """Fill in the current table for abbreviated statements.

    Statements that already name their anchor keyword are returned untouched,
    so expanding twice is the same as expanding once.
    """
    if not table_name:
        return sql
    text = sql.strip()
    terminator = ""
    if text.endswith(";"):
        text = text[:-1].rstrip()
        terminator = ";"
    keyword = leading_keyword(text)
    if keyword == "SELECT" and not _FROM_RE.search(text):
        tail = _SELECT_TAIL_RE.search(text)
        position = tail.start() if tail else len(text)
        text = f"{text[:position]} FROM {table_name}{text[position:]}"
    elif keyword == "UPDATE":
        text = _UPDATE_SET_RE.sub(
            lambda match: f"{match.group(1)} {table_name} {match.group(2)}", text, count=1
        )
    elif keyword == "DELETE" and not _FROM_RE.search(text):
        text = _DELETE_RE.sub(
            lambda match: f"{match.group(1)} FROM {table_name}", text, count=1
        )
    elif keyword == "INSERT" and not _INTO_RE.search(text):
        text = _INSERT_RE.sub(
            lambda match: f"{match.group(1)} INTO {table_name}", text, count=1
        )
    else:
        return sql
    return text + terminator
