"""Extract JOIN equality conditions from stored procedure source with sqlglot."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError
from sqlglot.tokens import TokenType

from schemalens_core.logical_fk.domain import JoinCondition

logger = logging.getLogger(__name__)

DEFAULT_DIALECT = "tsql"

# CREATE [OR ALTER] PROC[EDURE]
_PROCEDURE_START = re.compile(
    r"^\s*(?:CREATE\s+OR\s+ALTER|CREATE|ALTER)\s+PROC(?:EDURE)?\b",
    re.IGNORECASE,
)
_AS_KEYWORD = re.compile(r"\bAS\b", re.IGNORECASE)
# "EXECUTE AS OWNER" and "@param AS INT" are not the start of the body
_NON_BODY_AS = re.compile(r"(?:\bEXEC(?:UTE)?|@\w+)\s*$", re.IGNORECASE)
_JOIN_KEYWORD = re.compile(r"\bJOIN\b", re.IGNORECASE)

_BLOCK_QUALIFIERS = {"TRY", "CATCH"}
_TRANSACTION_WORDS = {"TRAN", "TRANSACTION", "DISTRIBUTED"}


def procedure_body(sql_text: str) -> str:
    """Drop a CREATE/ALTER PROCEDURE header, keeping only the body."""
    header = _PROCEDURE_START.match(sql_text)
    if header is None:
        return sql_text.strip()
    for keyword in _AS_KEYWORD.finditer(sql_text, header.end()):
        if _NON_BODY_AS.search(sql_text, 0, keyword.start()):
            continue
        return sql_text[keyword.end() :].strip()
    return sql_text.strip()


def unwrap_blocks(sql_text: str) -> str:
    """Replace ``BEGIN``/``END`` block keywords with statement separators.

    ``BEGIN TRY``, ``END CATCH`` and friends are unwrapped too. ``END`` that
    closes a ``CASE`` expression and ``BEGIN TRAN`` statements are kept.
    """
    # tsql tokenizes END as a command and swallows what follows it
    tokens = sqlglot.tokenize(sql_text)
    spans: list[tuple[int, int]] = []
    open_blocks: list[TokenType] = []

    i = 0
    while i < len(tokens):
        token = tokens[i]
        following = tokens[i + 1].text.upper() if i + 1 < len(tokens) else ""
        i += 1

        if token.token_type == TokenType.CASE:
            open_blocks.append(TokenType.CASE)
            continue
        if token.token_type == TokenType.BEGIN:
            if following in _TRANSACTION_WORDS:
                continue
            open_blocks.append(TokenType.BEGIN)
        elif token.token_type == TokenType.END:
            if open_blocks and open_blocks.pop() == TokenType.CASE:
                continue
        else:
            continue

        end = token.end
        if following in _BLOCK_QUALIFIERS:
            end = tokens[i].end
            i += 1
        spans.append((token.start, end))

    pieces = []
    cursor = 0
    for start, end in spans:
        pieces.append(sql_text[cursor:start])
        pieces.append(";")
        cursor = end + 1
    pieces.append(sql_text[cursor:])
    return "".join(pieces)


def _statements(sql_text: str, dialect: str, retry: bool = True) -> Iterator[exp.Expression]:
    for statement in sqlglot.parse(sql_text, read=dialect):
        if statement is None:
            continue
        if isinstance(statement, exp.Command):
            rest = statement.text("expression")
            if not _JOIN_KEYWORD.search(rest):
                continue
            if retry:
                yield from _statements(rest, dialect, retry=False)
                continue
            raise ParseError(f"Unsupported statement containing a join: {statement.this}")
        yield statement


def _qualified_name(table: exp.Table) -> str:
    return f"{table.db}.{table.name}" if table.db else table.name


def _alias_map(statement: exp.Expression) -> dict[str, str]:
    aliases: dict[str, str] = {}
    for table in statement.find_all(exp.Table):
        if not table.name:
            continue
        qualified = _qualified_name(table)
        aliases.setdefault(table.name.lower(), qualified)
        if table.alias:
            aliases[table.alias.lower()] = qualified
    return aliases


def _conditions_from_on(on_clause: exp.Expression, aliases: dict[str, str]) -> list[JoinCondition]:
    conditions = []
    for equality in on_clause.find_all(exp.EQ):
        left, right = equality.left, equality.right
        if not (isinstance(left, exp.Column) and isinstance(right, exp.Column)):
            continue
        if not (left.table and right.table and left.name and right.name):
            continue
        conditions.append(
            JoinCondition(
                left_table=aliases.get(left.table.lower(), left.table),
                left_column=left.name,
                right_table=aliases.get(right.table.lower(), right.table),
                right_column=right.name,
            )
        )
    return conditions


def extract_join_conditions(sql_text: str, dialect: str = DEFAULT_DIALECT) -> list[JoinCondition]:
    """Return every ``a.col = b.col`` equality found in JOIN ... ON clauses.

    Aliases are resolved to the (possibly schema-qualified) table they refer
    to. Unqualified columns are skipped because their table is unknown.
    Statements the dialect only keeps as raw commands are re-parsed once
    when they contain a join.

    Raises:
        sqlglot.errors.ParseError: if the SQL, or a statement containing a
            join, cannot be parsed
    """
    if not sql_text or not sql_text.strip():
        return []

    body = unwrap_blocks(procedure_body(sql_text))
    conditions: list[JoinCondition] = []
    for statement in _statements(body, dialect):
        aliases = _alias_map(statement)
        for join in statement.find_all(exp.Join):
            on_clause = join.args.get("on")
            if on_clause is None:
                continue
            conditions.extend(_conditions_from_on(on_clause, aliases))

    logger.debug("Extracted %d join conditions", len(conditions))
    return conditions
