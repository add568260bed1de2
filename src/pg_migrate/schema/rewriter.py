"""Idempotency rewriting of ``pg_dump`` schema scripts.

Every object-creation statement the dump tool emits is turned into a form
that can be re-executed against a populated database::

    CREATE TABLE public.customers (...)
    CREATE TABLE IF NOT EXISTS public.customers (...)

The substitution is literal and applies to the whole document.  It is
case- and whitespace-sensitive to ``pg_dump``'s canonical output and does
not parse SQL, so in ``naive`` mode it also rewrites matching text inside
string literals, comments and function bodies.  ``lexical`` mode runs the
same table over code regions only.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from pg_migrate.config.models import RewriteMode


class ObjectKind(StrEnum):
    """Object kinds with a repeat-safe creation form."""

    SCHEMA = "schema"
    TABLE = "table"
    FUNCTION = "function"
    INDEX = "index"
    SEQUENCE = "sequence"
    VIEW = "view"


@dataclass(frozen=True)
class RewriteRule:
    kind: ObjectKind
    prefix: str
    replacement: str

    @property
    def pattern(self) -> re.Pattern[str]:
        # IF NOT EXISTS forms start with their own bare prefix.
        guard = ""
        if self.replacement.endswith("IF NOT EXISTS "):
            guard = "(?!IF NOT EXISTS )"
        return re.compile(re.escape(self.prefix) + guard)

    def apply(self, sql: str) -> str:
        return self.pattern.sub(lambda _: self.replacement, sql)


REWRITE_RULES: tuple[RewriteRule, ...] = (
    RewriteRule(ObjectKind.SCHEMA, "CREATE SCHEMA ", "CREATE SCHEMA IF NOT EXISTS "),
    RewriteRule(
        ObjectKind.FUNCTION, "CREATE FUNCTION ", "CREATE OR REPLACE FUNCTION "
    ),
    RewriteRule(ObjectKind.TABLE, "CREATE TABLE ", "CREATE TABLE IF NOT EXISTS "),
    RewriteRule(ObjectKind.INDEX, "CREATE INDEX ", "CREATE INDEX IF NOT EXISTS "),
    RewriteRule(
        ObjectKind.SEQUENCE, "CREATE SEQUENCE ", "CREATE SEQUENCE IF NOT EXISTS "
    ),
    RewriteRule(ObjectKind.VIEW, "CREATE VIEW ", "CREATE OR REPLACE VIEW "),
)

# Regions of a script that are not SQL code.  Unterminated regions run to
# the end of the input.  Nested block comments are not tracked.
_NON_CODE = re.compile(
    r"""
      (?<![\w$])[eE]'(?:[^'\\]|\\.|'')*(?:'|\Z)   # escape string
    | '(?:[^']|'')*(?:'|\Z)                       # standard string
    | "(?:[^"]|"")*(?:"|\Z)                       # quoted identifier
    | --[^\n]*                                    # line comment
    | /\*.*?(?:\*/|\Z)                            # block comment
    | (?<![\w$])\$(?P<tag>(?:[A-Za-z_][A-Za-z0-9_]*)?)\$.*?(?:\$(?P=tag)\$|\Z)
    """,
    re.VERBOSE | re.DOTALL,
)


def _apply_rules(sql: str) -> str:
    for rule in REWRITE_RULES:
        sql = rule.apply(sql)
    return sql


def split_code_regions(sql: str) -> Iterator[tuple[bool, str]]:
    """Yield ``(is_code, text)`` segments covering *sql* in order."""
    pos = 0
    for match in _NON_CODE.finditer(sql):
        if match.start() > pos:
            yield True, sql[pos : match.start()]
        yield False, match.group(0)
        pos = match.end()
    if pos < len(sql):
        yield True, sql[pos:]


def rewrite_idempotent(sql: str, mode: RewriteMode = RewriteMode.NAIVE) -> str:
    """Return *sql* with every creation statement in its repeat-safe form.

    Never fails.  Already-rewritten input comes back unchanged.
    """
    if mode == RewriteMode.NAIVE:
        return _apply_rules(sql)
    return "".join(
        _apply_rules(text) if is_code else text
        for is_code, text in split_code_regions(sql)
    )


def decode_script(data: bytes) -> str:
    """Decode dump bytes so that :func:`encode_script` restores them exactly.

    Bytes that are not valid UTF-8 (dumps of LATIN1 or SQL_ASCII databases)
    become lone surrogates instead of raising, and line endings are kept.
    """
    return data.decode("utf-8", errors="surrogateescape")


def encode_script(sql: str) -> bytes:
    return sql.encode("utf-8", errors="surrogateescape")


def rewrite_file(
    source: Path, destination: Path, mode: RewriteMode = RewriteMode.NAIVE
) -> None:
    """Rewrite the script at *source* into *destination*.

    Only the matched prefixes change; every other byte is copied as is.
    """
    sql = decode_script(source.read_bytes())
    destination.write_bytes(encode_script(rewrite_idempotent(sql, mode)))
