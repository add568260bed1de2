"""Drops every user-created object in the target before a restore."""

from __future__ import annotations

import tempfile
from pathlib import Path

import structlog

from pg_migrate.config.models import ConnectionConfig
from pg_migrate.schema.errors import ResetError
from pg_migrate.schema.restorer import run_psql_file

logger = structlog.get_logger()

# A single DO block, so the whole reset commits or aborts as one unit.
# Dependencies between objects are left to CASCADE; every DROP uses
# IF EXISTS because an earlier cascade may already have removed the object.
_RESET_TEMPLATE = """\
DO $reset$
DECLARE
    target_schema CONSTANT text := {schema_literal};
    obj RECORD;
BEGIN
    -- Schemas other than the default one
    FOR obj IN
        SELECT schema_name
        FROM information_schema.schemata
        WHERE schema_name <> target_schema
          AND schema_name <> 'information_schema'
          AND schema_name NOT LIKE 'pg\\_%'
    LOOP
        EXECUTE format('DROP SCHEMA IF EXISTS %I CASCADE', obj.schema_name);
    END LOOP;

    -- Functions, by signature since overloads share a name
    FOR obj IN
        SELECT p.proname, pg_get_function_identity_arguments(p.oid) AS args
        FROM pg_proc p
        JOIN pg_namespace n ON n.oid = p.pronamespace
        WHERE n.nspname = target_schema
          AND p.prokind = 'f'
          AND NOT EXISTS (
              SELECT 1 FROM pg_depend d
              WHERE d.classid = 'pg_proc'::regclass
                AND d.objid = p.oid
                AND d.deptype = 'e'
          )
    LOOP
        EXECUTE format(
            'DROP FUNCTION IF EXISTS %I.%I(%s) CASCADE',
            target_schema, obj.proname, obj.args
        );
    END LOOP;

    -- Tables, composite types, sequences and views
    FOR obj IN
        SELECT c.relname,
               CASE c.relkind
                   WHEN 'c' THEN 'TYPE'
                   WHEN 'S' THEN 'SEQUENCE'
                   WHEN 'v' THEN 'VIEW'
                   ELSE 'TABLE'
               END AS kind
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = target_schema
          AND c.relkind IN ('r', 'p', 'c', 'S', 'v')
          AND NOT EXISTS (
              SELECT 1 FROM pg_depend d
              WHERE d.classid = 'pg_class'::regclass
                AND d.objid = c.oid
                AND d.deptype = 'e'
          )
        ORDER BY CASE c.relkind
                     WHEN 'r' THEN 1
                     WHEN 'p' THEN 1
                     WHEN 'c' THEN 2
                     WHEN 'S' THEN 3
                     ELSE 4
                 END,
                 c.relname
    LOOP
        EXECUTE format(
            'DROP %s IF EXISTS %I.%I CASCADE',
            obj.kind, target_schema, obj.relname
        );
    END LOOP;
END
$reset$;
"""


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_reset_script(default_schema: str = "public") -> str:
    """Render the reset block for the given default schema."""
    return _RESET_TEMPLATE.format(schema_literal=_quote_literal(default_schema))


class SchemaResetter:
    """Removes leftovers of earlier runs so a restore starts from a clean slate.

    Destructive and not reversible.  Safe to run against an empty target and
    any number of times in a row.
    """

    def __init__(
        self,
        target: ConnectionConfig,
        psql_path: str = "psql",
        *,
        default_schema: str = "public",
        work_dir: Path | None = None,
    ) -> None:
        self._target = target
        self._psql = psql_path
        self._default_schema = default_schema
        self._work_dir = work_dir

    def reset(self) -> None:
        logger.info(
            "schema.reset_started",
            target=self._target.redacted(),
            default_schema=self._default_schema,
        )
        with tempfile.TemporaryDirectory(
            prefix="pg-migrate-reset-", dir=self._work_dir
        ) as tmp:
            script = Path(tmp) / "reset.sql"
            script.write_text(build_reset_script(self._default_schema), encoding="utf-8")
            run_psql_file(self._psql, self._target, script, error_cls=ResetError)
        logger.info("schema.reset_completed", target=self._target.redacted())
