"""Restores a rewritten schema script into the target through ``psql``."""

from __future__ import annotations

from pathlib import Path

import structlog

from pg_migrate.config.models import ConnectionConfig
from pg_migrate.schema.errors import RestoreError, SchemaTransferError
from pg_migrate.schema.process import run_pg_tool
from pg_migrate.schema.rewriter import encode_script

logger = structlog.get_logger()


def psql_argv(
    psql_path: str, target: ConnectionConfig, *extra: str
) -> list[str]:
    """Build a ``psql`` command line that halts on the first failing statement."""
    return [
        psql_path,
        *target.tool_args(),
        "--no-password",
        "--no-psqlrc",
        "-v",
        "ON_ERROR_STOP=1",
        *extra,
    ]


def run_psql_file(
    psql_path: str,
    target: ConnectionConfig,
    path: Path,
    *,
    error_cls: type[SchemaTransferError],
) -> None:
    run_pg_tool(
        psql_argv(psql_path, target, "-f", str(path)),
        target,
        error_cls=error_cls,
    )


class SchemaRestorer:
    """Executes a schema script against the target endpoint.

    There is no transaction around the whole script: ``ON_ERROR_STOP``
    halting on the first error is the only consistency guarantee.
    """

    def __init__(self, target: ConnectionConfig, psql_path: str = "psql") -> None:
        self._target = target
        self._psql = psql_path

    def restore_file(self, path: Path) -> None:
        logger.info("schema.restore_started", target=self._target.redacted())
        run_psql_file(self._psql, self._target, path, error_cls=RestoreError)
        logger.info("schema.restore_completed", target=self._target.redacted())

    def restore_script(self, script: str) -> None:
        """Feed *script* to ``psql`` on standard input."""
        logger.info("schema.restore_started", target=self._target.redacted())
        run_pg_tool(
            psql_argv(self._psql, self._target),
            self._target,
            error_cls=RestoreError,
            input=encode_script(script),
        )
        logger.info("schema.restore_completed", target=self._target.redacted())
