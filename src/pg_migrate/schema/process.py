"""Invocation plumbing for the PostgreSQL client binaries."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence

import structlog

from pg_migrate.config.models import ConnectionConfig
from pg_migrate.schema.errors import SchemaTransferError

logger = structlog.get_logger()


def build_env(
    conn: ConnectionConfig, base: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Return an isolated environment map for one child process.

    Starts from a copy of *base* (the current process environment by
    default) and layers the endpoint's credentials on top.  Neither *base*
    nor ``os.environ`` is modified.
    """
    env = dict(os.environ if base is None else base)
    env.update(conn.libpq_env())
    return env


def run_pg_tool(
    argv: Sequence[str],
    conn: ConnectionConfig,
    *,
    error_cls: type[SchemaTransferError],
    input: bytes | None = None,
) -> bytes:
    """Run a client binary to completion and return its stdout.

    Blocks without a timeout.  Any non-zero exit, or a failure to start the
    executable, raises *error_cls* carrying the captured stderr.
    """
    tool = argv[0]
    logger.debug("pg_tool.started", tool=tool, endpoint=conn.redacted())
    try:
        result = subprocess.run(
            list(argv),
            env=build_env(conn),
            input=input,
            stdin=None if input is not None else subprocess.DEVNULL,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        logger.error("pg_tool.start_failed", tool=tool, error=str(exc))
        raise error_cls(None, str(exc)) from exc

    stderr = result.stderr.decode("utf-8", errors="replace")
    if result.returncode != 0:
        logger.error(
            "pg_tool.failed",
            tool=tool,
            endpoint=conn.redacted(),
            returncode=result.returncode,
        )
        raise error_cls(result.returncode, stderr)
    if stderr:
        logger.debug("pg_tool.stderr", tool=tool, stderr=stderr.strip())
    logger.debug("pg_tool.finished", tool=tool, endpoint=conn.redacted())
    return result.stdout
