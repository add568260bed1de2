"""Schema-only dumps of the source database through ``pg_dump``."""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO

import structlog

from pg_migrate.config.models import ConnectionConfig
from pg_migrate.schema.errors import DumpError
from pg_migrate.schema.process import run_pg_tool

logger = structlog.get_logger()

# Ownership and privileges are left out because the target role may differ.
# Publications and subscriptions belong to the replicator.
DUMP_OPTIONS: tuple[str, ...] = (
    "--no-password",
    "--schema-only",
    "--no-owner",
    "--no-privileges",
    "--no-publications",
    "--no-subscriptions",
)


class SchemaDumper:
    """Produces a schema-only SQL script from the source endpoint."""

    def __init__(self, source: ConnectionConfig, pg_dump_path: str = "pg_dump") -> None:
        self._source = source
        self._pg_dump = pg_dump_path

    def _argv(self, *extra: str) -> list[str]:
        return [self._pg_dump, *self._source.tool_args(), *DUMP_OPTIONS, *extra]

    def dump_to_file(self, path: Path) -> None:
        """Write the dump to *path*; raises DumpError on failure."""
        logger.info("schema.dump_started", source=self._source.redacted())
        run_pg_tool(self._argv("-f", str(path)), self._source, error_cls=DumpError)
        logger.info("schema.dump_completed", path=str(path))

    def dump_to_stream(self, stream: BinaryIO) -> int:
        """Write the dump to *stream* and return the number of bytes written."""
        logger.info("schema.dump_started", source=self._source.redacted())
        script = run_pg_tool(self._argv(), self._source, error_cls=DumpError)
        stream.write(script)
        logger.info("schema.dump_completed", bytes=len(script))
        return len(script)
