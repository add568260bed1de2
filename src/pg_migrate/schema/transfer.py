"""Sequencing of the idempotent schema transfer procedure."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import BinaryIO

import structlog

from pg_migrate.config.models import (
    ConnectionConfig,
    SchemaTransferConfig,
)
from pg_migrate.schema.dumper import SchemaDumper
from pg_migrate.schema.resetter import SchemaResetter
from pg_migrate.schema.restorer import SchemaRestorer
from pg_migrate.schema.rewriter import (
    decode_script,
    rewrite_file,
    rewrite_idempotent,
)

logger = structlog.get_logger()


class SchemaTransfer:
    """Dump → rewrite → reset → restore, strictly in that order.

    Each step either completes or raises its own SchemaTransferError
    subclass; the first failure aborts the run.  Drops already applied by
    the reset step are never rolled back.
    """

    def __init__(
        self,
        source: ConnectionConfig,
        target: ConnectionConfig,
        config: SchemaTransferConfig | None = None,
    ) -> None:
        self._config = config or SchemaTransferConfig()
        self._dumper = SchemaDumper(source, self._config.pg_dump_path)
        self._resetter = SchemaResetter(
            target,
            self._config.psql_path,
            default_schema=self._config.default_schema,
            work_dir=self._config.work_dir,
        )
        self._restorer = SchemaRestorer(target, self._config.psql_path)

    def _scoped_dir(self) -> tempfile.TemporaryDirectory[str]:
        return tempfile.TemporaryDirectory(
            prefix="pg-migrate-", dir=self._config.work_dir
        )

    def dump_and_restore(self) -> None:
        """Transplant the source schema onto the target."""
        with self._scoped_dir() as tmp:
            dump_path = Path(tmp) / "schema.sql"
            self._dumper.dump_to_file(dump_path)
            self._reset_and_restore(dump_path, Path(tmp))
        logger.info("schema.transfer_completed")

    def dump_to_file(self, path: Path) -> None:
        """Write the raw (not rewritten) source dump to *path*."""
        self._dumper.dump_to_file(path)

    def dump_to_stream(self, stream: BinaryIO) -> int:
        return self._dumper.dump_to_stream(stream)

    def restore_from_file(self, path: Path) -> None:
        """Rewrite the dump at *path*, reset the target and restore it.

        *path* itself is left untouched.
        """
        if not path.is_file():
            msg = f"Schema file not found: {path}"
            raise FileNotFoundError(msg)
        with self._scoped_dir() as tmp:
            self._reset_and_restore(path, Path(tmp))

    def restore_from_stream(self, stream: BinaryIO) -> None:
        script = decode_script(stream.read())
        rewritten = rewrite_idempotent(script, self._config.rewrite_mode)
        self._resetter.reset()
        self._restorer.restore_script(rewritten)

    def _reset_and_restore(self, dump_path: Path, work_dir: Path) -> None:
        rewritten = work_dir / "schema.rewritten.sql"
        rewrite_file(dump_path, rewritten, self._config.rewrite_mode)
        logger.info(
            "schema.rewrite_completed",
            path=str(rewritten),
            mode=self._config.rewrite_mode.value,
        )
        self._resetter.reset()
        self._restorer.restore_file(rewritten)
