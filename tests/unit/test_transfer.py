"""Unit tests for schema transfer sequencing."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import pytest

from pg_migrate.config.models import (
    ConnectionConfig,
    RewriteMode,
    SchemaTransferConfig,
)
from pg_migrate.schema.errors import DumpError, ResetError, RestoreError
from pg_migrate.schema.rewriter import decode_script, encode_script
from pg_migrate.schema.transfer import SchemaTransfer

RAW_DUMP = "CREATE TABLE public.t (id integer);\nCOMMENT ON TABLE public.t IS 'CREATE VIEW ';\n"


class _Recorder:
    """Stands in for the dumper, resetter and restorer, recording call order."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.restored: list[str] = []
        self.restore_paths: list[Path] = []
        self.fail: dict[str, Exception] = {}

    def _step(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]

    def dump_to_file(self, path: Path) -> None:
        self._step("dump")
        path.write_text(RAW_DUMP)

    def dump_to_stream(self, stream: Any) -> int:
        self._step("dump")
        stream.write(RAW_DUMP.encode())
        return len(RAW_DUMP)

    def reset(self) -> None:
        self._step("reset")

    def restore_file(self, path: Path) -> None:
        self._step("restore")
        self.restore_paths.append(path)
        self.restored.append(decode_script(path.read_bytes()))

    def restore_script(self, script: str) -> None:
        self._step("restore")
        self.restored.append(script)


def _transfer(
    source: ConnectionConfig,
    target: ConnectionConfig,
    work_dir: Path,
    mode: RewriteMode = RewriteMode.NAIVE,
) -> tuple[SchemaTransfer, _Recorder]:
    transfer = SchemaTransfer(
        source,
        target,
        SchemaTransferConfig(work_dir=work_dir, rewrite_mode=mode),
    )
    recorder = _Recorder()
    transfer._dumper = recorder  # type: ignore[assignment]
    transfer._resetter = recorder  # type: ignore[assignment]
    transfer._restorer = recorder  # type: ignore[assignment]
    return transfer, recorder


class TestDumpAndRestore:
    def test_steps_run_in_order(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        transfer.dump_and_restore()

        assert rec.calls == ["dump", "reset", "restore"]
        assert rec.restored == [
            "CREATE TABLE IF NOT EXISTS public.t (id integer);\n"
            "COMMENT ON TABLE public.t IS 'CREATE OR REPLACE VIEW ';\n"
        ]

    def test_lexical_mode_passed_through(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path, RewriteMode.LEXICAL)
        transfer.dump_and_restore()
        assert "IS 'CREATE VIEW '" in rec.restored[0]

    def test_scoped_storage_released_on_success(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        transfer.dump_and_restore()
        assert not rec.restore_paths[0].exists()
        assert list(tmp_path.iterdir()) == []

    def test_dump_failure_skips_reset_and_restore(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        rec.fail["dump"] = DumpError(1, "could not connect to server")

        with pytest.raises(DumpError, match="could not connect"):
            transfer.dump_and_restore()

        assert rec.calls == ["dump"]
        assert list(tmp_path.iterdir()) == []

    def test_reset_failure_skips_restore(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        rec.fail["reset"] = ResetError(3, "lock timeout")

        with pytest.raises(ResetError):
            transfer.dump_and_restore()

        assert rec.calls == ["dump", "reset"]
        assert list(tmp_path.iterdir()) == []

    def test_restore_failure_propagates(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        rec.fail["restore"] = RestoreError(3, "syntax error")

        with pytest.raises(RestoreError):
            transfer.dump_and_restore()
        assert list(tmp_path.iterdir()) == []


class TestFileWorkflows:
    def test_dump_to_file_is_not_rewritten(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path / "work")
        out = tmp_path / "dump.sql"
        transfer.dump_to_file(out)
        assert out.read_text() == RAW_DUMP
        assert rec.calls == ["dump"]

    def test_dump_to_stream(self, source, target, tmp_path: Path):
        transfer, _ = _transfer(source, target, tmp_path)
        sink = io.BytesIO()
        assert transfer.dump_to_stream(sink) == len(RAW_DUMP)
        assert sink.getvalue() == RAW_DUMP.encode()

    def test_restore_from_file(self, source, target, tmp_path: Path):
        work = tmp_path / "work"
        work.mkdir()
        dump = tmp_path / "dump.sql"
        dump.write_text(RAW_DUMP)
        transfer, rec = _transfer(source, target, work)

        transfer.restore_from_file(dump)

        assert rec.calls == ["reset", "restore"]
        assert rec.restored[0].startswith("CREATE TABLE IF NOT EXISTS public.t")
        assert dump.read_text() == RAW_DUMP
        assert list(work.iterdir()) == []

    def test_restore_from_missing_file(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        with pytest.raises(FileNotFoundError, match="Schema file not found"):
            transfer.restore_from_file(tmp_path / "missing.sql")
        assert rec.calls == []

    def test_restore_from_stream(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        transfer.restore_from_stream(io.BytesIO(b"CREATE SEQUENCE public.s;\n"))
        assert rec.calls == ["reset", "restore"]
        assert rec.restored == ["CREATE SEQUENCE IF NOT EXISTS public.s;\n"]

    def test_restore_from_non_utf8_stream(self, source, target, tmp_path: Path):
        transfer, rec = _transfer(source, target, tmp_path)
        transfer.restore_from_stream(
            io.BytesIO(b"CREATE TABLE public.caf\xe9 (id int);\r\n")
        )
        assert rec.calls == ["reset", "restore"]
        assert encode_script(rec.restored[0]) == (
            b"CREATE TABLE IF NOT EXISTS public.caf\xe9 (id int);\r\n"
        )

    def test_restore_from_non_utf8_file(self, source, target, tmp_path: Path):
        work = tmp_path / "work"
        work.mkdir()
        dump = tmp_path / "latin1.sql"
        dump.write_bytes(b"CREATE SCHEMA caf\xe9;\n")
        transfer, rec = _transfer(source, target, work)

        transfer.restore_from_file(dump)

        assert encode_script(rec.restored[0]) == b"CREATE SCHEMA IF NOT EXISTS caf\xe9;\n"


def test_components_built_from_config(source, target):
    transfer = SchemaTransfer(
        source,
        target,
        SchemaTransferConfig(pg_dump_path="/opt/pg_dump", psql_path="/opt/psql"),
    )
    assert transfer._dumper._pg_dump == "/opt/pg_dump"
    assert transfer._restorer._psql == "/opt/psql"
    assert transfer._resetter._default_schema == "public"
