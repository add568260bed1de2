"""Errors raised at each external-process boundary of a schema transfer."""

from __future__ import annotations


class SchemaTransferError(Exception):
    """A ``pg_dump`` / ``psql`` invocation failed.

    ``returncode`` is None when the executable could not be started at all.
    ``stderr`` is the tool's diagnostic output, verbatim.
    """

    step = "schema transfer"

    def __init__(self, returncode: int | None, stderr: str) -> None:
        self.returncode = returncode
        self.stderr = stderr
        status = "not started" if returncode is None else f"exit status {returncode}"
        super().__init__(f"{self.step} failed ({status}): {stderr.strip()}")


class DumpError(SchemaTransferError):
    """Raised when ``pg_dump`` fails against the source."""

    step = "dump"


class ResetError(SchemaTransferError):
    """Raised when the drop-everything block fails against the target."""

    step = "reset"


class RestoreError(SchemaTransferError):
    """Raised when ``psql`` fails while restoring the rewritten script."""

    step = "restore"
