"""Preflight checks for the client binaries and both migration endpoints."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import psycopg
import structlog

from pg_migrate.config.models import ConnectionConfig, MigrationConfig

logger = structlog.get_logger()

CONNECT_TIMEOUT_SECONDS = 5


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""


@dataclass
class MigrationHealth:
    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(c.status == Status.HEALTHY for c in self.components)

    @property
    def summary(self) -> dict[str, str]:
        return {c.name: c.status.value for c in self.components}


def _query_one(conn: ConnectionConfig, query: str, params: tuple[Any, ...] = ()) -> Any:
    with psycopg.connect(
        conn.conninfo(), connect_timeout=CONNECT_TIMEOUT_SECONDS
    ) as pg:
        return pg.execute(query, params).fetchone()


def check_binary(name: str, path: str) -> ComponentHealth:
    """Check that a client executable resolves on PATH."""
    resolved = shutil.which(path)
    if resolved is None:
        return ComponentHealth(
            name=name, status=Status.UNHEALTHY, detail=f"'{path}' not found in PATH"
        )
    return ComponentHealth(name=name, status=Status.HEALTHY, detail=resolved)


def check_endpoint(name: str, conn: ConnectionConfig) -> ComponentHealth:
    """Check database connectivity and report the server version."""
    try:
        row = _query_one(conn, "SHOW server_version")
        return ComponentHealth(
            name=name,
            status=Status.HEALTHY,
            detail=f"PostgreSQL {row[0]} at {conn.redacted()}",
        )
    except Exception as exc:
        return ComponentHealth(name=name, status=Status.UNHEALTHY, detail=str(exc))


def check_wal_level(name: str, conn: ConnectionConfig) -> ComponentHealth:
    """Check that ``wal_level`` allows logical decoding."""
    try:
        row = _query_one(conn, "SHOW wal_level")
        wal_level = str(row[0])
        status = Status.HEALTHY if wal_level == "logical" else Status.UNHEALTHY
        return ComponentHealth(name=name, status=status, detail=f"wal_level={wal_level}")
    except Exception as exc:
        return ComponentHealth(name=name, status=Status.UNHEALTHY, detail=str(exc))


def check_extension(name: str, conn: ConnectionConfig, extension: str) -> ComponentHealth:
    """Check that the replication extension is installed or installable."""
    try:
        row = _query_one(
            conn,
            "SELECT installed_version FROM pg_available_extensions WHERE name = %s",
            (extension,),
        )
    except Exception as exc:
        return ComponentHealth(name=name, status=Status.UNHEALTHY, detail=str(exc))
    if row is None:
        return ComponentHealth(
            name=name, status=Status.UNHEALTHY, detail=f"{extension} not available"
        )
    if row[0] is None:
        detail = f"{extension} available, not installed"
    else:
        detail = f"{extension} {row[0]} installed"
    return ComponentHealth(name=name, status=Status.HEALTHY, detail=detail)


def check_migration_health(
    config: MigrationConfig, *, replication: bool = True
) -> MigrationHealth:
    """Run all preflight checks and return the aggregated result."""
    transfer = config.schema_transfer
    components = [
        check_binary("pg_dump", transfer.pg_dump_path),
        check_binary("psql", transfer.psql_path),
        check_endpoint("source", config.source),
        check_endpoint("target", config.target),
    ]
    if replication:
        ext = config.replication.extension
        components.append(check_wal_level("source-wal-level", config.source))
        components.append(check_extension("source-extension", config.source, ext))
        components.append(check_extension("target-extension", config.target, ext))

    result = MigrationHealth(components=components)
    logger.info("preflight.completed", healthy=result.healthy, components=result.summary)
    return result
