"""Docker Compose fixtures for integration tests."""

from __future__ import annotations

import shutil
import subprocess
import time
from collections.abc import Iterator

import psycopg
import pytest

from pg_migrate.config.models import ConnectionConfig

COMPOSE_FILE = "docker/docker-compose.yml"

# Everything a test may have created in either database.
_WIPE = """\
DO $wipe$
DECLARE
    s text;
BEGIN
    FOR s IN
        SELECT schema_name FROM information_schema.schemata
        WHERE schema_name <> 'information_schema'
          AND schema_name NOT LIKE 'pg\\_%'
    LOOP
        EXECUTE format('DROP SCHEMA %I CASCADE', s);
    END LOOP;
END
$wipe$;
CREATE SCHEMA public;
"""


def _compose(*args: str) -> None:
    subprocess.run(
        ["docker", "compose", "-f", COMPOSE_FILE, *args],
        check=True,
        capture_output=True,
    )


def _wait_for_postgres(conn: ConnectionConfig, *, timeout: int = 60) -> None:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with psycopg.connect(conn.conninfo(), connect_timeout=2):
                return
        except psycopg.OperationalError:
            time.sleep(1)
    raise TimeoutError(f"PostgreSQL at {conn.redacted()} not ready after {timeout}s")


def execute(conn: ConnectionConfig, sql: str) -> None:
    with psycopg.connect(conn.conninfo(), autocommit=True) as pg:
        pg.execute(sql)


def fetch_all(conn: ConnectionConfig, query: str) -> list[tuple]:
    with psycopg.connect(conn.conninfo()) as pg:
        return pg.execute(query).fetchall()


def user_objects(conn: ConnectionConfig) -> set[tuple[str, str, str]]:
    """(schema, name, kind) of every user relation, routine and schema."""
    rows = fetch_all(
        conn,
        """
        SELECT n.nspname, c.relname, c.relkind::text
        FROM pg_class c JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname <> 'information_schema' AND n.nspname NOT LIKE 'pg\\_%'
        UNION ALL
        SELECT n.nspname, p.proname, 'f'
        FROM pg_proc p JOIN pg_namespace n ON n.oid = p.pronamespace
        WHERE n.nspname <> 'information_schema' AND n.nspname NOT LIKE 'pg\\_%'
        UNION ALL
        SELECT schema_name, schema_name, 'schema'
        FROM information_schema.schemata
        WHERE schema_name <> 'information_schema' AND schema_name NOT LIKE 'pg\\_%'
        """,
    )
    return {tuple(r) for r in rows}


@pytest.fixture(scope="session")
def source() -> ConnectionConfig:
    return ConnectionConfig(
        host="localhost",
        port=15432,
        user="postgres",
        password="postgres123",
        database="testdb",
        sslmode="disable",
    )


@pytest.fixture(scope="session")
def target() -> ConnectionConfig:
    return ConnectionConfig(
        host="localhost",
        port=25432,
        user="postgres",
        password="postgres123",
        database="testdb",
        sslmode="disable",
    )


@pytest.fixture(scope="session")
def docker_services(source, target) -> Iterator[None]:
    """Start both PostgreSQL containers and wait until they accept connections."""
    for tool in ("docker", "pg_dump", "psql"):
        if shutil.which(tool) is None:
            pytest.skip(f"{tool} not found in PATH")
    _compose("up", "-d")
    try:
        _wait_for_postgres(source)
        _wait_for_postgres(target)
        yield
    finally:
        _compose("down", "-v")


@pytest.fixture
def clean_databases(docker_services, source, target) -> None:
    execute(source, _WIPE)
    execute(target, _WIPE)
