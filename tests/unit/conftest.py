"""Shared fixtures for unit tests."""

from __future__ import annotations

import pytest

from pg_migrate.config.loader import ENDPOINT_ENV_FIELDS
from pg_migrate.config.models import ConnectionConfig


@pytest.fixture(autouse=True)
def _clear_endpoint_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep SOURCE_DB_* / TARGET_DB_* from the developer's shell out of tests."""
    for prefix in ("SOURCE", "TARGET"):
        for suffix in ENDPOINT_ENV_FIELDS:
            monkeypatch.delenv(f"{prefix}_DB_{suffix}", raising=False)
    monkeypatch.delenv("PGPASSWORD", raising=False)


@pytest.fixture
def source() -> ConnectionConfig:
    return ConnectionConfig(
        host="src.example.com",
        user="migrator",
        password="src-secret",
        database="shop",
    )


@pytest.fixture
def target() -> ConnectionConfig:
    return ConnectionConfig(
        host="dst.example.com",
        port=6432,
        user="admin",
        password="dst-secret",
        database="shop",
        sslmode="disable",
    )
