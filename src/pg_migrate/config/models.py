"""Pydantic configuration models for PostgreSQL migrations."""

from __future__ import annotations

import re
from enum import StrEnum
from pathlib import Path
from urllib.parse import quote

from psycopg.conninfo import make_conninfo
from pydantic import BaseModel, Field, SecretStr, field_validator


class SSLMode(StrEnum):
    """libpq ``sslmode`` values."""

    DISABLE = "disable"
    ALLOW = "allow"
    PREFER = "prefer"
    REQUIRE = "require"
    VERIFY_CA = "verify-ca"
    VERIFY_FULL = "verify-full"


class RewriteMode(StrEnum):
    """How the idempotency rewriter scans a dump script."""

    NAIVE = "naive"
    LEXICAL = "lexical"


class ConnectionConfig(BaseModel, frozen=True):
    """Connection parameters for one migration endpoint.

    Two instances exist per run (source and target).  The password is only
    ever handed to child processes through ``libpq_env()`` and to the driver
    through ``conninfo()``.
    """

    host: str = Field(min_length=1)
    port: int = Field(default=5432, ge=1, le=65535)
    user: str = Field(min_length=1)
    password: SecretStr
    database: str = Field(min_length=1)
    sslmode: SSLMode = SSLMode.REQUIRE

    @field_validator("password")
    @classmethod
    def validate_password_present(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            msg = "database password is required"
            raise ValueError(msg)
        return v

    def conninfo(self) -> str:
        """Key-value connection string for the driver and for subscriptions."""
        return make_conninfo(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password.get_secret_value(),
            dbname=self.database,
            sslmode=self.sslmode.value,
        )

    def uri(self) -> str:
        """``postgresql://`` URI form for tools that only accept URIs."""
        user = quote(self.user, safe="")
        password = quote(self.password.get_secret_value(), safe="")
        return (
            f"postgresql://{user}:{password}@{self.host}:{self.port}/"
            f"{quote(self.database, safe='')}"
        )

    def tool_args(self) -> list[str]:
        """Connection arguments shared by ``pg_dump`` and ``psql``."""
        return [
            "-h",
            self.host,
            "-p",
            str(self.port),
            "-U",
            self.user,
            "-d",
            self.database,
        ]

    def libpq_env(self) -> dict[str, str]:
        """Variables injected into a single child process's environment."""
        return {
            "PGPASSWORD": self.password.get_secret_value(),
            "PGSSLMODE": self.sslmode.value,
        }

    def redacted(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.database}"


class SchemaTransferConfig(BaseModel):
    """Settings for the dump / rewrite / reset / restore procedure."""

    default_schema: str = "public"
    pg_dump_path: str = "pg_dump"
    psql_path: str = "psql"
    rewrite_mode: RewriteMode = RewriteMode.NAIVE
    # Parent directory for the scoped dump directory; None uses the system
    # temporary directory.
    work_dir: Path | None = None

    @field_validator("default_schema")
    @classmethod
    def validate_schema_name(cls, v: str) -> str:
        if not v or v.startswith("pg_") or v == "information_schema":
            msg = f"default_schema '{v}' must name a non-system schema"
            raise ValueError(msg)
        return v


_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")
_OPERATIONS = {"INSERT", "UPDATE", "DELETE", "TRUNCATE"}


class ReplicationConfig(BaseModel):
    """Logical replication settings applied through the extension wrapper."""

    extension: str = "aiven_extras"
    publication_name: str = "aiven_db_migrate_pub"
    subscription_name: str = "aiven_db_migrate_sub"
    slot_name: str = "aiven_db_migrate_slot"
    operations: list[str] = Field(
        default_factory=lambda: ["INSERT", "UPDATE", "DELETE"], min_length=1
    )
    create_slot: bool = True
    copy_data: bool = True

    @field_validator("extension", "publication_name", "subscription_name", "slot_name")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if not _IDENTIFIER.match(v):
            msg = (
                f"'{v}' must be a lower-case identifier "
                f"(letters, digits and underscores)"
            )
            raise ValueError(msg)
        return v

    @field_validator("operations")
    @classmethod
    def validate_operations(cls, v: list[str]) -> list[str]:
        ops = [op.strip().upper() for op in v]
        unknown = sorted(set(ops) - _OPERATIONS)
        if unknown:
            msg = f"Unsupported publication operations: {unknown}"
            raise ValueError(msg)
        return ops


class MigrationConfig(BaseModel, extra="forbid"):
    """A complete migration: both endpoints plus procedure settings."""

    source: ConnectionConfig
    target: ConnectionConfig
    schema_transfer: SchemaTransferConfig = SchemaTransferConfig()
    replication: ReplicationConfig = ReplicationConfig()
