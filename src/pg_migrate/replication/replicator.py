"""Logical replication setup through the ``aiven_extras`` wrapper functions."""

from __future__ import annotations

from typing import Any

import psycopg
import structlog

from pg_migrate.config.models import ConnectionConfig, ReplicationConfig

logger = structlog.get_logger()


class ReplicationError(Exception):
    """Raised when publication or subscription setup fails."""


async def ensure_extension(conn: Any, name: str) -> bool:
    """Install extension *name* unless present; return True if installed now."""
    row = await (
        await conn.execute("SELECT 1 FROM pg_extension WHERE extname = %s", (name,))
    ).fetchone()
    if row is not None:
        return False
    await conn.execute(f"CREATE EXTENSION IF NOT EXISTS {name} CASCADE")
    return True


async def fetch_wal_level(conn: Any) -> str:
    row = await (await conn.execute("SHOW wal_level")).fetchone()
    return str(row[0]) if row else ""


class Replicator:
    """Creates the publication on the source and the subscription on the target.

    Both operations drop any object of the same name first, so re-running
    after a schema change starts a fresh initial copy.
    """

    def __init__(
        self,
        source: ConnectionConfig,
        target: ConnectionConfig,
        config: ReplicationConfig | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._config = config or ReplicationConfig()

    async def setup(self) -> None:
        await self.create_publication()
        await self.create_subscription()
        logger.info(
            "replication.setup_completed",
            publication=self._config.publication_name,
            subscription=self._config.subscription_name,
        )

    async def _prepare_extension(self, conn: Any, endpoint: str) -> None:
        ext = self._config.extension
        if await ensure_extension(conn, ext):
            logger.info("replication.extension_installed", extension=ext, endpoint=endpoint)
        else:
            logger.debug("replication.extension_present", extension=ext, endpoint=endpoint)

    async def create_publication(self) -> None:
        """Recreate the all-tables publication on the source."""
        cfg = self._config
        try:
            async with await psycopg.AsyncConnection.connect(
                self._source.conninfo(), autocommit=True
            ) as conn:
                await self._prepare_extension(conn, "source")

                wal_level = await fetch_wal_level(conn)
                if wal_level != "logical":
                    logger.warning(
                        "replication.wal_level_not_logical",
                        endpoint="source",
                        wal_level=wal_level,
                    )

                await conn.execute(
                    f"DROP PUBLICATION IF EXISTS {cfg.publication_name}"
                )
                logger.info("replication.publication_dropped", name=cfg.publication_name)

                await conn.execute(
                    f"SELECT * FROM {cfg.extension}"
                    ".pg_create_publication_for_all_tables(%s, %s)",
                    (cfg.publication_name, ",".join(cfg.operations)),
                )
        except psycopg.Error as exc:
            msg = (
                f"Failed to create publication '{cfg.publication_name}' "
                f"on source {self._source.redacted()}: {exc}"
            )
            raise ReplicationError(msg) from exc
        logger.info(
            "replication.publication_created",
            name=cfg.publication_name,
            operations=cfg.operations,
        )

    async def create_subscription(self) -> None:
        """Recreate the subscription on the target, starting the initial copy."""
        cfg = self._config
        try:
            async with await psycopg.AsyncConnection.connect(
                self._target.conninfo(), autocommit=True
            ) as conn:
                await self._prepare_extension(conn, "target")

                await conn.execute(
                    f"DROP SUBSCRIPTION IF EXISTS {cfg.subscription_name}"
                )
                logger.info(
                    "replication.subscription_dropped", name=cfg.subscription_name
                )

                await conn.execute(
                    f"SELECT * FROM {cfg.extension}"
                    ".pg_create_subscription(%s, %s, %s, %s, %s, %s)",
                    (
                        cfg.subscription_name,
                        self._source.conninfo(),
                        cfg.publication_name,
                        cfg.slot_name,
                        cfg.create_slot,
                        cfg.copy_data,
                    ),
                )
        except psycopg.Error as exc:
            msg = (
                f"Failed to create subscription '{cfg.subscription_name}' "
                f"on target {self._target.redacted()}: {exc}"
            )
            raise ReplicationError(msg) from exc
        logger.info(
            "replication.subscription_created",
            name=cfg.subscription_name,
            slot=cfg.slot_name,
            copy_data=cfg.copy_data,
        )
