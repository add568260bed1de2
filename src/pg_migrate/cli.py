"""Typer CLI for PostgreSQL-to-PostgreSQL migrations."""

from __future__ import annotations

import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from pg_migrate.config.loader import load_migration_config
from pg_migrate.config.models import MigrationConfig, RewriteMode
from pg_migrate.observability.health import Status, check_migration_health
from pg_migrate.observability.logging import LogLevel, configure_logging
from pg_migrate.replication.replicator import ReplicationError, Replicator
from pg_migrate.schema.errors import SchemaTransferError
from pg_migrate.schema.rewriter import rewrite_file
from pg_migrate.schema.transfer import SchemaTransfer

console = Console()
app = typer.Typer(name="pg-migrate", help="PostgreSQL to PostgreSQL migration CLI")


@dataclass
class _Options:
    config_path: str | None = None
    source: dict[str, Any] = field(default_factory=dict)
    target: dict[str, Any] = field(default_factory=dict)


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", "-c", help="Migration YAML"),
    source_host: str | None = typer.Option(None, help="Source PostgreSQL host"),
    source_port: int | None = typer.Option(None, help="Source PostgreSQL port"),
    source_user: str | None = typer.Option(None, help="Source PostgreSQL user"),
    source_password: str | None = typer.Option(
        None, help="Source PostgreSQL password"
    ),
    source_db: str | None = typer.Option(None, help="Source database name"),
    source_sslmode: str | None = typer.Option(
        None, help="Source SSL mode (require, verify-ca, verify-full, disable)"
    ),
    target_host: str | None = typer.Option(None, help="Target PostgreSQL host"),
    target_port: int | None = typer.Option(None, help="Target PostgreSQL port"),
    target_user: str | None = typer.Option(None, help="Target PostgreSQL user"),
    target_password: str | None = typer.Option(
        None, help="Target PostgreSQL password"
    ),
    target_db: str | None = typer.Option(None, help="Target database name"),
    target_sslmode: str | None = typer.Option(
        None, help="Target SSL mode (require, verify-ca, verify-full, disable)"
    ),
    log_level: LogLevel = typer.Option(
        LogLevel.INFO, "--log-level", help="Minimum log level"
    ),
    log_json: bool = typer.Option(False, "--log-json", help="Emit JSON log lines"),
) -> None:
    """Dump, restore and replicate a PostgreSQL schema between two servers."""
    configure_logging(log_level, json=log_json)
    ctx.obj = _Options(
        config_path=config,
        source={
            "host": source_host,
            "port": source_port,
            "user": source_user,
            "password": source_password,
            "database": source_db,
            "sslmode": source_sslmode,
        },
        target={
            "host": target_host,
            "port": target_port,
            "user": target_user,
            "password": target_password,
            "database": target_db,
            "sslmode": target_sslmode,
        },
    )


def _load(ctx: typer.Context) -> MigrationConfig:
    opts: _Options = ctx.obj
    if opts.config_path is not None and not Path(opts.config_path).exists():
        console.print(f"[red]Config file not found: {opts.config_path}[/red]")
        raise typer.Exit(1)
    try:
        return load_migration_config(
            opts.config_path, source=opts.source, target=opts.target
        )
    except ValueError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(1) from exc


def _fail(step: str, detail: str) -> typer.Exit:
    console.print(f"[red]Step failed:[/red] {step}")
    if detail:
        console.print(detail.rstrip(), markup=False, highlight=False)
    return typer.Exit(1)


def _transfer(cfg: MigrationConfig) -> SchemaTransfer:
    return SchemaTransfer(cfg.source, cfg.target, cfg.schema_transfer)


@app.command()
def migrate(
    ctx: typer.Context,
    skip_replication: bool = typer.Option(
        False, "--skip-replication", help="Transfer the schema only"
    ),
) -> None:
    """Full migration: schema dump, reset, restore, then logical replication."""
    cfg = _load(ctx)
    console.print(
        f"[yellow]Migrating[/yellow] {cfg.source.redacted()} → {cfg.target.redacted()}"
    )

    console.print("Step 1: dumping and restoring schema...")
    try:
        _transfer(cfg).dump_and_restore()
    except SchemaTransferError as exc:
        raise _fail(exc.step, exc.stderr) from exc
    console.print("[green]Schema restored[/green]")

    if skip_replication:
        return

    console.print("Step 2: setting up logical replication...")
    try:
        asyncio.run(Replicator(cfg.source, cfg.target, cfg.replication).setup())
    except ReplicationError as exc:
        raise _fail("replication", str(exc)) from exc
    console.print(
        f"[green]Subscription '{cfg.replication.subscription_name}' created[/green]"
        ", initial data copy in progress"
    )


@app.command()
def dump(
    ctx: typer.Context,
    schema_file: str | None = typer.Option(
        None, "--schema-file", help="Output path (default: a new temporary file)"
    ),
) -> None:
    """Dump the source schema to a file without rewriting it."""
    cfg = _load(ctx)
    created = schema_file is None
    if schema_file is None:
        fd, schema_file = tempfile.mkstemp(prefix="schema-dump-", suffix=".sql")
        os.close(fd)
    path = Path(schema_file)
    try:
        _transfer(cfg).dump_to_file(path)
    except SchemaTransferError as exc:
        if created:
            path.unlink(missing_ok=True)
        raise _fail(exc.step, exc.stderr) from exc
    console.print(f"[green]Schema dumped to[/green] {path}")


@app.command()
def restore(
    ctx: typer.Context,
    schema_file: str = typer.Option(..., "--schema-file", help="Dump to restore"),
) -> None:
    """Reset the target and restore a schema dump into it."""
    cfg = _load(ctx)
    path = Path(schema_file)
    if not path.is_file():
        console.print(f"[red]Schema file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        _transfer(cfg).restore_from_file(path)
    except SchemaTransferError as exc:
        raise _fail(exc.step, exc.stderr) from exc
    console.print(f"[green]Schema restored to[/green] {cfg.target.redacted()}")


@app.command()
def replicate(ctx: typer.Context) -> None:
    """Create the publication on the source and the subscription on the target."""
    cfg = _load(ctx)
    try:
        asyncio.run(Replicator(cfg.source, cfg.target, cfg.replication).setup())
    except ReplicationError as exc:
        raise _fail("replication", str(exc)) from exc
    console.print("[green]Logical replication configured[/green]")


@app.command()
def rewrite(
    input_path: str = typer.Argument(..., help="Schema dump to rewrite"),
    output: str | None = typer.Option(
        None, "--output", "-o", help="Destination (default: rewrite in place)"
    ),
    mode: RewriteMode = typer.Option(
        RewriteMode.NAIVE, "--mode", help="naive or lexical scanning"
    ),
) -> None:
    """Rewrite a dump's CREATE statements into their repeat-safe forms."""
    source = Path(input_path)
    if not source.is_file():
        console.print(f"[red]Schema file not found: {source}[/red]")
        raise typer.Exit(1)
    destination = Path(output) if output else source
    rewrite_file(source, destination, mode)
    console.print(f"[green]Rewritten[/green] {source} → {destination}")


@app.command()
def check(
    ctx: typer.Context,
    skip_replication: bool = typer.Option(
        False, "--skip-replication", help="Skip replication prerequisites"
    ),
) -> None:
    """Check client binaries and both endpoints before migrating."""
    cfg = _load(ctx)
    result = check_migration_health(cfg, replication=not skip_replication)

    table = Table(title="Migration Preflight")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")

    for c in result.components:
        style = "green" if c.status == Status.HEALTHY else "red"
        table.add_row(c.name, f"[{style}]{c.status}[/{style}]", c.detail)

    console.print(table)
    if not result.healthy:
        raise typer.Exit(1)


@app.command()
def validate(ctx: typer.Context) -> None:
    """Resolve and validate the migration configuration."""
    cfg = _load(ctx)
    console.print("[green]Valid[/green]")
    console.print(f"  source: {cfg.source.redacted()} (sslmode={cfg.source.sslmode})")
    console.print(f"  target: {cfg.target.redacted()} (sslmode={cfg.target.sslmode})")
    transfer = cfg.schema_transfer
    console.print(
        f"  schema: default={transfer.default_schema} "
        f"rewrite={transfer.rewrite_mode}"
    )
    rep = cfg.replication
    console.print(
        f"  replication: {rep.extension} pub={rep.publication_name} "
        f"sub={rep.subscription_name} slot={rep.slot_name}"
    )
