"""Typer CLI for the Kafka retry engine."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from kafka_retry.config.loader import load_retry_config
from kafka_retry.config.models import RetryConfig
from kafka_retry.core.records import Direction
from kafka_retry.policy.evaluator import RetryabilityPolicy
from kafka_retry.routing.router import PatternRouter

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="kafka-retry", help="Kafka retry engine CLI")


def _load(config_path: str) -> RetryConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_retry_config(path)
    except Exception as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc


def _direction(value: str) -> Direction:
    try:
        return Direction(value.lower())
    except ValueError:
        console.print(
            f"[red]Unknown direction '{value}'[/red] (use 'consumer' or 'producer')"
        )
        raise typer.Exit(1) from None


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to retry config YAML"),
) -> None:
    """Validate a retry configuration file and print the handler tables."""
    config = _load(config_path)
    console.print(
        f"[green]Valid[/green]: max_retries={config.max_retries}, "
        f"initial_interval_minutes={config.initial_interval_minutes}, "
        f"batch_size={config.batch_size}"
    )
    console.print(f"  global non-retryable: {list(config.non_retryable_exceptions)}")
    console.print(f"  global retryable:     {list(config.retryable_exceptions)}")

    table = Table(title="Handlers")
    table.add_column("Direction", style="cyan")
    table.add_column("Handler")
    table.add_column("Topic pattern")
    table.add_column("Policy")
    table.add_column("Callback")
    for direction in Direction:
        handlers = config.handler_mappings.for_direction(direction)
        for handler_id, policy in handlers.items():
            scope = "own" if policy.has_exception_policy else "global"
            callback = (
                policy.callback.callback_type.value if policy.callback else "-"
            )
            table.add_row(direction.value, handler_id, policy.topic, scope, callback)
    console.print(table)


@app.command()
def resolve(
    topic: str = typer.Argument(..., help="Topic name to route"),
    config_path: str = typer.Option(..., "--config", "-c", help="Retry config YAML"),
    direction: str = typer.Option("consumer", "--direction", "-d"),
) -> None:
    """Show which handler a topic routes to."""
    config = _load(config_path)
    router = PatternRouter(config.handler_mappings, config.topic_delimiter)
    handler_id = router.resolve(topic, _direction(direction))
    if handler_id is None:
        console.print(f"[yellow]No handler for '{topic}' ({direction})[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]{handler_id}[/green]")


@app.command("check-error")
def check_error(
    error: str = typer.Argument(..., help="Error identifier, e.g. TimeoutError"),
    config_path: str = typer.Option(..., "--config", "-c", help="Retry config YAML"),
    handler: str = typer.Option(..., "--handler", help="Handler id"),
    direction: str = typer.Option("consumer", "--direction", "-d"),
) -> None:
    """Show whether an error would be retried for a handler."""
    config = _load(config_path)
    policy = RetryabilityPolicy(config)
    error_type = policy.taxonomy.resolve(error)
    if error_type is None:
        console.print(f"[red]Unknown error identifier '{error}'[/red]")
        raise typer.Exit(1)
    resolved_direction = _direction(direction)
    scope = policy.rules_for(handler, resolved_direction).scope
    if policy.is_retryable_type(error_type, handler, resolved_direction):
        console.print(f"[green]retry[/green] (policy: {scope})")
    else:
        console.print(f"[red]permanent failure[/red] (policy: {scope})")


@app.command("init-db")
def init_db(
    config_path: str = typer.Argument(..., help="Path to retry config YAML"),
) -> None:
    """Create the failed record and lock tables."""
    config = _load(config_path)
    if config.database is None:
        console.print("[red]No database section in config[/red]")
        raise typer.Exit(1)

    from kafka_retry.locking.postgres import PostgresLockProvider
    from kafka_retry.persistence.postgres import PostgresFailedRecordRepository

    repository = PostgresFailedRecordRepository(config.database)
    locks = PostgresLockProvider(config.database)
    try:
        repository.ensure_schema()
        locks.ensure_schema()
    except Exception as exc:
        console.print(f"[red]Schema creation failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    finally:
        repository.close()
        locks.close()
    console.print(
        f"[green]Ready:[/green] {config.database.records_table}, "
        f"{config.database.lock_table}"
    )


@app.command()
def tick(
    config_path: str = typer.Argument(..., help="Path to retry config YAML"),
) -> None:
    """Run a single retry tick with the configured callbacks."""
    config = _load(config_path)
    if config.database is None:
        console.print("[red]No database section in config[/red]")
        raise typer.Exit(1)

    from kafka_retry.engine import create_postgres_engine

    engine = create_postgres_engine(config)
    engine.register_configured_callbacks()

    async def _tick() -> None:
        await engine.start_callbacks()
        try:
            result = await engine.scheduler.run_tick()
        finally:
            await engine.stop()
        if result.lock_acquired:
            console.print(
                f"selected={result.selected} processed={result.processed} "
                f"retried={result.retried} exhausted={result.exhausted}"
            )
        if result.aborted:
            console.print("[red]Tick aborted[/red]")
            raise typer.Exit(1)
        if not result.lock_acquired:
            console.print("[yellow]Lock held elsewhere, nothing done[/yellow]")

    try:
        asyncio.run(_tick())
    finally:
        engine.close()


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to retry config YAML"),
) -> None:
    """Run the retry scheduler until interrupted."""
    config = _load(config_path)
    if config.database is None:
        console.print("[red]No database section in config[/red]")
        raise typer.Exit(1)

    from kafka_retry.engine import create_postgres_engine

    engine = create_postgres_engine(config)
    registered = engine.register_configured_callbacks()
    console.print(
        f"[yellow]Starting retry scheduler:[/yellow] every "
        f"{config.scheduler.interval_seconds}s, lock '{config.lock.name}'"
    )
    for key in registered:
        console.print(f"  callback: {key}")
    try:
        engine.run()
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
    finally:
        engine.close()
