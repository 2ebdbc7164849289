"""
redis-enhanced CLI - Main Entry Point.

Provides the `redis-enhanced` command for inspecting a server, driving its
durability policy and working with versioned entities.
"""

import asyncio
import json

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from redis_enhanced.client import EnhancedRedisClient
from redis_enhanced.core.config import ConnectionConfig, get_settings, mask_secret
from redis_enhanced.core.errors import ErrorCode, RedisEnhancedError
from redis_enhanced.core.types import AOFSyncOption, PersistenceType
from redis_enhanced.observability.logging import configure_logging

# Initialize CLI app
app = typer.Typer(
    name="redis-enhanced",
    help="redis-enhanced - versioned entities, transactions and durability control for Redis",
    no_args_is_help=True,
)

console = Console()

# Sub-apps for namespacing
persistence_app = typer.Typer(help="Durability policy operations", no_args_is_help=True)
entity_app = typer.Typer(help="Versioned entity operations", no_args_is_help=True)

app.add_typer(persistence_app, name="persistence")
app.add_typer(entity_app, name="entity")

_state: dict[str, str | None] = {"url": None}


def run_async(coro):
    """Run async function from sync context."""
    return asyncio.run(coro)


def get_client() -> EnhancedRedisClient:
    """Client for the --url override, or from settings."""
    if _state["url"]:
        return EnhancedRedisClient(ConnectionConfig(url=_state["url"]))
    return EnhancedRedisClient()


def _run(coro):
    try:
        return run_async(coro)
    except Exception as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


@app.callback()
def main_options(
    url: str | None = typer.Option(None, "--url", "-u", help="Redis URL (overrides REDIS_URL)"),
):
    """Global options."""
    _state["url"] = url


# =============================================================================
# Server Commands
# =============================================================================


@app.command()
def ping():
    """Check that the server answers."""

    async def _ping():
        async with get_client() as client:
            return await client.ping()

    if _run(_ping()):
        console.print("[green]PONG[/green]")
    else:
        console.print("[red]Redis did not respond[/red]")
        raise typer.Exit(1)


@app.command()
def info(
    section: str | None = typer.Option(None, "--section", "-s", help="Single INFO section"),
):
    """Show server INFO."""

    async def _info():
        async with get_client() as client:
            return await client.server_info(section)

    sections = _run(_info())
    for name, fields in sections.items():
        table = Table(title=f"INFO {name}")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for key, value in fields.items():
            table.add_row(key, value)
        console.print(table)


@app.command()
def config():
    """Show the effective configuration."""
    try:
        settings = get_settings()
    except RedisEnhancedError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for field, value in settings.model_dump(mode="json").items():
        # Mask sensitive values
        if "password" in field.lower():
            value = mask_secret(value) if value else "Not set"
        table.add_row(field, str(value))

    console.print(table)


@app.command()
def version():
    """Show version information."""
    from redis_enhanced import __version__

    console.print(f"redis-enhanced v{__version__}")


# =============================================================================
# Persistence Sub-commands
# =============================================================================


@persistence_app.command("show")
def persistence_show():
    """Show the active durability policy."""

    async def _show():
        async with get_client() as client:
            return await client.persistence.get_current_config()

    policy = _run(_show())
    console.print_json(data=policy.to_dict())


@persistence_app.command("status")
def persistence_status():
    """Show in-progress snapshot/rewrite work."""

    async def _status():
        async with get_client() as client:
            return await client.persistence.check_persistence_status()

    status = _run(_status())

    table = Table(title="Persistence Status")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in status.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@persistence_app.command("set")
def persistence_set(
    persistence_type: PersistenceType | None = typer.Option(
        None, "--type", "-t", help="NONE, RDB or AOF (default: REDIS_PERSISTENCE_TYPE)",
    ),
    save_frequency: int | None = typer.Option(None, "--save-frequency", "-f", help="RDB snapshot interval (seconds)"),
    appendfsync: AOFSyncOption | None = typer.Option(None, "--appendfsync", "-a", help="AOF fsync mode"),
):
    """
    Apply a durability policy.

    Options left out come from the persistence_* settings; an option that
    does not belong to the chosen type is rejected.
    """
    try:
        settings = get_settings()
    except RedisEnhancedError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if persistence_type is None and save_frequency is None and appendfsync is None:
        policy = settings.default_persistence_policy().to_dict()
    else:
        kind = persistence_type or settings.persistence_type
        policy = {"type": kind.value}
        if save_frequency is not None or kind == PersistenceType.RDB:
            frequency = settings.rdb_save_frequency if save_frequency is None else save_frequency
            policy["rdbOptions"] = {"saveFrequency": frequency}
        if appendfsync is not None or kind == PersistenceType.AOF:
            policy["aofOptions"] = {"appendfsync": (appendfsync or settings.aof_appendfsync).value}

    async def _set():
        async with get_client() as client:
            await client.persistence.set_persistence(policy)
            return await client.persistence.get_current_config()

    applied = _run(_set())
    console.print(f"[green]Persistence set:[/green] {applied.type.value}")
    console.print_json(data=applied.to_dict())


# =============================================================================
# Entity Sub-commands
# =============================================================================


@entity_app.command("save")
def entity_save(
    schema: str = typer.Argument(..., help="Schema (key namespace)"),
    data: str = typer.Option(..., "--data", "-d", help="Entity fields as a JSON object"),
    entity_id: str | None = typer.Option(None, "--id", "-i", help="Existing entity to update (32-character hex id)"),
):
    """Save a new version of an entity."""
    try:
        fields = json.loads(data)
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] Invalid JSON: {escape(str(e))}")
        raise typer.Exit(1)
    if not isinstance(fields, dict):
        console.print("[red]Error:[/red] --data must be a JSON object")
        raise typer.Exit(1)

    async def _save():
        async with get_client() as client:
            manager = client.transaction_manager(schema)
            record = dict(fields)
            if entity_id:
                try:
                    current = await manager.fetch(entity_id)
                except RedisEnhancedError as e:
                    if e.code != ErrorCode.ENTITY_NOT_FOUND:
                        raise
                    record["entityId"] = entity_id
                else:
                    record = {**current.to_dict(), **fields}
            return await manager.save(record)

    saved = _run(_save())
    console.print(f"[green]Saved {escape(schema)}:{saved.entity_id}[/green] (version {saved.version})")
    console.print_json(data=saved.to_dict())


@entity_app.command("fetch")
def entity_fetch(
    schema: str = typer.Argument(..., help="Schema (key namespace)"),
    entity_id: str = typer.Argument(..., help="Entity id"),
):
    """Show an entity."""

    async def _fetch():
        async with get_client() as client:
            return await client.transaction_manager(schema).fetch(entity_id)

    entity = _run(_fetch())
    console.print_json(data=entity.to_dict())


@entity_app.command("remove")
def entity_remove(
    schema: str = typer.Argument(..., help="Schema (key namespace)"),
    entity_id: str = typer.Argument(..., help="Entity id"),
):
    """Remove an entity and every key derived from it."""

    async def _remove():
        async with get_client() as client:
            await client.transaction_manager(schema).remove(entity_id)

    _run(_remove())
    console.print(f"[green]Removed {escape(schema)}:{escape(entity_id)}[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Main entry point for the CLI."""
    load_dotenv()
    try:
        settings = get_settings()
    except RedisEnhancedError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    configure_logging(level=settings.log_level, json_output=settings.log_json)
    app()


if __name__ == "__main__":
    main()
