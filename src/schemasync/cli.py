"""
Command-line interface for schemasync.
"""

import asyncio
import sys
from functools import wraps
from pathlib import Path
from typing import List

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import (
    ColumnSpec,
    DatabaseConnection,
    ForeignKeySpec,
    IndexSpec,
    SchemaSyncConfig,
    TableSpec,
)
from .database import ConnectionPool, PostgresQueryExecutor, SchemaIntrospector
from .exceptions import ConfigurationError, SchemaSyncError
from .logger import SchemaBuildLogger, setup_logging
from .schema import LiveTable, ReconciliationResult, SchemaReconciler


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SchemaSyncError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """schemasync: Declarative PostgreSQL schema synchronization."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


def _load_config(path: str, debug: bool) -> SchemaSyncConfig:
    schemasync_config = SchemaSyncConfig.from_yaml(path)
    schemasync_config.validate_config()
    setup_logging(schemasync_config.logging.model_dump(), debug=debug)
    return schemasync_config


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="schemasync.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Write a starter configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    _create_default_config().to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Point the database section at your PostgreSQL server")
    console.print("2. Declare the tables you want to manage")
    console.print(f"3. Run: schemasync validate-config -c {output}")
    console.print(f"4. Run: schemasync sync -c {output} --dry-run")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file and target schema."""
    console.print(f"Validating configuration: {config}")

    try:
        schemasync_config = SchemaSyncConfig.from_yaml(config)
        schemasync_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")

        _display_config_summary(schemasync_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Apply changes inside a transaction and roll them back",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print the result as JSON",
)
@click.pass_context
@handle_errors
def sync(ctx, config: str, dry_run: bool, as_json: bool):
    """Synchronize the database schema with the configuration."""
    schemasync_config = _load_config(config, ctx.obj.get("debug", False))
    dry_run = dry_run or schemasync_config.sync.dry_run

    if not as_json:
        console.print("[blue]Schema synchronization[/blue]")
        if dry_run:
            console.print("[yellow]Dry run mode - changes will be rolled back[/yellow]")

    result = asyncio.run(run_sync(schemasync_config, dry_run))

    if as_json:
        console.print_json(data=result.to_dict())
    else:
        _display_result(result)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.pass_context
@handle_errors
def inspect(ctx, config: str):
    """Show the live schema of the configured tables."""
    schemasync_config = _load_config(config, ctx.obj.get("debug", False))

    tables = asyncio.run(load_live_tables(schemasync_config))
    found = {table.name for table in tables}

    for table in tables:
        _display_live_table(table)

    for spec in schemasync_config.tables:
        if spec.name not in found:
            console.print(f"[yellow]Table {spec.name} does not exist yet[/yellow]")


async def run_sync(schemasync_config: SchemaSyncConfig, dry_run: bool) -> ReconciliationResult:
    """Run one reconciliation against the configured database."""
    async with ConnectionPool(schemasync_config.database.to_connection_config()) as pool:
        executor = PostgresQueryExecutor(pool, schemasync_config.sync.schema_name)
        reconciler = SchemaReconciler(
            executor,
            schemasync_config.target_tables(),
            build_logger=SchemaBuildLogger(),
            dry_run=dry_run,
        )
        return await reconciler.run()


async def load_live_tables(schemasync_config: SchemaSyncConfig) -> List[LiveTable]:
    """Load the live state of every configured table."""
    async with ConnectionPool(schemasync_config.database.to_connection_config()) as pool:
        introspector = SchemaIntrospector(pool, schemasync_config.sync.schema_name)
        return await introspector.load_tables([t.name for t in schemasync_config.tables])


def _create_default_config() -> SchemaSyncConfig:
    """Create a starter configuration with an example schema."""
    users = TableSpec(
        name="users",
        columns=[
            ColumnSpec(name="id", type="int", primary=True, generated=True),
            ColumnSpec(name="email", type="varchar", length=255),
            ColumnSpec(name="name", type="varchar", length=255, nullable=True),
            ColumnSpec(name="created_at", type="timestamptz", default="now()"),
        ],
        indices=[IndexSpec(columns=["email"], unique=True)],
    )
    posts = TableSpec(
        name="posts",
        columns=[
            ColumnSpec(name="id", type="int", primary=True, generated=True),
            ColumnSpec(name="user_id", type="int"),
            ColumnSpec(name="title", type="text"),
        ],
        foreign_keys=[
            ForeignKeySpec(
                columns=["user_id"],
                references="users",
                referenced_columns=["id"],
                on_delete="CASCADE",
            )
        ],
        indices=[IndexSpec(columns=["user_id"])],
    )
    return SchemaSyncConfig(
        database=DatabaseConnection(
            host="localhost",
            database="app",
            user="postgres",
            password="${SCHEMASYNC_DB_PASSWORD}",
        ),
        tables=[users, posts],
    )


def _display_config_summary(config: SchemaSyncConfig) -> None:
    """Display configuration summary."""
    db = config.database
    console.print(f"\nDatabase: {db.user}@{db.host}:{db.port}/{db.database}")
    console.print(f"Schema: {config.sync.schema_name}")

    table = Table(title="Target Tables")
    table.add_column("Table", style="cyan")
    table.add_column("Columns", justify="right")
    table.add_column("Primary Key")
    table.add_column("Foreign Keys", justify="right")
    table.add_column("Indices", justify="right")

    for spec in config.tables:
        primary = ", ".join(c.name for c in spec.columns if c.primary)
        table.add_row(
            spec.name,
            str(len(spec.columns)),
            primary or "-",
            str(len(spec.foreign_keys)),
            str(len(spec.indices)),
        )

    console.print(table)


def _display_result(result: ReconciliationResult) -> None:
    """Display the changes of a reconciliation run."""
    summary = result.summary()

    if not result.has_changes:
        console.print("[green]✓[/green] Schema is up to date")
        return

    table = Table(title="Schema Changes")
    table.add_column("Change", style="cyan")
    table.add_column("Table", style="magenta")
    table.add_column("Objects")
    table.add_column("Destructive")

    for change in result.changes:
        table.add_row(
            change.change_type.value,
            change.table,
            ", ".join(change.target_objects),
            "[red]yes[/red]" if change.is_destructive else "no",
        )

    console.print(table)

    if summary["status"] == "dry_run":
        console.print(
            f"[yellow]Dry run:[/yellow] {summary['total_changes']} changes rolled back "
            f"({summary['execution_time_ms']}ms)"
        )
    else:
        console.print(
            f"[green]✓[/green] Applied {summary['total_changes']} changes "
            f"({summary['destructive_changes']} destructive) in {summary['execution_time_ms']}ms"
        )


def _display_live_table(live_table: LiveTable) -> None:
    """Display the live state of one table."""
    table = Table(title=live_table.name)
    table.add_column("Column", style="cyan")
    table.add_column("Type")
    table.add_column("Nullable")
    table.add_column("Default")
    table.add_column("Key")
    table.add_column("Comment")

    for column in live_table.columns:
        key = []
        if column.is_primary:
            key.append("PK")
        if column.is_generated:
            key.append("generated")
        table.add_row(
            column.name,
            column.type,
            "yes" if column.is_nullable else "no",
            column.default or "",
            ", ".join(key),
            column.comment or "",
        )

    console.print(table)

    for fk in live_table.foreign_keys:
        console.print(
            f"  FK {fk.name}: ({', '.join(fk.column_names)}) -> "
            f"{fk.referenced_table_name} ({', '.join(fk.referenced_column_names)})"
        )
    for index in live_table.indices:
        unique = "unique " if index.is_unique else ""
        console.print(f"  {unique}index {index.name}: ({', '.join(index.column_names)})")


if __name__ == "__main__":
    main()
