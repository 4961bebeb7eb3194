#!/usr/bin/env python3
"""
VaultPilot - Yield Pool Ranking and Vault Reallocation
Main CLI entry point
"""

import sys
import time

import click
from rich.console import Console
from rich.table import Table

from vaultpilot import __version__
from vaultpilot.config import load_config
from vaultpilot.utils import get_logger, setup_logging_from_config

# Initialize console
console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option('--config', 'config_path', type=click.Path(), default='config/config.yaml',
              help='Path to config.yaml')
@click.pass_context
def cli(ctx, config_path):
    """
    VaultPilot - Yield Pool Ranking and Vault Reallocation

    Ranks a fixed set of yield pools by a risk-adjusted opportunity score
    and moves the vault's capital to the best one.

    \b
    Quick start:
        vaultpilot db init             # Create tables
        vaultpilot track               # Fetch one round of pool snapshots
        vaultpilot rank                # Show the current ranking
        vaultpilot automate            # One automation cycle (dry-run)
        vaultpilot run                 # Start the scheduler (dry-run)
    """
    if ctx.obj is None:
        ctx.obj = {}

    try:
        ctx.obj['config'] = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Failed to load configuration:[/red] {e}")
        sys.exit(1)

    setup_logging_from_config(ctx.obj['config'])
    ctx.obj['logger'] = get_logger('vaultpilot.cli')


def _build_scheduler(config, dry_run: bool = True):
    from vaultpilot.scheduler import ContinuousScheduler
    return ContinuousScheduler.from_config(config, dry_run=dry_run)


def _confirm_live(dry_run: bool) -> None:
    if not dry_run:
        console.print("\n[bold red]" + "=" * 60 + "[/bold red]")
        console.print("[bold red]WARNING: LIVE MODE ENABLED[/bold red]")
        console.print("[bold red]Real transactions will be sent to the vault![/bold red]")
        console.print("[bold red]" + "=" * 60 + "[/bold red]")
        console.print("\n[yellow]Press Ctrl+C within 10 seconds to cancel...[/yellow]\n")
        time.sleep(10)
    else:
        console.print("\n[bold green]DRY-RUN MODE[/bold green]")
        console.print("[dim]No transactions will be sent[/dim]\n")


def _fmt(value, spec: str = ".2f", default: str = "-") -> str:
    return default if value is None else format(value, spec)


# ==============================================================================
# STATUS COMMANDS
# ==============================================================================

@cli.command()
@click.pass_context
def status(ctx):
    """Check system status"""
    config = ctx.obj['config']

    from vaultpilot.database import Store
    from vaultpilot.monitor import HealthChecker
    from vaultpilot.pools import load_tracked_pools

    console.print(f"\n[bold cyan]VaultPilot v{__version__}[/bold cyan]")
    console.print("Status: [green]Configuration loaded[/green]\n")

    pools = load_tracked_pools(config)
    store = Store.from_config()
    health = HealthChecker(store=store, tracked_pools=len(pools)).check_all()

    console.print("[bold]Database:[/bold]")
    color = "green" if health.database == 'OK' else "red"
    console.print(f"  Status: [{color}]{health.database}[/{color}]\n")

    console.print("[bold]Scheduler:[/bold]")
    console.print(f"  Interval: {config.get('scheduler.interval_minutes')} min")
    console.print(f"  Tracked pools: {len(pools)}")
    console.print(f"  Min score gap: {config.get('automation.min_score_gap', 0.5)}\n")

    if health.last_decision:
        console.print(f"[bold]Last automation decision:[/bold] {health.last_decision}\n")


@cli.command()
@click.pass_context
def track(ctx):
    """Fetch and store one round of pool snapshots"""
    config = ctx.obj['config']
    scheduler = _build_scheduler(config)

    if not scheduler.store.is_connected():
        console.print("[red]Database not reachable[/red]")
        sys.exit(1)

    snapshots = scheduler.tracker.refresh_all()
    ok = sum(1 for s in snapshots if s.success)
    console.print(f"[green]Stored {len(snapshots)} snapshots ({ok} successful)[/green]")


@cli.command()
@click.option('--asset-size', type=float, default=None, help='Capital to score for (USD)')
@click.option('--token', type=str, default=None, help='Only pools accepting this token')
@click.pass_context
def rank(ctx, asset_size, token):
    """Show pools ranked as of now"""
    config = ctx.obj['config']
    scheduler = _build_scheduler(config)

    ranked = scheduler.tracker.ranked_pools(asset_size=asset_size, input_token=token)
    if not ranked:
        console.print("[yellow]No pool data yet - run 'track' first[/yellow]")
        return

    table = Table(title=f"Ranked pools (asset size ${asset_size or scheduler.tracker.asset_size:,.0f})")
    table.add_column("#", justify="right")
    table.add_column("Pool")
    table.add_column("APY %", justify="right")
    table.add_column("TVL USD", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Address", style="dim")

    for i, pool in enumerate(ranked, 1):
        table.add_row(
            str(i),
            pool.description,
            _fmt(pool.total_apy),
            _fmt(pool.tvl_usd, ",.0f"),
            _fmt(pool.opportunity_score),
            pool.pool_address,
        )

    console.print(table)


# ==============================================================================
# AUTOMATION COMMANDS
# ==============================================================================

@cli.command()
@click.option('--dry-run/--live', default=True, help='Dry-run (default) or LIVE transactions')
@click.option('--refresh/--no-refresh', default=True, help='Refresh pool snapshots first')
@click.pass_context
def automate(ctx, dry_run, refresh):
    """Run one automation cycle now"""
    config = ctx.obj['config']
    _confirm_live(dry_run)

    scheduler = _build_scheduler(config, dry_run=dry_run)

    if refresh:
        result = scheduler.run_once(triggered_by='cli', task_type='manual')
        if result.skipped:
            console.print(f"[yellow]Cycle skipped: {result.skip_reason}[/yellow]")
            return
        if not result.success:
            console.print(f"[red]Cycle failed:[/red] {result.error}")
            sys.exit(1)
        if result.metadata.get('automation') == 'skipped':
            record = None
        else:
            record = scheduler.store.latest_automation_record()
    else:
        record = scheduler.automation.run_cycle()

    if record is None:
        console.print("[yellow]Automation skipped (see logs)[/yellow]")
        return

    color = "green" if record.success else "red"
    console.print(f"Decision: [bold]{record.decision}[/bold] ({record.reason})")
    console.print(f"Success: [{color}]{record.success}[/{color}]")
    if record.action and record.action.get('type') != 'none':
        console.print(f"Action: {record.action}")
    if record.error_message:
        console.print(f"[red]Error:[/red] {record.error_message}")


@cli.command()
@click.option('--dry-run/--live', default=True, help='Dry-run (default) or LIVE transactions')
@click.pass_context
def run(ctx, dry_run):
    """Start the scheduler (refresh + automation every interval)"""
    logger = ctx.obj['logger']
    config = ctx.obj['config']
    _confirm_live(dry_run)

    try:
        scheduler = _build_scheduler(config, dry_run=dry_run)
        logger.info(f"Starting scheduler (dry_run={dry_run})...")
        console.print("[green]Scheduler started. Press Ctrl+C to stop gracefully.[/green]\n")
        scheduler.run()
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        logger.error(f"Scheduler error: {e}", exc_info=True)
        sys.exit(1)


@cli.command()
@click.option('--host', type=str, default=None, help='Bind host')
@click.option('--port', type=int, default=None, help='Bind port')
@click.option('--with-scheduler', is_flag=True, help='Run the scheduler inside the API process')
@click.option('--dry-run/--live', default=True, help='Dry-run (default) or LIVE transactions')
@click.pass_context
def serve(ctx, host, port, with_scheduler, dry_run):
    """Start the HTTP API"""
    import uvicorn
    from web3 import Web3

    from vaultpilot.api.main import create_app

    config = ctx.obj['config']
    if with_scheduler:
        _confirm_live(dry_run)

    scheduler = _build_scheduler(config, dry_run=dry_run)
    rpc_url = config.get('chain.rpc_url')
    rpc = Web3(Web3.HTTPProvider(rpc_url)) if rpc_url else None

    app = create_app(
        scheduler,
        rpc=rpc,
        run_scheduler=with_scheduler,
        cors_origins=config.get('api.cors_origins'),
    )
    uvicorn.run(
        app,
        host=host or config.get('api.host', '0.0.0.0'),
        port=port or config.get('api.port', 8000),
        log_config=None,
    )


@cli.command()
@click.option('--limit', type=int, default=20, help='Number of records')
@click.pass_context
def history(ctx, limit):
    """Show recent automation records"""
    from vaultpilot.database import Store

    records = Store.from_config().automation_history(limit=limit)
    if not records:
        console.print("[yellow]No automation records yet[/yellow]")
        return

    table = Table(title="Automation history")
    table.add_column("Time")
    table.add_column("Decision")
    table.add_column("Best pool")
    table.add_column("Gap", justify="right")
    table.add_column("Action")
    table.add_column("OK")

    for record in records:
        best = (record.best_pool or {}).get('description', '-')
        action = (record.action or {}).get('type', 'none')
        table.add_row(
            record.timestamp.strftime('%Y-%m-%d %H:%M:%S') if record.timestamp else '-',
            record.decision,
            best,
            _fmt(record.opportunity_score_difference),
            action,
            "[green]yes[/green]" if record.success else "[red]no[/red]",
        )

    console.print(table)


# ==============================================================================
# DATABASE MANAGEMENT
# ==============================================================================

@cli.group()
def db():
    """Database management commands"""
    pass


@db.command()
@click.pass_context
def init(ctx):
    """Create all tables (development; use 'db migrate' in production)"""
    from vaultpilot.database import init_db

    ctx.obj['logger'].info("Initializing database schema...")
    init_db()
    console.print("[green]Database tables created/verified[/green]")


@db.command()
@click.pass_context
def migrate(ctx):
    """Run Alembic migrations to head"""
    from alembic import command
    from alembic.config import Config as AlembicConfig

    ctx.obj['logger'].info("Running database migrations...")
    command.upgrade(AlembicConfig("alembic.ini"), "head")
    console.print("[green]Migrations applied[/green]")


# ==============================================================================
# MAIN ENTRY POINT
# ==============================================================================

if __name__ == "__main__":
    cli(obj={})
