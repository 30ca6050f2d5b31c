# Overview: Flask CLI commands for inspecting and maintaining branch databases.

# backend/branch_pos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Branch registry:
# - python -m flask branches list [--all]
#   List registered branches with their engine and cache state.
# - python -m flask branches create --code B001 --name "Downtown" [--engine sqlite] [--tax-rate-bps 1500]
#   Register a branch in the head-office database (no provisioning).
#
# Branch databases:
# - python -m flask branches init-schema 1
#   Create missing branch tables (development databases only).
# - python -m flask branches ping 1
#   Resolve the branch handle and run a round-trip query.
# - python -m flask branches invalidate 1
#   Drop the cached handle; the next use reconnects.
#
# Reporting / reconciliation:
# - python -m flask branches stats 1 --from 2026-01-01 --to 2026-01-31
#   Print sales statistics for a date range.
# - python -m flask branches discrepancies 1
#   List products flagged with negative stock.

import json

import click
from flask.cli import with_appcontext

from .extensions import branch_router
from .constants import DatabaseEngine
from .errors import PosError
from .services import branch_service, inventory_service, reporting_service


@click.group('branches')
def branches_group():
    """Branch registry and branch database commands."""


@branches_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive branches')
@with_appcontext
def list_branches(include_inactive):
    """List registered branches."""
    branches = branch_service.list_branches(include_inactive=include_inactive)

    if not branches:
        click.echo("No branches found.")
        return

    cached = set(branch_router.cached_branch_ids())

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Code':<10} {'Name':<30} {'Engine':<12} {'Active':<8} {'Cached'}")
    click.echo("="*80)

    for branch in branches:
        active_str = "Yes" if branch.is_active else "No"
        cached_str = "Yes" if branch.id in cached else "No"
        click.echo(f"{branch.id:<5} {branch.code:<10} {branch.name[:30]:<30} {branch.engine:<12} {active_str:<8} {cached_str}")

    click.echo("="*80 + "\n")


@branches_group.command('create')
@click.option('--code', required=True, help='Branch code used in invoice numbers')
@click.option('--name', required=True, help='Branch display name')
@click.option('--engine', type=click.Choice([e.value for e in DatabaseEngine]), default=DatabaseEngine.SQLITE.value)
@click.option('--server', default=None, help='Database server host')
@click.option('--port', type=int, default=None, help='Database server port')
@click.option('--database', default=None, help='Database name')
@click.option('--username', default=None, help='Database user')
@click.option('--password', default=None, help='Database password')
@click.option('--tax-rate-bps', type=int, default=0, help='Tax rate in basis points (1500 = 15%)')
@with_appcontext
def create_branch(code, name, engine, server, port, database, username, password, tax_rate_bps):
    """Register a branch."""
    try:
        branch = branch_service.create_branch(
            code=code,
            name=name,
            engine=engine,
            db_server=server,
            db_port=port,
            db_name=database,
            db_username=username,
            db_password=password,
            tax_rate_bps=tax_rate_bps,
        )
    except PosError as exc:
        raise click.ClickException(f"{exc.message}: {exc.details}")

    click.echo(f"Created branch {branch.id} ({branch.code}, {branch.engine})")


@branches_group.command('init-schema')
@click.argument('branch_id', type=int)
@with_appcontext
def init_schema(branch_id):
    """Create missing tables in a branch database."""
    try:
        handle = branch_router.ensure_schema(branch_id)
    except PosError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"Branch {branch_id}: schema ready ({handle.engine_kind.value})")


@branches_group.command('ping')
@click.argument('branch_id', type=int)
@with_appcontext
def ping_branch(branch_id):
    """Check that a branch database is reachable."""
    try:
        handle = branch_router.resolve(branch_id)
        handle.ping()
    except PosError as exc:
        kind = getattr(exc, "kind", None)
        suffix = f" [{kind.value}]" if kind is not None else ""
        raise click.ClickException(f"{exc.message}{suffix}")
    click.echo(f"Branch {branch_id}: OK ({handle.engine_kind.value})")


@branches_group.command('invalidate')
@click.argument('branch_id', type=int)
@with_appcontext
def invalidate_branch(branch_id):
    """Drop the cached handle for a branch."""
    if branch_router.invalidate(branch_id):
        click.echo(f"Branch {branch_id}: cached handle dropped")
    else:
        click.echo(f"Branch {branch_id}: nothing cached")


@branches_group.command('stats')
@click.argument('branch_id', type=int)
@click.option('--from', 'date_from', required=True, help='Start date (ISO-8601)')
@click.option('--to', 'date_to', required=True, help='End date (ISO-8601, inclusive)')
@with_appcontext
def branch_stats(branch_id, date_from, date_to):
    """Print sales statistics as JSON."""
    try:
        stats = reporting_service.get_sales_stats(branch_id, date_from, date_to)
    except PosError as exc:
        raise click.ClickException(f"{exc.message}: {exc.details}")
    click.echo(json.dumps(stats, indent=2))


@branches_group.command('discrepancies')
@click.argument('branch_id', type=int)
@with_appcontext
def branch_discrepancies(branch_id):
    """List products with negative stock."""
    try:
        products = inventory_service.list_discrepant_products(branch_id)
    except PosError as exc:
        raise click.ClickException(exc.message)

    if not products:
        click.echo("No inventory discrepancies.")
        return

    for product in products:
        click.echo(f"{product['id']:<6} {product['sku']:<20} {product['name'][:30]:<30} {product['stock_level']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(branches_group)
