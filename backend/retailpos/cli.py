# Overview: Flask CLI command groups for bootstrap, seeding, and ledger maintenance.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Apply all migrations (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create two demo locations and a few stocked items.
#
# Ledger maintenance:
# - python -m flask ledger reconcile [--item-id 3] [--dry-run]
#   Repair Item.quantity drift against the per-location rows.
# - python -m flask ledger low-stock [--location-id 1]
#   List stock rows at or below their min_stock threshold.

import click
from flask.cli import with_appcontext
from flask_migrate import upgrade

from .extensions import db
from .models import Item, Location
from .services import catalog_service, location_service, reconciler, stock_ledger
from .services.errors import LedgerError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Apply all migrations up to head."""
    upgrade()
    click.echo("OK  Schema is at head")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("OK  Database reset complete")


DEMO_LOCATIONS = [
    ("Main Store", "1 High Street"),
    ("Warehouse", "Unit 7, Industrial Park"),
]

DEMO_ITEMS = [
    # sku, name, buy, sell, {location name: quantity}
    ("DEMO-001", "Espresso Beans 1kg", 1200, 1999, {"Main Store": 20, "Warehouse": 50}),
    ("DEMO-002", "Paper Filters (100)", 150, 399, {"Main Store": 40}),
    ("DEMO-003", "Ceramic Mug", 300, 899, {"Main Store": 3, "Warehouse": 12}),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo locations and items (skips anything that already exists)."""
    location_ids = {}
    for name, address in DEMO_LOCATIONS:
        location = db.session.query(Location).filter_by(name=name).first()
        if location is None:
            location = location_service.create_location(name, address=address)
            click.echo(f"OK  Created location {name}")
        location_ids[name] = location.id

    for sku, name, buy, sell, stock in DEMO_ITEMS:
        if db.session.query(Item.id).filter_by(sku=sku).first() is not None:
            continue
        catalog_service.create_item(
            sku=sku,
            name=name,
            buy_price_cents=buy,
            sell_price_cents=sell,
            location_quantities={location_ids[loc]: qty for loc, qty in stock.items()},
        )
        click.echo(f"OK  Created item {sku}")
    click.echo("OK  Demo data ready")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection and repair commands."""


@ledger_group.command('reconcile')
@click.option('--item-id', type=int, default=None, help='Only this item')
@click.option('--dry-run', is_flag=True, help='Report drift without writing')
@with_appcontext
def reconcile_cmd(item_id, dry_run):
    """Recompute Item.quantity from the per-location rows."""
    try:
        if item_id is not None:
            report = reconciler.check_drift(item_id) if dry_run else reconciler.reconcile(item_id)
            reports = [report] if report.drifted else []
        else:
            reports = reconciler.reconcile_all(dry_run=dry_run)
    except LedgerError as exc:
        raise click.ClickException(str(exc))

    if not reports:
        click.echo("OK  No drift found")
        return

    verb = "would change" if dry_run else "changed"
    for report in reports:
        click.echo(f"DRIFT  item {report.item_id}: {verb} {report.before} -> {report.after}")
    click.echo(f"{len(reports)} item(s) drifted")


@ledger_group.command('low-stock')
@click.option('--location-id', type=int, default=None, help='Only this location')
@with_appcontext
def low_stock_cmd(location_id):
    """List stock rows at or below min_stock."""
    rows = stock_ledger.list_low_stock(location_id=location_id)
    if not rows:
        click.echo("OK  Nothing below threshold")
        return
    for row in rows:
        click.echo(
            f"LOW  location {row.location_id} item {row.item_id} ({row.item.sku}): "
            f"{row.quantity} <= min {row.min_stock}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
