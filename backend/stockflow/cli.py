# Overview: Flask CLI command group for bootstrap and inspection of stock data.

# backend/stockflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask stock <command> [options]
#
# - python -m flask stock init-db
#   Create all tables (dev/test; production uses flask db upgrade).
# - python -m flask stock seed-demo --tenant-id 1
#   Idempotently create a demo warehouse, two locations, a product and stock.
# - python -m flask stock balances --tenant-id 1 [--location-id 2] [--product-id 3] [--include-zero]
#   List balance rows.
# - python -m flask stock requests --tenant-id 1 [--status OPEN] [--limit 20]
#   List movement requests, newest first.
# - python -m flask stock audit --tenant-id 1 [--entity-type movement_request] [--entity-id 5] [--limit 50]
#   Show the audit trail, newest first.

import click
from flask.cli import with_appcontext

from .context import ActorContext
from .extensions import db
from .models import Location, Product, ProductPresentation, Warehouse
from .services import audit_service, balance_service, movement_request_service
from .time_utils import to_utc_z
from .validation import format_quantity


@click.group('stock')
def stock_group():
    """Stock reconciliation bootstrap and inspection commands."""


@stock_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the current database URL."""
    db.create_all()
    click.echo("PASS Tables created")


@stock_group.command('seed-demo')
@click.option('--tenant-id', type=int, default=1, help='Tenant to seed')
@click.option('--quantity', type=str, default='100', help='Initial stock at the central location')
@with_appcontext
def seed_demo(tenant_id, quantity):
    """
    Create demo reference data and initial stock for one tenant.

    Creates (if missing):
    - Warehouse CENTRAL with location CENTRAL-A1
    - Warehouse BRANCH with location BRANCH-RECV
    - Product DEMO-001 with a BOX12 presentation
    - An IN movement of --quantity units into CENTRAL-A1
    """
    click.echo(f"START Seeding demo data for tenant {tenant_id}...")

    central = _ensure_warehouse(tenant_id, "CENTRAL", "Central Warehouse", "Bogota")
    branch = _ensure_warehouse(tenant_id, "BRANCH", "Branch Pharmacy", "Medellin")
    central_loc = _ensure_location(tenant_id, central, "CENTRAL-A1")
    branch_loc = _ensure_location(tenant_id, branch, "BRANCH-RECV")

    product = db.session.query(Product).filter_by(tenant_id=tenant_id, sku="DEMO-001").first()
    if product is None:
        product = Product(tenant_id=tenant_id, sku="DEMO-001", name="Demo Tablets 500mg", generic_name="Demo")
        db.session.add(product)
        db.session.flush()
        db.session.add(
            ProductPresentation(
                tenant_id=tenant_id,
                product_id=product.id,
                name="BOX12",
                units_per_presentation=12,
                is_default=True,
            )
        )
        click.echo(f"PASS Created product {product.sku} (ID: {product.id})")
    else:
        click.echo(f"PASS Using existing product {product.sku} (ID: {product.id})")
    db.session.commit()

    snapshot = balance_service.get_balance(tenant_id=tenant_id, product_id=product.id, location_id=central_loc.id)
    if snapshot.quantity == 0:
        balance_service.apply_movement(
            tenant_id=tenant_id,
            product_id=product.id,
            quantity=quantity,
            to_location_id=central_loc.id,
            reference_type="SEED",
            note="Demo opening stock",
            actor=ActorContext(tenant_id=tenant_id, actor_name="cli"),
        )
        click.echo(f"PASS Received {quantity} units of {product.sku} into {central_loc.code}")
    else:
        click.echo(f"PASS {central_loc.code} already holds {format_quantity(snapshot.quantity)} units")

    click.echo(
        f"\nDONE Central location ID: {central_loc.id}, branch location ID: {branch_loc.id}, "
        f"branch warehouse ID: {branch.id}, product ID: {product.id}"
    )


def _ensure_warehouse(tenant_id, code, name, city):
    warehouse = db.session.query(Warehouse).filter_by(tenant_id=tenant_id, code=code).first()
    if warehouse is None:
        warehouse = Warehouse(tenant_id=tenant_id, code=code, name=name, city=city)
        db.session.add(warehouse)
        db.session.commit()
        click.echo(f"PASS Created warehouse {code} (ID: {warehouse.id})")
    return warehouse


def _ensure_location(tenant_id, warehouse, code):
    location = db.session.query(Location).filter_by(warehouse_id=warehouse.id, code=code).first()
    if location is None:
        location = Location(tenant_id=tenant_id, warehouse_id=warehouse.id, code=code)
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location {code} (ID: {location.id})")
    return location


@stock_group.command('balances')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--location-id', type=int, help='Filter by location ID')
@click.option('--product-id', type=int, help='Filter by product ID')
@click.option('--include-zero', is_flag=True, help='Include rows with zero on-hand')
@with_appcontext
def list_balances(tenant_id, location_id, product_id, include_zero):
    """List inventory balances."""
    balances = balance_service.list_balances(
        tenant_id=tenant_id,
        location_id=location_id,
        product_id=product_id,
        include_zero=include_zero,
    )

    if not balances:
        click.echo("No balances found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Location':<10} {'Product':<10} {'Batch':<8} {'On-hand':>14} {'Reserved':>14} {'Available':>14}")
    click.echo("="*80)

    for b in balances:
        click.echo(
            f"{b.location_id:<10} {b.product_id:<10} {b.batch_id or '-':<8} "
            f"{format_quantity(b.quantity):>14} {format_quantity(b.reserved_quantity):>14} "
            f"{format_quantity(b.available_quantity):>14}"
        )

    click.echo("="*80 + "\n")


@stock_group.command('requests')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--status', help='OPEN, FULFILLED or CANCELLED')
@click.option('--limit', type=int, default=20, help='Max rows')
@with_appcontext
def list_requests(tenant_id, status, limit):
    """List movement requests, newest first."""
    requests_ = movement_request_service.list_movement_requests(tenant_id=tenant_id, status=status, limit=limit)

    if not requests_:
        click.echo("No movement requests found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Status':<11} {'Confirmation':<13} {'Warehouse':<10} {'Items':<6} {'Requested by'}")
    click.echo("="*80)

    for r in requests_:
        click.echo(
            f"{r.id:<6} {r.status:<11} {r.confirmation_status:<13} {r.warehouse_id:<10} "
            f"{len(r.items):<6} {r.requested_by_name}"
        )

    click.echo("="*80 + "\n")


@stock_group.command('audit')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--entity-type', help='movement_request, stock_return or inventory_balance')
@click.option('--entity-id', type=int, help='Filter by entity ID')
@click.option('--limit', type=int, default=50, help='Max rows')
@with_appcontext
def list_audit(tenant_id, entity_type, entity_id, limit):
    """Show audit events, newest first."""
    events = audit_service.list_audit_events(
        tenant_id=tenant_id, entity_type=entity_type, entity_id=entity_id, limit=limit
    )

    if not events:
        click.echo("No audit events found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'When':<21} {'Action':<36} {'Entity':<24} {'Actor'}")
    click.echo("="*80)

    for ev in events:
        click.echo(
            f"{ev.id:<6} {to_utc_z(ev.occurred_at) or '-':<21} {ev.action:<36} "
            f"{ev.entity_type + ' #' + str(ev.entity_id):<24} {ev.actor_name or ev.actor_id or '-'}"
        )

    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
