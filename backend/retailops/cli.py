# Overview: Flask CLI command group for fulfillment bootstrap and inspection.

# backend/retailops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask fulfillment <command> [options]
#
# - python -m flask fulfillment init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask fulfillment seed-demo [--branch-code MAIN]
#   Demo data: one branch, three products, one pending sale. Re-runs reuse them.
# - python -m flask fulfillment queues [--branch-id 1]
#   Print warehouse queue sizes and the pending return groups.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Product, Sale
from .services import aggregation_service, sales_service


@click.group('fulfillment')
def fulfillment_group():
    """Order fulfillment bootstrap and inspection commands."""


@fulfillment_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


@fulfillment_group.command('seed-demo')
@click.option('--branch-code', default='MAIN', help='Branch code to seed')
@with_appcontext
def seed_demo(branch_code):
    """Create a demo branch with products and one pending sale."""
    branch = db.session.query(Branch).filter_by(code=branch_code).first()
    if not branch:
        branch = Branch(name="Main Branch", code=branch_code, is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    demo_products = [
        ("Cement 50kg", "CEM-50", 1250, 100),
        ("Steel rebar 12mm", "REB-12", 890, 400),
        ("Roof sheet 3m", "RSH-3", 2400, 60),
    ]
    products = []
    for name, sku, price, stock in demo_products:
        product = db.session.query(Product).filter_by(branch_id=branch.id, sku=sku).first()
        if not product:
            product = Product(
                branch_id=branch.id,
                name=name,
                sku=sku,
                unit_price_cents=price,
                quantity_in_stock=stock,
            )
            db.session.add(product)
        products.append(product)
    db.session.commit()
    click.echo(f"PASS Products ready: {', '.join(p.sku for p in products)}")

    existing = db.session.query(Sale).filter_by(branch_id=branch.id).order_by(Sale.id).first()
    if existing:
        click.echo(f"PASS Using existing sale {existing.receipt_number} (ID: {existing.id})")
        return

    sale = sales_service.create_sale(
        branch_id=branch.id,
        cashier_id=1,
        lines=[{"product_id": products[0].id, "quantity": 2}, {"product_id": products[1].id, "quantity": 10}],
        customer_name="Demo Customer",
    )
    click.echo(f"PASS Created sale {sale.receipt_number} (ID: {sale.id}, status: {sale.status})")


@fulfillment_group.command('queues')
@click.option('--branch-id', type=int, default=None, help='Only this branch')
@with_appcontext
def show_queues(branch_id):
    """Print warehouse queue sizes and pending return groups."""
    queues = aggregation_service.load_warehouse_queues(branch_id)
    click.echo("Warehouse queues:")
    for status, entries in queues.items():
        click.echo(f"  {status:<10} {len(entries)}")

    groups = aggregation_service.load_pending_return_groups(branch_id)
    click.echo(f"Pending return groups: {len(groups)}")
    for group in groups:
        click.echo(f"  {group.receipt_number}  items={len(group.return_ids)}  qty={group.total_quantity}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(fulfillment_group)
