# Overview: Flask CLI command groups for bootstrap, seeding, and stock inspection.

# backend/sareeflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Shop bootstrap:
# - python -m flask shop init-db
#   Create all tables (use "flask db upgrade" for migrated databases).
# - python -m flask shop reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask shop seed
#   Seed demo products, customers and a supplier. Safe to rerun.
#
# Stock ledger:
# - python -m flask inventory adjust 3 5 --direction subtract --reference "damaged"
#   Add or subtract stock for a product; prints the movement.
# - python -m flask inventory low-stock [--critical-ratio 0.5]
#   List low-stock products, most urgent first.
# - python -m flask inventory reconcile [--only-drift]
#   Compare cached stock against opening stock plus movements.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Customer, Supplier
from .services import stock_service, dashboard_service
from .validation import ValidationError, NotFoundError, ConflictError


@click.group('shop')
def shop_group():
    """Database bootstrap and demo data commands."""


@shop_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@shop_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask shop seed' for demo data.")


DEMO_PRODUCTS = [
    # sku, name, category, price, cost, stock, min, color, fabric
    ("SLK-KAN-001", "Kanjivaram Silk Saree", "silk", 1250000, 850000, 8, 3, "Maroon", "Silk"),
    ("SLK-BAN-002", "Banarasi Silk Saree", "silk", 980000, 640000, 2, 3, "Gold", "Silk"),
    ("COT-CHA-003", "Chanderi Cotton Saree", "cotton", 320000, 190000, 15, 5, "Peach", "Cotton"),
    ("COT-TAN-004", "Tant Cotton Saree", "cotton", 180000, 100000, 0, 4, "White", "Cotton"),
    ("GEO-PRT-005", "Printed Georgette Saree", "georgette", 240000, 140000, 12, 5, "Navy", "Georgette"),
    ("DES-PAR-006", "Designer Party Wear Saree", "designer", 1500000, 980000, 4, 2, "Emerald", "Net"),
]

DEMO_CUSTOMERS = [
    ("Priya Sharma", "9876543210", "priya@example.com", "Chennai"),
    ("Anita Reddy", "9123456780", "anita@example.com", "Hyderabad"),
    ("Meena Iyer", "9988776655", None, "Bengaluru"),
]


@shop_group.command('seed')
@with_appcontext
def seed():
    """
    Seed a small demo catalog so a fresh environment is immediately usable.

    Safe to rerun: products are keyed by SKU, customers by phone, the
    supplier by name; existing rows are skipped.
    """
    created = {"products": 0, "customers": 0, "suppliers": 0}

    for sku, name, category, price, cost, stock, min_level, color, fabric in DEMO_PRODUCTS:
        if db.session.query(Product.id).filter_by(sku=sku).first():
            continue
        db.session.add(Product(
            sku=sku,
            name=name,
            category=category,
            price_cents=price,
            cost_price_cents=cost,
            stock_quantity=stock,
            opening_stock_quantity=stock,
            min_stock_level=min_level,
            color=color,
            fabric=fabric,
            size="5.5m",
        ))
        created["products"] += 1

    for name, phone, email, city in DEMO_CUSTOMERS:
        if db.session.query(Customer.id).filter_by(phone=phone).first():
            continue
        db.session.add(Customer(name=name, phone=phone, email=email, city=city, state="India"))
        created["customers"] += 1

    if not db.session.query(Supplier.id).filter_by(name="Kanchi Weavers Co-op").first():
        db.session.add(Supplier(
            name="Kanchi Weavers Co-op",
            phone="04427221234",
            city="Kanchipuram",
            state="Tamil Nadu",
            payment_terms="Net 30",
        ))
        created["suppliers"] += 1

    db.session.commit()
    summary = ", ".join(f"{v} {k}" for k, v in created.items())
    click.echo(f"PASS Seeded {summary}.")


@click.group('inventory')
def inventory_group():
    """Stock ledger commands."""


@inventory_group.command('adjust')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--direction', type=click.Choice(['add', 'subtract']), default='add', show_default=True)
@click.option('--reference', default=None, help='Reference stored on the movement')
@click.option('--notes', default=None)
@with_appcontext
def adjust(product_id, quantity, direction, reference, notes):
    """Add or subtract stock for a product."""
    try:
        movement = stock_service.adjust_stock(
            product_id,
            quantity,
            direction,
            reference=reference,
            notes=notes,
        )
    except (ValidationError, NotFoundError, ConflictError) as e:
        raise click.ClickException(str(e))

    msg = f"PASS Movement {movement.id}: delta {movement.quantity_delta:+d}, stock now {movement.stock_after}"
    if movement.was_clamped:
        msg += f" (clamped; requested {movement.requested_quantity:+d})"
    click.echo(msg)


@inventory_group.command('low-stock')
@click.option('--critical-ratio', type=float, default=None, help='Override LOW_STOCK_CRITICAL_RATIO')
@with_appcontext
def low_stock(critical_ratio):
    """List low-stock products, most urgent first."""
    try:
        items = dashboard_service.low_stock_products(critical_ratio)
    except ValidationError as e:
        raise click.ClickException(str(e))

    if not items:
        click.echo("PASS No low-stock products.")
        return

    click.echo(f"{'ID':<6} {'SKU':<14} {'STATUS':<9} {'STOCK':>6} {'MIN':>5}  NAME")
    for item in items:
        click.echo(
            f"{item['id']:<6} {item['sku']:<14} {item['stock_status']:<9} "
            f"{item['stock_quantity']:>6} {item['min_stock_level']:>5}  {item['name']}"
        )


@inventory_group.command('reconcile')
@click.option('--only-drift', is_flag=True, help='Show only products whose stock disagrees with the ledger')
@with_appcontext
def reconcile(only_drift):
    """Compare cached stock against opening stock plus movements."""
    rows = stock_service.reconcile_all(only_drift=only_drift)
    drift = [r for r in rows if not r["consistent"]]

    for row in rows:
        marker = "OK  " if row["consistent"] else "FAIL"
        click.echo(
            f"{marker} product {row['product_id']} ({row['sku']}): stock {row['stock_quantity']}, "
            f"expected {row['expected_quantity']}, drift {row['drift']:+d}"
        )

    if drift:
        raise click.ClickException(f"{len(drift)} product(s) out of balance")
    click.echo("PASS Stock matches the ledger.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(shop_group)
    app.cli.add_command(inventory_group)
