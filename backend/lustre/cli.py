# Overview: Flask CLI command groups for bootstrap, staff and stock seeding.

# backend/lustre/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system set-setting commission.default_rate 7.5
#   Store a setting (value parsed as JSON, falling back to a string).
#
# Staff:
# - python -m flask staff create --username sam --role manager --full-name "Sam Lee"
#   Create a staff member and print their API token (shown once).
# - python -m flask staff list
# - python -m flask staff rotate-token sam
# - python -m flask staff capabilities manager
#
# Stock:
# - python -m flask stock add-product --sku RING-001 --name "Gold ring" --price 250 --cost 120 --tax-rate 20
# - python -m flask stock receive --sku RING-001 --quantity 3 [--unit-cost 120]
# - python -m flask stock adjust --sku RING-001 --delta -1 --reason "Damaged in display"
# - python -m flask stock low
# - python -m flask stock add-location --name "Front counter"

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Staff, Supplier
from .models.staff import ROLE_HIERARCHY
from .permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    PermissionCategory,
    capabilities_in_category,
    describe_capability,
)
from .services import cash_drawer_service, settings_service, staff_service, stock_service
from .services.errors import InsufficientStockError
from .validation import MAX_TAX_RATE, FieldErrors, ValidationError, coerce_amount


def _fail(e: ValidationError):
    details = "; ".join(f"{k}: {v}" for k, v in e.fields.items())
    raise click.ClickException(f"{e} ({details})" if details else str(e))


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left alone)."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask staff create' to add an owner.")


@system_group.command('set-setting')
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_setting_cli(key, value):
    """Store a setting value (JSON literal or plain string)."""
    try:
        parsed = json.loads(value)
    except ValueError:
        parsed = value
    try:
        row = settings_service.set_setting(key, parsed)
    except ValidationError as e:
        _fail(e)
    click.echo(f"PASS {row.key} = {json.dumps(row.value_json)}")


@click.group('staff')
def staff_group():
    """Staff inspection/bootstrap commands."""


@staff_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--role', type=click.Choice(ROLE_HIERARCHY), default='staff', show_default=True, help='Role')
@click.option('--full-name', default=None, help='Display name')
@click.option('--email', default=None, help='Email address')
@with_appcontext
def create_staff_cli(username, role, full_name, email):
    """Create a staff member and print their API token."""
    try:
        staff, token = staff_service.create_staff(username=username, role=role, full_name=full_name, email=email)
    except ValidationError as e:
        _fail(e)
    click.echo(f"PASS Created {staff.role} '{staff.username}' (ID: {staff.id})")
    click.echo(f"TOKEN {token}")
    click.echo("WARN The token is shown once; store it now.")


@staff_group.command('list')
@with_appcontext
def list_staff():
    """List all staff with role and active status."""
    rows = db.session.query(Staff).order_by(Staff.id.asc()).all()
    if not rows:
        click.echo("No staff found.")
        return
    for s in rows:
        status = "active" if s.is_active else "inactive"
        click.echo(f"{s.id:>4}  {s.username:<20} {s.role:<8} {status}  {s.display_name}")


@staff_group.command('rotate-token')
@click.argument('username')
@with_appcontext
def rotate_token_cli(username):
    """Issue a new API token, invalidating the old one."""
    staff = db.session.query(Staff).filter_by(username=username).first()
    if staff is None:
        raise click.ClickException(f"Staff '{username}' not found")
    token = staff_service.rotate_token(staff)
    click.echo(f"TOKEN {token}")


@staff_group.command('capabilities')
@click.argument('role', type=click.Choice(ROLE_HIERARCHY))
def capabilities_cli(role):
    """Show which capabilities a role holds, grouped by category."""
    granted = set(DEFAULT_ROLE_PERMISSIONS[role])
    for category in (PermissionCategory.SALES, PermissionCategory.CONSIGNMENTS, PermissionCategory.COMMISSION, PermissionCategory.SYSTEM):
        click.echo(category)
        for code in capabilities_in_category(category):
            definition = describe_capability(code)
            mark = "x" if code in granted else " "
            click.echo(f"  [{mark}] {code:<24} {definition['description']}")


@click.group('stock')
def stock_group():
    """Catalog and stock seeding commands."""


@stock_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price', required=True, help='Unit price')
@click.option('--cost', default='0', show_default=True, help='Unit cost')
@click.option('--tax-rate', default='0', show_default=True, help='Tax rate percent')
@click.option('--category', default=None)
@click.option('--untracked', is_flag=True, help='Sell without stock tracking')
@click.option('--consignment-supplier', default=None, help='Supplier name (created if missing)')
@with_appcontext
def add_product_cli(sku, name, price, cost, tax_rate, category, untracked, consignment_supplier):
    """Create a catalog product with zero stock."""
    if db.session.query(Product).filter_by(sku=sku).first():
        raise click.ClickException(f"SKU '{sku}' already exists")

    errors = FieldErrors()
    price = coerce_amount(price, "price", errors)
    cost = coerce_amount(cost, "cost", errors)
    tax_rate = coerce_amount(tax_rate, "tax_rate", errors, maximum=MAX_TAX_RATE)
    try:
        errors.raise_if_any("Invalid product")
    except ValidationError as e:
        _fail(e)

    supplier = None
    if consignment_supplier:
        supplier = db.session.query(Supplier).filter_by(name=consignment_supplier).first()
        if supplier is None:
            supplier = Supplier(name=consignment_supplier)
            db.session.add(supplier)
            db.session.flush()

    product = Product(
        sku=sku,
        name=name,
        category=category,
        unit_price=price,
        unit_cost=cost,
        tax_rate=tax_rate,
        track_stock=not untracked,
        quantity_on_hand=0,
        is_consignment=supplier is not None,
        consignment_supplier_id=supplier.id if supplier else None,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product {product.sku} (ID: {product.id})")


@stock_group.command('receive')
@click.option('--sku', required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--unit-cost', default=None, help='Unit cost of this delivery')
@click.option('--note', default=None)
@with_appcontext
def receive_stock_cli(sku, quantity, unit_cost, note):
    """Book a delivery into stock."""
    product = db.session.query(Product).filter_by(sku=sku).first()
    if product is None:
        raise click.ClickException(f"SKU '{sku}' not found")
    try:
        movement = stock_service.receive_stock(product.id, quantity, unit_cost=unit_cost, note=note)
    except ValidationError as e:
        _fail(e)
    click.echo(f"PASS Received {movement.quantity_delta} x {product.sku}; on hand: {stock_service.get_quantity_on_hand(product.id)}")


@stock_group.command('adjust')
@click.option('--sku', required=True)
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--reason', required=True)
@with_appcontext
def adjust_stock_cli(sku, delta, reason):
    """Correct on-hand stock after a count, damage or loss."""
    product = db.session.query(Product).filter_by(sku=sku).first()
    if product is None:
        raise click.ClickException(f"SKU '{sku}' not found")
    try:
        stock_service.adjust_stock(product.id, delta, reason=reason)
    except ValidationError as e:
        _fail(e)
    except InsufficientStockError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Adjusted {product.sku} by {delta:+d}; on hand: {stock_service.get_quantity_on_hand(product.id)}")


@stock_group.command('low')
@with_appcontext
def low_stock_cli():
    """List tracked products at or below their reorder level."""
    products = stock_service.list_low_stock()
    if not products:
        click.echo("No products below reorder level.")
        return
    for p in products:
        click.echo(f"WARN {p.sku:<16} {p.name:<32} on hand {p.quantity_on_hand} (reorder at {p.reorder_level})")


@stock_group.command('add-location')
@click.option('--name', required=True)
@with_appcontext
def add_location_cli(name):
    """Create a cash drawer location."""
    try:
        location = cash_drawer_service.create_location(name)
    except ValidationError as e:
        _fail(e)
    click.echo(f"PASS Created location '{location.name}' (ID: {location.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(stock_group)
