# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/fuelops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates a default location, the standard products and an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username ada --email ada@depot.local --role finance --location-id 1
#
# PFIs:
# - python -m flask pfis list [--status active]
# - python -m flask pfis finish 7 --actor-id 1
#
# Orders:
# - python -m flask orders auto-cancel --actor-id 1 [--hours 12]
#   Cancel pending orders older than the threshold (run from cron).
#
# Products:
# - python -m flask products list
# - python -m flask products create --name "Liquefied Petroleum Gas" --abbreviation LPG --price-kobo 95000 --actor-id 1
# - python -m flask products set-price PMS 61700 --actor-id 1
#   New price applies to orders placed afterwards.
#
# Bank accounts:
# - python -m flask bank-accounts list [--location-id 1]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Location, Product, User, Pfi
from .permissions import VALID_ROLES
from .services import bank_account_service, order_service, pfi_service, product_service
from .validation import ConflictError, NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--location-name', default='Main Depot', help='Default location name')
@click.option('--location-code', default='MAIN', help='Default location code')
@click.option('--admin-email', default='admin@fuelops.local', help='Admin user email')
@with_appcontext
def init_system(location_name, location_code, admin_email):
    """
    Initialize a usable console: one location, the standard products, one admin.

    Safe to re-run; existing rows are reused.
    """
    click.echo("START Initializing fuelops...")

    location = db.session.query(Location).filter_by(code=location_code).first()
    if not location:
        location = Location(name=location_name, code=location_code, is_active=True)
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location: {location.name} (ID: {location.id})")
    else:
        click.echo(f"PASS Using existing location: {location.name} (ID: {location.id})")

    defaults = [
        ("Premium Motor Spirit", "PMS", 0),
        ("Automotive Gas Oil", "AGO", 0),
        ("Dual Purpose Kerosene", "DPK", 0),
    ]
    for name, abbreviation, price in defaults:
        if not db.session.query(Product).filter_by(abbreviation=abbreviation).first():
            db.session.add(Product(name=name, abbreviation=abbreviation, unit_price_kobo=price))
            click.echo(f"PASS Created product: {abbreviation} (price not set; run: flask products set-price {abbreviation} <kobo> --actor-id <id>)")
    db.session.commit()

    admin = db.session.query(User).filter_by(email=admin_email).first()
    if not admin:
        admin = User(username="admin", email=admin_email, full_name="Administrator", role="admin")
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created admin user: {admin.email} (ID: {admin.id})")
    else:
        click.echo(f"PASS Using existing admin user: {admin.email} (ID: {admin.id})")

    click.echo("\nDONE fuelops initialized.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--location-id', type=int, default=None, help='Home location (omit for head office)')
@with_appcontext
def create_user_cli(username, email, full_name, role, location_id):
    """Create a console user."""
    if location_id is not None and db.session.get(Location, location_id) is None:
        click.echo(f"FAIL Location ID {location_id} not found")
        return
    if db.session.query(User).filter((User.username == username) | (User.email == email)).first():
        click.echo(f"FAIL A user with username '{username}' or email '{email}' already exists")
        return

    user = User(username=username, email=email, full_name=full_name, role=role, location_id=location_id)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} ({email}) with role '{role}' (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with roles and active status."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.email:<32} {user.role:<16} {status}")


@click.group('pfis')
def pfis_group():
    """PFI inspection commands."""


@pfis_group.command('list')
@click.option('--status', type=click.Choice(sorted(pfi_service.VALID_PFI_STATUSES)), default=None)
@with_appcontext
def list_pfis_cli(status):
    """List PFIs with live totals."""
    q = db.session.query(Pfi)
    if status:
        q = q.filter(Pfi.status == status)
    pfis = q.order_by(Pfi.created_at.desc()).all()
    if not pfis:
        click.echo("No PFIs found.")
        return
    totals = pfi_service.totals_for_many(pfis)
    for pfi in pfis:
        t = totals[pfi.id]
        click.echo(
            f"{pfi.id:>4}  {pfi.pfi_number:<20} {pfi.status:<9} "
            f"start={pfi.starting_qty_litres:,} sold={t.sold_qty_litres:,} "
            f"remaining={t.remaining_qty_litres:,} orders={t.orders_count}"
        )


@pfis_group.command('finish')
@click.argument('pfi_id', type=int)
@click.option('--actor-id', type=int, required=True, help='User recorded as finishing the PFI')
@with_appcontext
def finish_pfi_cli(pfi_id, actor_id):
    """Close an active PFI."""
    try:
        pfi = pfi_service.finish_pfi(pfi_id, actor_user_id=actor_id)
        click.echo(f"PASS PFI {pfi.pfi_number} finished")
    except (NotFoundError, ConflictError, ValidationError) as e:
        click.echo(f"FAIL {e}")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('auto-cancel')
@click.option('--actor-id', type=int, required=True, help='User recorded on the cancel events (a system user)')
@click.option('--hours', type=int, default=None, help='Age threshold; defaults to ORDER_AUTO_CANCEL_HOURS')
@with_appcontext
def auto_cancel_cli(actor_id, hours):
    """Cancel pending orders that were never paid."""
    try:
        canceled = order_service.cancel_stale_orders(actor_user_id=actor_id, older_than_hours=hours)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Auto-canceled {len(canceled)} orders")
    for order_id in canceled:
        click.echo(f"     order {order_id}")


@click.group('products')
def products_group():
    """Product catalog and pricing commands."""


@products_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated products')
@with_appcontext
def list_products_cli(include_inactive):
    """List products with their current list price."""
    products = product_service.list_products(include_inactive=include_inactive)
    if not products:
        click.echo("No products found.")
        return
    for product in products:
        status = "active" if product.is_active else "inactive"
        click.echo(f"{product.id:>4}  {product.abbreviation:<6} {product.name:<28} {product.unit_price_kobo:>10} kobo/L  {status}")


@products_group.command('create')
@click.option('--name', required=True, help='Product name')
@click.option('--abbreviation', required=True, help='Short code, e.g. LPG')
@click.option('--price-kobo', type=int, required=True, help='List price per litre in kobo')
@click.option('--actor-id', type=int, required=True, help='User recorded as creating the product')
@with_appcontext
def create_product_cli(name, abbreviation, price_kobo, actor_id):
    """Add a product to the catalog."""
    try:
        product = product_service.create_product(
            {"name": name, "abbreviation": abbreviation, "unit_price_kobo": price_kobo},
            actor_user_id=actor_id,
        )
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created product {product.abbreviation} (ID: {product.id}) at {product.unit_price_kobo} kobo/L")


@products_group.command('set-price')
@click.argument('abbreviation')
@click.argument('price_kobo', type=int)
@click.option('--actor-id', type=int, required=True, help='User recorded as changing the price')
@with_appcontext
def set_price_cli(abbreviation, price_kobo, actor_id):
    """Change a product's list price per litre (kobo)."""
    try:
        product = product_service.get_product_by_abbreviation(abbreviation)
        product = product_service.set_price(product.id, price_kobo, actor_user_id=actor_id)
    except (NotFoundError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS {product.abbreviation} now {product.unit_price_kobo} kobo/L")


@click.group('bank-accounts')
def bank_accounts_group():
    """Bank account inspection commands."""


@bank_accounts_group.command('list')
@click.option('--location-id', type=int, default=None)
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated accounts')
@with_appcontext
def list_bank_accounts_cli(location_id, include_inactive):
    """List settlement accounts."""
    accounts = []
    page = 1
    while page:
        result = bank_account_service.list_accounts(
            location_id=location_id,
            active_only=not include_inactive,
            page=page,
        )
        accounts.extend(result["results"])
        page = result["next"]
    if not accounts:
        click.echo("No bank accounts found.")
        return
    for acct in accounts:
        scope = f"location {acct['location_id']}" if acct["location_id"] else "general"
        status = "active" if acct["is_active"] else "inactive"
        click.echo(f"{acct['id']:>4}  {acct['bank_name']:<24} {acct['acct_no']:<12} {acct['account_name']:<28} {scope:<12} {status}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(pfis_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(bank_accounts_group)
