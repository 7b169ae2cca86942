# Overview: Flask CLI command groups for bootstrap and account management.

# backend/duka/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create any missing tables. Idempotent.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Shops:
# - python -m flask shops list
# - python -m flask shops create --name "Main Shop" --location "Nairobi CBD"
#
# Accounts:
# - python -m flask admins create --name "Owner" --email owner@duka.local --password "Password123"
# - python -m flask cashiers create --name "Jane" --email jane@duka.local --password "Password123" --shop-id 1

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import shop_service
from .services.auth_service import (
    AccountError,
    PasswordValidationError,
    create_admin,
    create_cashier,
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that don't exist yet."""
    click.echo("START Initializing Duka database...")
    db.create_all()
    click.echo("PASS Schema ready. Create a shop with 'flask shops create' and accounts with 'flask admins create'.")


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

    click.echo("PASS Database reset complete.")


@click.group('shops')
def shops_group():
    """Shop management commands."""


@shops_group.command('list')
@with_appcontext
def list_shops_cli():
    """List all shops."""
    shops = shop_service.list_shops()

    if not shops:
        click.echo("No shops found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Location':<25} {'Active'}")
    click.echo("="*70)

    for shop in shops:
        active_str = "Yes" if shop.is_active else "No"
        click.echo(f"{shop.id:<5} {shop.name:<30} {shop.location:<25} {active_str}")

    click.echo("="*70 + "\n")


@shops_group.command('create')
@click.option('--name', required=True, help='Shop name (unique)')
@click.option('--location', required=True, help='Where the shop is')
@click.option('--description', default=None, help='Optional description')
@with_appcontext
def create_shop_cli(name, location, description):
    """Create a new shop."""
    try:
        shop = shop_service.create_shop(name, location, description)
    except shop_service.ShopError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id})")


@click.group('admins')
def admins_group():
    """Admin account commands."""


@admins_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Login email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin_cli(name, email, password):
    """Create an admin account."""
    try:
        admin = create_admin(name, email, password)
    except (AccountError, PasswordValidationError) as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created admin: {admin.name} ({admin.email})")


@click.group('cashiers')
def cashiers_group():
    """Cashier account commands."""


@cashiers_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Login email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--shop-id', type=int, required=True, help='Shop the cashier sells in')
@click.option('--phone', default='', help='Phone number')
@with_appcontext
def create_cashier_cli(name, email, password, shop_id, phone):
    """Create a cashier bound to a shop."""
    try:
        cashier = create_cashier(name, email, password, shop_id, phone=phone)
    except (AccountError, PasswordValidationError) as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created cashier: {cashier.name} ({cashier.email}) in shop {cashier.shop_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(admins_group)
    app.cli.add_command(cashiers_group)
