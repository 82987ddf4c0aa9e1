# Overview: Flask CLI command groups for bootstrap, catalog stocking, and wallet maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use "flask db upgrade" for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username admin --email admin@shop.local --password "Password123!" --role admin
#   Create a user (prompts if options are omitted).
# - python -m flask users delete --username alice
#   Soft-delete an account; its sessions stop working and its refunds can no longer be approved.
#
# Catalog:
# - python -m flask products add --name "Fresh Milk 1L" --price 2.95 --quantity 40 --category Dairy
# - python -m flask products restock --id 3 --quantity 12
#
# Wallet:
# - python -m flask wallet credit --username alice --amount 10.00
#   Admin store-credit adjustment (logged as an "admin" wallet transaction).

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StorefrontError
from .models import User
from .models.auth import VALID_ROLES
from .services import catalog_service, stock_service, wallet_service
from .services.auth_service import create_user, soft_delete_user, PasswordValidationError
from .validation import parse_amount_cents


def _find_user(username: str) -> User | None:
    return db.session.query(User).filter_by(username=username).first()


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r for r in VALID_ROLES if r != 'deleted']), default='customer', help='Role')
@click.option('--address', default=None, help='Shipping address')
@click.option('--contact', default=None, help='Contact number')
@with_appcontext
def create_user_cli(username, email, password, role, address, contact):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username, email, password, role=role, address=address, contact=contact)
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except StorefrontError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")


@users_group.command('delete')
@click.option('--username', prompt=True, help='Username')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def delete_user_cli(username, yes):
    """Soft-delete an account (role becomes 'deleted'; history is kept)."""
    user = _find_user(username)
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return
    if not yes:
        click.confirm(f"WARN Delete account '{username}'?", abort=True)
    soft_delete_user(user.id)
    click.echo(f"PASS Deleted user: {username}")


@click.group('products')
def products_group():
    """Catalog commands."""


@products_group.command('add')
@click.option('--name', prompt=True, help='Product name')
@click.option('--price', prompt=True, help='Unit price, e.g. 2.95')
@click.option('--quantity', type=int, default=0, help='Initial stock')
@click.option('--category', default=None, help='Category')
@click.option('--image', default=None, help='Image file name')
@with_appcontext
def add_product_cli(name, price, quantity, category, image):
    try:
        product = catalog_service.create_product(
            name,
            parse_amount_cents(price, field="price"),
            quantity,
            category=category,
            image=image,
        )
        click.echo(f"PASS Created product #{product.id}: {product.name} @ {price} (stock {product.quantity})")
    except StorefrontError as e:
        click.echo(f"FAIL {e.message}")


@products_group.command('restock')
@click.option('--id', 'product_id', type=int, required=True, help='Product ID')
@click.option('--quantity', type=int, required=True, help='Units to add')
@with_appcontext
def restock_product_cli(product_id, quantity):
    try:
        stock_service.restock(product_id, quantity)
        db.session.commit()
        click.echo(f"PASS Product #{product_id} now has {stock_service.available(product_id)} in stock")
    except StorefrontError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")


@click.group('wallet')
def wallet_group():
    """Store-credit maintenance."""


@wallet_group.command('credit')
@click.option('--username', prompt=True, help='Username')
@click.option('--amount', prompt=True, help='Amount to credit, e.g. 10.00')
@with_appcontext
def credit_wallet_cli(username, amount):
    user = _find_user(username)
    if not user or user.is_deleted:
        click.echo(f"FAIL User '{username}' not found")
        return
    try:
        balance = wallet_service.add_funds(
            user.id,
            parse_amount_cents(amount),
            wallet_service.METHOD_ADMIN_CREDIT,
        )
        click.echo(f"PASS Credited {username}; balance is now {balance / 100:.2f}")
    except StorefrontError as e:
        click.echo(f"FAIL {e.message}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(wallet_group)
