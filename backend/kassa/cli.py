# Overview: Flask CLI command groups for bootstrap, user management and review inspection.

# backend/kassa/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent: creates tables and the default admin, cashier and helper users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username kassa1 --password "Kassa2024" --role cashier
#
# Receipts:
# - python -m flask receipts pending
#   List staff receipts waiting for review.
# - python -m flask receipts movements --product-id 3
#   Show the stock movement ledger for a product.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services import inventory_service, staff_receipt_service
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and default users.

    Users: admin, cashier, helper. All passwords default to "Password123".
    Change them immediately in production.
    """
    click.echo("START Initializing Kassa...")
    db.create_all()

    default_password = "Password123"
    for username, role in (("admin", "admin"), ("cashier", "cashier"), ("helper", "helper")):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        create_user(username=username, password=default_password, role=role)
        click.echo(f"PASS Created user: {username} with role '{role}'")

    click.echo("DONE Kassa initialized. Default password: Password123 (CHANGE IN PRODUCTION!)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} {status}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES), prompt=True)
@click.option('--full-name', default=None)
@with_appcontext
def create_user_command(username, password, role, full_name):
    try:
        user = create_user(username=username, password=password, role=role, full_name=full_name)
    except (PasswordValidationError, ValueError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}) with role '{user.role}'")


@click.group('receipts')
def receipts_group():
    """Receipt inspection commands."""


@receipts_group.command('pending')
@with_appcontext
def pending_receipts():
    """List staff receipts waiting for review."""
    receipts = staff_receipt_service.list_staff_receipts(status="pending")
    if not receipts:
        click.echo("No pending staff receipts")
        return
    for r in receipts:
        who = r.created_by.username if r.created_by else r.created_by_user_id
        click.echo(f"#{r.id:<6} {to_utc_z(r.created_at)}  by {who:<16} {len(r.lines)} lines  total {r.total_cents}")


@receipts_group.command('movements')
@click.option('--product-id', type=int, default=None)
@click.option('--receipt-id', type=int, default=None)
@with_appcontext
def stock_movements(product_id, receipt_id):
    """Show the stock movement ledger."""
    for m in inventory_service.get_stock_movements(product_id=product_id, receipt_id=receipt_id):
        click.echo(
            f"{to_utc_z(m.created_at)}  receipt #{m.receipt_id} line {m.line_no}  "
            f"product {m.product_id}  {m.quantity_delta:+d}  {m.reason}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(receipts_group)
