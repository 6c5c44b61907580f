# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/freshco/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Company management (MULTI-TENANT):
# - python -m flask companies list
#   List all companies.
# - python -m flask companies create --name "Fresh Foods" --slug fresh --email owner@fresh.test --password "Passw0rd!"
#   Register a company with its admin user.
#
# User bootstrap:
# - python -m flask users create --company fresh --email clerk@fresh.test --password "Passw0rd!" --role sales
#   Create a user in a company.
#
# Inventory ledger:
# - python -m flask inventory verify-ledger --company fresh
#   Report snapshots that disagree with the sum of their movements.
# - python -m flask inventory rebuild-snapshots --company fresh
#   Rewrite snapshots from the ledger.
#
# Orders:
# - python -m flask orders advance --company fresh
#   Persist pending -> processing for orders past the cancellation window.

import click
from flask.cli import with_appcontext

from .errors import AppError
from .extensions import db
from .models import Company, User
from .models.auth import VALID_ROLES
from .services import company_service
from .services import inventory_service
from .services import order_service
from .services.auth_service import create_user


def _company_or_exit(slug: str) -> Company:
    try:
        return company_service.get_company_by_slug(slug)
    except AppError as e:
        raise click.ClickException(f"FAIL {e.message}: {slug}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('companies')
def companies_group():
    """Company (tenant) management commands."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    """List all companies."""
    companies = company_service.list_companies()

    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Slug':<20} {'Active':<8} {'Users'}")
    click.echo("="*80)

    for company in companies:
        user_count = db.session.query(User).filter_by(company_id=company.id).count()
        active_str = "Yes" if company.is_active else "No"
        click.echo(f"{company.id:<5} {company.name:<30} {company.slug:<20} {active_str:<8} {user_count}")

    click.echo("="*80 + "\n")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--slug', default=None, help='Subdomain slug (derived from the name if omitted)')
@click.option('--email', required=True, help='Admin email')
@click.option('--password', required=True, help='Admin password')
@with_appcontext
def create_company_cli(name, slug, email, password):
    """Register a company with its admin user."""
    try:
        company, admin, effect = company_service.register_company(
            company_name=name,
            company_slug=slug,
            email=email,
            password=password,
        )
    except AppError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Slug: {company.slug})")
    click.echo(f"PASS Admin user: {admin.email}")
    if not effect.succeeded:
        click.echo(f"WARN {effect.name} failed: {effect.error}")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--company', 'slug', required=True, help='Company slug')
@click.option('--email', required=True)
@click.option('--password', required=True)
@click.option('--role', 'roles', multiple=True, type=click.Choice(VALID_ROLES), help='Role (repeatable)')
@with_appcontext
def create_user_cli(slug, email, password, roles):
    """Create a user in a company."""
    company = _company_or_exit(slug)
    try:
        user = create_user(company.id, email, password, roles=roles)
        db.session.commit()
    except AppError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created user {user.email} (ID: {user.id}) roles: {', '.join(user.role_names) or '-'}")


@click.group('inventory')
def inventory_group():
    """Inventory ledger inspection and repair."""


@inventory_group.command('verify-ledger')
@click.option('--company', 'slug', required=True, help='Company slug')
@with_appcontext
def verify_ledger_cli(slug):
    """Report every snapshot whose stock_count differs from its movement sum."""
    company = _company_or_exit(slug)
    mismatches = inventory_service.verify_ledger(company.id)

    if not mismatches:
        click.echo(f"PASS Ledger consistent for {company.slug}")
        return

    click.echo(f"FAIL {len(mismatches)} mismatch(es) for {company.slug}")
    click.echo(f"{'Warehouse':<10} {'Product':<10} {'Variant':<10} {'Snapshot':<10} {'Ledger':<10} {'Diff'}")
    for m in mismatches:
        click.echo(
            f"{m['warehouse_id']:<10} {m['product_id']:<10} {m['variant_id']:<10} "
            f"{m['stock_count']:<10} {m['ledger_sum']:<10} {m['difference']}"
        )
    raise SystemExit(1)


@inventory_group.command('rebuild-snapshots')
@click.option('--company', 'slug', required=True, help='Company slug')
@with_appcontext
def rebuild_snapshots_cli(slug):
    """Rewrite snapshots from the ledger."""
    company = _company_or_exit(slug)
    changed = inventory_service.rebuild_snapshots(company.id)
    click.echo(f"PASS Rebuilt snapshots for {company.slug}: {changed} row(s) changed")


@click.group('orders')
def orders_group():
    """Order lifecycle maintenance."""


@orders_group.command('advance')
@click.option('--company', 'slug', required=True, help='Company slug')
@with_appcontext
def advance_orders_cli(slug):
    """Persist pending -> processing for orders past the grace window."""
    company = _company_or_exit(slug)
    count = order_service.advance_expired_orders(company.id)
    click.echo(f"PASS Advanced {count} order(s) to processing")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(companies_group)  # Multi-tenant company management
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
