# Overview: Flask CLI command groups for bootstrap, tenant setup, and ledger verification.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations.
# - python -m flask orgs create --name "Acme Corp" --code "ACME" [--invoice-prefix INV] [--tax-rate-bps 1500] [--allow-negative-stock]
#   Create a new organization (tenant) with its first store.
# - python -m flask orgs add-store --org-id 1 --name "Warehouse"
#   Add a store (stock location) to an organization.
# - python -m flask orgs add-product --org-id 1 --sku SKU-1 --name "Widget" --price-cents 1000 --cost-cents 600
#   Add a catalog product to an organization.
#
# Ledger:
# - python -m flask ledger verify [--org-id 1]
#   Check stock level and sale payment invariants; exits 1 when any fail.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .models import Organization, Product, Sale, StockLevel, Store
from .services.sales_service import verify_sale_payments
from .services.stock_ledger_service import verify_stock_level
from .services.tenant_service import create_organization


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask orgs create' to add a tenant.")


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Prefix':<8} {'Tax bps':<8} {'Stores'}")
    click.echo("="*80)

    for org in orgs:
        store_count = db.session.query(Store).filter_by(org_id=org.id).count()
        click.echo(
            f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {org.invoice_prefix:<8} "
            f"{org.default_tax_rate_bps:<8} {store_count}"
        )

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--invoice-prefix', default=None, help='Invoice number prefix (default from config)')
@click.option('--tax-rate-bps', type=int, default=None, help='Default tax rate in basis points (1500 = 15%)')
@click.option('--currency', default=None, help='Default currency code')
@click.option('--allow-negative-stock', is_flag=True, help='Permit stock to go below zero')
@click.option('--store-name', default='Main Store', help='Name of the first store')
@with_appcontext
def create_org_cli(name, code, invoice_prefix, tax_rate_bps, currency, allow_negative_stock, store_name):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    try:
        org = create_organization(
            name=name,
            code=code,
            invoice_prefix=invoice_prefix,
            default_tax_rate_bps=tax_rate_bps,
            default_currency=currency,
            allow_negative_stock=allow_negative_stock,
            store_name=store_name,
        )
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code}, Prefix: {org.invoice_prefix})")


@orgs_group.command('add-store')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Store name')
@click.option('--code', help='Store code (unique within org)')
@with_appcontext
def add_store_to_org_cli(org_id, name, code):
    """Add a store to an organization."""
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    existing = db.session.query(Store).filter_by(org_id=org_id, name=name).first()
    if existing:
        click.echo(f"FAIL Store '{name}' already exists in this organization")
        return

    store = Store(org_id=org_id, name=name, code=code)
    db.session.add(store)
    db.session.commit()

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}) in org '{org.name}'")


@orgs_group.command('add-product')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--sku', required=True, help='SKU (unique within org)')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=int, default=None, help='Selling price in cents')
@click.option('--cost-cents', type=int, default=0, help='Cost in cents')
@click.option('--min-quantity', type=int, default=0, help='Low-stock threshold')
@with_appcontext
def add_product_cli(org_id, sku, name, price_cents, cost_cents, min_quantity):
    """Add a catalog product to an organization."""
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    existing = db.session.query(Product).filter_by(org_id=org_id, sku=sku).first()
    if existing:
        click.echo(f"FAIL Product with SKU '{sku}' already exists in this organization")
        return

    product = Product(
        org_id=org_id,
        sku=sku,
        name=name,
        price_cents=price_cents,
        cost_cents=cost_cents,
        min_quantity=min_quantity,
    )
    db.session.add(product)
    db.session.commit()

    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, SKU: {product.sku})")


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Stock ledger and payment reconciliation checks."""


@ledger_group.command('verify')
@click.option('--org-id', type=int, default=None, help='Limit to one organization')
@with_appcontext
def verify_ledger(org_id):
    """Verify stock level and sale payment invariants."""
    level_query = db.session.query(StockLevel)
    sale_query = db.session.query(Sale)
    if org_id is not None:
        level_query = level_query.filter_by(org_id=org_id)
        sale_query = sale_query.filter_by(org_id=org_id)

    failures = 0
    checked_levels = 0
    for level in level_query.order_by(StockLevel.id.asc()).all():
        checked_levels += 1
        for problem in verify_stock_level(level):
            failures += 1
            click.echo(f"FAIL stock product={level.product_id} store={level.store_id}: {problem}")

    checked_sales = 0
    for sale in sale_query.order_by(Sale.id.asc()).all():
        checked_sales += 1
        for problem in verify_sale_payments(sale):
            failures += 1
            click.echo(f"FAIL sale {sale.invoice_number}: {problem}")

    click.echo(f"Checked {checked_levels} stock levels and {checked_sales} sales")
    if failures:
        click.echo(f"FAIL {failures} invariant violation(s)")
        click.get_current_context().exit(1)
    click.echo("PASS Ledger consistent")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(ledger_group)
