# Overview: Flask CLI command groups for bootstrap, tenant setup, and maintenance sweeps.

# backend/shopcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management:
# - python -m flask tenants list
# - python -m flask tenants ensure --slug acme --name "Acme" [--domain shop.acme.com] [--currency KWD]
#   Idempotent: an existing slug is left unchanged.
# - python -m flask tenants set-payment --slug acme --provider TAP --secret-key sk_test_... --webhook-secret whsec
#   Store the tenant's payment provider configuration (schema v2).
#
# Maintenance sweeps (safe to run from cron, concurrently with live traffic):
# - python -m flask inventory check-alerts [--slug acme]
# - python -m flask orders expire-stale [--older-than-minutes 60]
# - python -m flask carts purge-expired

import click
from flask.cli import with_appcontext

from .errors import CommerceError, TenantNotFound
from .extensions import db
from .models import Tenant
from .services import cart_service, inventory_service, order_service, tenant_service
from .services.audit_service import ACTOR_SYSTEM
from .services.payment_config import ALL_MODES, ALL_PROVIDERS, CURRENT_SCHEMA_VERSION, MODE_SANDBOX


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


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
    tenant_service.invalidate_tenant_cache()
    click.echo("PASS Database reset complete")


# =============================================================================
# TENANT MANAGEMENT COMMANDS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id.asc()).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Slug':<20} {'Name':<25} {'Currency':<9} {'Active':<8} {'Provider'}")
    click.echo("="*80)

    for tenant in tenants:
        ctx = tenant_service.get_tenant_context(tenant.id)
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(
            f"{tenant.id:<5} {tenant.slug:<20} {tenant.name:<25} {tenant.currency:<9} "
            f"{active_str:<8} {ctx.provider_config.provider}"
        )

    click.echo("="*80 + "\n")


@tenants_group.command('ensure')
@click.option('--slug', required=True, help='URL slug (unique)')
@click.option('--name', required=True, help='Display name')
@click.option('--domain', default=None, help='Custom storefront domain')
@click.option('--currency', default='KWD', show_default=True)
@click.option('--tax-rate-bps', type=int, default=0, show_default=True, help='Tax rate in basis points')
@click.option('--shipping-flat-minor', type=int, default=0, show_default=True, help='Flat shipping in minor units')
@with_appcontext
def ensure_tenant_cli(slug, name, domain, currency, tax_rate_bps, shipping_flat_minor):
    """Create a tenant if the slug is free (idempotent)."""
    try:
        tenant, created = tenant_service.ensure_tenant(
            slug=slug,
            name=name,
            domain=domain,
            currency=currency,
            tax_rate_bps=tax_rate_bps,
            shipping_flat_minor=shipping_flat_minor,
        )
    except CommerceError as e:
        raise click.ClickException(str(e))

    if created:
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, slug: {tenant.slug})")
    else:
        click.echo(f"PASS Tenant already exists: {tenant.name} (ID: {tenant.id}, slug: {tenant.slug})")


@tenants_group.command('set-payment')
@click.option('--slug', required=True, help='Tenant slug')
@click.option('--provider', type=click.Choice(sorted(ALL_PROVIDERS), case_sensitive=False), required=True)
@click.option('--mode', type=click.Choice(sorted(ALL_MODES), case_sensitive=False), default=MODE_SANDBOX, show_default=True)
@click.option('--secret-key', default=None, help='TAP secret key')
@click.option('--public-key', default=None, help='TAP public key')
@click.option('--api-key', default=None, help='MyFatoorah API key')
@click.option('--webhook-secret', default=None, help='Shared secret for webhook signatures')
@with_appcontext
def set_payment_cli(slug, provider, mode, secret_key, public_key, api_key, webhook_secret):
    """Store a tenant's payment provider configuration."""
    try:
        ctx = tenant_service.resolve_tenant(slug)
    except TenantNotFound:
        raise click.ClickException(f"Tenant '{slug}' not found")

    credentials = {
        key: value
        for key, value in (("secret_key", secret_key), ("public_key", public_key), ("api_key", api_key))
        if value
    }
    document = {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "provider": provider.upper(),
        "mode": mode.lower(),
        "credentials": credentials,
        "webhook_secret": webhook_secret,
    }

    try:
        tenant_service.update_payment_config(ctx.tenant_id, document, actor_id=ACTOR_SYSTEM)
    except CommerceError as e:
        raise click.ClickException(str(e))

    updated = tenant_service.get_tenant_context(ctx.tenant_id).provider_config
    status = "configured" if updated.is_configured else "NOT configured (missing credentials)"
    click.echo(f"PASS {slug}: provider {updated.provider} ({updated.mode}) {status}")


# =============================================================================
# MAINTENANCE SWEEPS
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory maintenance commands."""


@inventory_group.command('check-alerts')
@click.option('--slug', default=None, help='Only this tenant (default: all active tenants)')
@with_appcontext
def check_alerts_cli(slug):
    """Create low-stock alerts for products at or below threshold."""
    query = db.session.query(Tenant).filter(Tenant.is_active.is_(True))
    if slug:
        query = query.filter(Tenant.slug == slug.lower())
    tenant_ids = [t.id for t in query.order_by(Tenant.id.asc()).all()]

    total = 0
    for tenant_id in tenant_ids:
        created = inventory_service.check_low_stock_alerts(tenant_id)
        total += len(created)
        for alert in created:
            click.echo(f"ALERT tenant={tenant_id} product={alert.product_id} {alert.alert_type} ({alert.severity})")
    click.echo(f"Created {total} alert(s) across {len(tenant_ids)} tenant(s).")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('expire-stale')
@click.option('--older-than-minutes', type=int, default=None, help='Default: PENDING_ORDER_TIMEOUT_MINUTES')
@with_appcontext
def expire_stale_cli(older_than_minutes):
    """Cancel orders whose payment stayed PENDING past the timeout."""
    expired = order_service.expire_stale_orders(older_than_minutes=older_than_minutes)
    for order_number in expired:
        click.echo(f"EXPIRED {order_number}")
    click.echo(f"Expired {len(expired)} pending order(s).")


@click.group('carts')
def carts_group():
    """Cart maintenance commands."""


@carts_group.command('purge-expired')
@with_appcontext
def purge_expired_cli():
    """Delete expired cart lines."""
    deleted = cart_service.purge_expired()
    click.echo(f"Deleted {deleted} expired cart line(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(carts_group)
