# Overview: Flask CLI command groups for database reset, seeding, and maintenance.

# backend/checkout/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo subcategory, product, variant, quantity rule and coupon.
#
# Maintenance (schedule these):
# - python -m flask maintenance expire-intents [--hours 24]
#   Move PENDING payment intents past their window to EXPIRED.
# - python -m flask maintenance retry-notifications --limit 100
#   Re-deliver post-commit notifications whose backoff has elapsed.
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.

import click
from datetime import timedelta
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Coupon, Product, ProductVariant, QuantityPriceRule, Subcategory
from .time_utils import utcnow
from .wiring import components


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotent demo catalog for local checkout testing."""
    subcategory = db.session.query(Subcategory).filter_by(name="T-Shirts").first()
    if subcategory is None:
        subcategory = Subcategory(name="T-Shirts")
        db.session.add(subcategory)
        db.session.flush()
        db.session.add(QuantityPriceRule(
            subcategory_id=subcategory.id, threshold_quantity=10, kind="PERCENTAGE", value=1500,
        ))
        product = Product(name="Crew Neck Tee", normal_price_cents=10000, subcategory_id=subcategory.id)
        db.session.add(product)
        db.session.flush()
        db.session.add(ProductVariant(product_id=product.id, sku="TEE-BLK-M", color="Black", size="M", stock=100))
        click.echo(f"Created subcategory {subcategory.id} with product {product.id}")
    else:
        click.echo("Demo catalog already present")

    if db.session.query(Coupon).filter_by(code="SAVE50").first() is None:
        now = utcnow()
        db.session.add(Coupon(
            code="SAVE50",
            description="50.00 off orders above 500.00",
            discount_type="FIXED",
            discount_value=5000,
            min_order_cents=50000,
            valid_from=now,
            valid_until=now + timedelta(days=365),
            usage_limit=100,
        ))
        click.echo("Created coupon SAVE50")

    db.session.commit()


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('expire-intents')
@click.option('--hours', type=int, default=None,
              help='Expire PENDING intents older than this instead of using their expires_at')
@with_appcontext
def expire_intents_cli(hours):
    """Sweep abandoned payment intents to EXPIRED."""
    expired = components().maintenance.expire_stale_intents(older_than_hours=hours)
    click.echo(f"Expired {expired} payment intents.")


@maintenance_group.command('retry-notifications')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def retry_notifications_cli(limit):
    """Deliver notifications whose retry backoff has elapsed."""
    result = components().maintenance.retry_notifications(limit=limit)
    click.echo(f"Attempted {result['attempted']}, sent {result['sent']}, failed {result['failed']}.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=None)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: SECURITY_EVENT_RETENTION_DAYS (90 days).
    """
    if retention_days is None:
        retention_days = current_app.config["SECURITY_EVENT_RETENTION_DAYS"]
    deleted = components().maintenance.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(maintenance_group)
