# Overview: Flask CLI command groups for schema bootstrap and receipt job maintenance.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Receipts:
# - python -m flask receipts list [--status failed]
#   List receipt render jobs.
# - python -m flask receipts retry [--max-attempts 5]
#   Re-render pending/failed receipts that still have attempts left.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import receipt_service


@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
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

    click.echo("PASS Database reset complete.")


@click.group('receipts')
def receipts_group():
    """Receipt render job inspection and retry."""


@receipts_group.command('list')
@click.option('--status', type=click.Choice(['pending', 'succeeded', 'failed']), default=None)
@click.option('--limit', type=int, default=100)
@with_appcontext
def list_receipts(status, limit):
    """List receipt jobs."""
    jobs = receipt_service.list_receipt_jobs(status=status, limit=limit)
    if not jobs:
        click.echo("No receipt jobs found.")
        return

    click.echo(f"{'ID':<6} {'Payment':<8} {'Order':<8} {'Status':<10} {'Attempts':<9} Last error")
    click.echo("-" * 80)
    for job in jobs:
        click.echo(
            f"{job.id:<6} {job.payment_id:<8} {job.order_id:<8} {job.status:<10} {job.attempts:<9} "
            f"{(job.last_error or '')[:40]}"
        )


@receipts_group.command('retry')
@click.option('--max-attempts', type=int, default=None, help='Defaults to RECEIPT_MAX_ATTEMPTS')
@with_appcontext
def retry_receipts(max_attempts):
    """Re-render pending and failed receipts."""
    if max_attempts is None:
        max_attempts = current_app.config["RECEIPT_MAX_ATTEMPTS"]

    summary = receipt_service.retry_receipt_jobs(max_attempts=max_attempts)
    click.echo(f"Attempted: {summary['attempted']}")
    click.echo(f"PASS Succeeded: {len(summary['succeeded'])}")
    if summary["failed"]:
        click.echo(f"FAIL Failed: {len(summary['failed'])} (job ids: {', '.join(map(str, summary['failed']))})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(receipts_group)
