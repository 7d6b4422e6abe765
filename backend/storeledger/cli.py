# Overview: Flask CLI command groups for reconciliation, inspection, and maintenance.

# backend/storeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to storeledger (PowerShell: $env:FLASK_APP="storeledger").
# - Use: python -m flask <group> <command> [options]
#
# Ledger reconciliation (report only unless --fix):
# - python -m flask ledger reconcile-payables [--fix]
#   Replay payments and compare with each payable's cached paid total and status.
# - python -m flask ledger reconcile-wallets [--fix]
#   Replay coin transactions and compare with each cached wallet.
# - python -m flask ledger reconcile-balances [--fix]
#   Recompute customer and supplier outstanding balances from payables and payments.
#
# Inspection:
# - python -m flask ledger show-loyalty-settings
#   Print the loyalty settings currently in effect.
# - python -m flask ledger show-loyalty-stats [--active-days N]
#   Print program-wide coin totals and active users.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Supplier
from .services import loyalty_service, payment_service
from .services.payable_service import COUNTERPARTY_CUSTOMER, COUNTERPARTY_SUPPLIER


@click.group('ledger')
def ledger_group():
    """Ledger reconciliation and inspection commands."""


@ledger_group.command('reconcile-payables')
@click.option('--fix', is_flag=True, help='Rewrite drifted payables from their payments')
@with_appcontext
def reconcile_payables_cli(fix):
    """Compare cached payable status with the live payment set."""
    mode_label = "FIX" if fix else "DRY-RUN"
    click.echo(f"\n{mode_label} Reconciling payables...\n")

    drifted = payment_service.reconcile_payables(repair=fix)
    if not drifted:
        click.echo("PASS All payables match their payments")
        return

    for report in drifted:
        click.echo(
            f"  - payable #{report['payable_id']}: "
            f"cached {report['cached_paid_cents']}/{report['cached_status']}, "
            f"derived {report['derived_paid_cents']}/{report['derived_status']}"
            + (" (repaired)" if report["repaired"] else "")
        )

    if fix:
        click.echo(f"\nPASS Repaired {len(drifted)} payable(s)")
    else:
        click.echo(f"\nWARN {len(drifted)} payable(s) drifted. Re-run with --fix to repair.")


@ledger_group.command('reconcile-wallets')
@click.option('--fix', is_flag=True, help='Rewrite drifted wallets from their transactions')
@with_appcontext
def reconcile_wallets_cli(fix):
    """Compare cached coin wallets with the transaction ledger."""
    mode_label = "FIX" if fix else "DRY-RUN"
    click.echo(f"\n{mode_label} Reconciling coin wallets...\n")

    drifted = loyalty_service.reconcile_wallets(repair=fix)
    if not drifted:
        click.echo("PASS All wallets match their transactions")
        return

    for report in drifted:
        cached = report["cached"]
        derived = report["derived"]
        click.echo(
            f"  - user #{report['user_id']}: "
            f"cached {cached['earned']}/{cached['used']}/{cached['available']}, "
            f"derived {derived['earned']}/{derived['used']}/{derived['available']}"
            + (" (repaired)" if report["repaired"] else "")
        )

    if fix:
        click.echo(f"\nPASS Repaired {len(drifted)} wallet(s)")
    else:
        click.echo(f"\nWARN {len(drifted)} wallet(s) drifted. Re-run with --fix to repair.")


@ledger_group.command('reconcile-balances')
@click.option('--fix', is_flag=True, help='Rewrite drifted outstanding balances')
@with_appcontext
def reconcile_balances_cli(fix):
    """Recompute counterparty outstanding balances from payables and payments."""
    mode_label = "FIX" if fix else "DRY-RUN"
    click.echo(f"\n{mode_label} Reconciling outstanding balances...\n")

    targets = [
        (COUNTERPARTY_CUSTOMER, [row.id for row in db.session.query(Customer.id).order_by(Customer.id)]),
        (COUNTERPARTY_SUPPLIER, [row.id for row in db.session.query(Supplier.id).order_by(Supplier.id)]),
    ]

    drifted = 0
    for kind, ids in targets:
        for counterparty_id in ids:
            report = payment_service.reconcile_counterparty_balance(kind, counterparty_id, repair=fix)
            if report["in_sync"]:
                continue
            drifted += 1
            click.echo(
                f"  - {kind} #{counterparty_id}: cached {report['cached_balance_cents']}, "
                f"derived {report['derived_balance_cents']}"
                + (" (repaired)" if report["repaired"] else "")
            )

    if not drifted:
        click.echo("PASS All outstanding balances match")
    elif fix:
        click.echo(f"\nPASS Repaired {drifted} balance(s)")
    else:
        click.echo(f"\nWARN {drifted} balance(s) drifted. Re-run with --fix to repair.")


@ledger_group.command('show-loyalty-settings')
@with_appcontext
def show_loyalty_settings_cli():
    """Print the loyalty settings currently in effect."""
    config = loyalty_service.get_loyalty_config()
    click.echo("\nLoyalty settings:")
    for key, value in config.to_dict().items():
        click.echo(f"  {key:<24} {value}")


@ledger_group.command('show-loyalty-stats')
@click.option('--active-days', default=30, show_default=True, help='Window for counting active users')
@with_appcontext
def show_loyalty_stats_cli(active_days):
    """Print program-wide coin totals and active users."""
    stats = loyalty_service.get_loyalty_stats(active_days)
    click.echo("\nLoyalty stats:")
    for key, value in stats.items():
        click.echo(f"  {key:<24} {value}")


@click.group('system')
def system_group():
    """System maintenance commands."""


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


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(system_group)
