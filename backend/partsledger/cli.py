# Overview: Flask CLI command group for ledger bootstrap, inspection, and repair.

# backend/partsledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# Bootstrap:
# - python -m flask ledger init-db
#   Create all tables (idempotent; existing tables are kept).
# - python -m flask ledger reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inspection:
# - python -m flask ledger check [--product-id 3]
#   Report stock/cost/lot invariant violations. Exit code 1 if any.
# - python -m flask ledger low-stock
#   List active products at or below their reorder threshold.
#
# Repair:
# - python -m flask ledger recalc-cost 3
#   Recalculate one product's effective unit cost from its oldest active lot.
# - python -m flask ledger reconcile [--product-id 3]
#   Recompute stock aggregates, lot statuses and costs from lots.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import cost_service, products_service


@click.group('ledger')
def ledger_group():
    """Inventory ledger bootstrap, inspection and repair commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all ledger tables."""
    db.create_all()
    click.echo("PASS Ledger tables created.")


@ledger_group.command('reset-db')
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


@ledger_group.command('check')
@click.option('--product-id', type=int, default=None, help='Only check this product')
@with_appcontext
def check_ledger(product_id):
    """Report invariant violations without changing anything."""
    violations = cost_service.check_invariants(product_id)
    if not violations:
        click.echo("PASS No ledger invariant violations.")
        return

    for v in violations:
        where = f"product {v['product_id']}"
        if "lot_id" in v:
            where += f" lot {v['lot_id']}"
        click.echo(f"FAIL {where}: {v['check']} expected {v['expected']}, got {v['actual']}")
    click.echo(f"\n{len(violations)} violation(s). Run 'python -m flask ledger reconcile' to repair.")
    raise SystemExit(1)


@ledger_group.command('reconcile')
@click.option('--product-id', type=int, default=None, help='Only reconcile this product')
@with_appcontext
def reconcile(product_id):
    """Recompute stock aggregates and costs from lots."""
    if product_id is not None:
        try:
            result = cost_service.reconcile_product(product_id)
        except LedgerError as e:
            raise click.ClickException(str(e))
        status = "FIXED" if result["changed"] else "OK"
        click.echo(
            f"{status} product {product_id}: stock {result['stock_before']} -> {result['stock_after']}, "
            f"cost {result['cost_before_cents']} -> {result['cost_after_cents']}"
        )
        return

    summary = cost_service.reconcile_all()
    click.echo(
        f"PASS Reconciled {summary['products']} product(s): "
        f"{summary['updated']} updated, {summary['unchanged']} unchanged, "
        f"{len(summary['errors'])} error(s)."
    )
    for err in summary["errors"]:
        click.echo(f"FAIL product {err['product_id']}: {err['error']}")


@ledger_group.command('recalc-cost')
@click.argument('product_id', type=int)
@with_appcontext
def recalc_cost(product_id):
    """Recalculate one product's effective unit cost."""
    try:
        cost = cost_service.recalculate_cost(product_id)
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Product {product_id} unit cost is now {cost} cents.")


@ledger_group.command('low-stock')
@with_appcontext
def low_stock():
    """List products at or below their reorder threshold."""
    rows = products_service.list_low_stock()
    if not rows:
        click.echo("No products below their reorder threshold.")
        return

    click.echo(f"{'SKU':<20} {'Name':<40} {'Stock':>8} {'Threshold':>10} {'Deficit':>8}")
    click.echo("-" * 90)
    for r in rows:
        click.echo(
            f"{r['sku']:<20} {r['name'][:40]:<40} {r['stock_quantity']:>8} "
            f"{r['reorder_threshold']:>10} {r['deficit']:>8}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
