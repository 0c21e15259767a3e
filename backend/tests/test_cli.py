# Overview: Pytest coverage for the `flask ledger` maintenance commands.

from partsledger.extensions import db
from partsledger.models import Product


def _run(app, *args):
    return app.test_cli_runner().invoke(args=["ledger", *args])


def test_check_clean(app, two_lots):
    result = _run(app, "check")
    assert result.exit_code == 0
    assert "PASS No ledger invariant violations." in result.output


def test_check_reports_drift_and_reconcile_repairs(app, two_lots):
    p = db.session.get(Product, two_lots.product.id)
    p.stock_quantity = 3
    db.session.commit()

    result = _run(app, "check", "--product-id", str(two_lots.product.id))
    assert result.exit_code == 1
    assert "stock_aggregate expected 20, got 3" in result.output

    result = _run(app, "reconcile", "--product-id", str(two_lots.product.id))
    assert result.exit_code == 0
    assert "FIXED" in result.output

    assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
    assert _run(app, "check").exit_code == 0


def test_reconcile_all(app, two_lots, other_product):
    result = _run(app, "reconcile")
    assert result.exit_code == 0
    assert "Reconciled 2 product(s): 0 updated, 2 unchanged, 0 error(s)." in result.output


def test_recalc_cost(app, two_lots):
    p = db.session.get(Product, two_lots.product.id)
    p.unit_cost_cents = 1
    db.session.commit()

    result = _run(app, "recalc-cost", str(two_lots.product.id))
    assert result.exit_code == 0
    assert "unit cost is now 500 cents" in result.output


def test_recalc_cost_unknown_product(app, db_session):
    result = _run(app, "recalc-cost", "777")
    assert result.exit_code != 0
    assert "Product 777 not found" in result.output


def test_low_stock(app, two_lots, other_product):
    result = _run(app, "low-stock")
    assert result.exit_code == 0
    assert "OIL-10W40" in result.output
    assert "BRK-PAD-01" not in result.output
