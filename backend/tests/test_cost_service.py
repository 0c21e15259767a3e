# Overview: Pytest coverage for unit cost recalculation and aggregate reconciliation.

import pytest
from partsledger.errors import NotFoundError
from partsledger.extensions import db
from partsledger.models import Lot, Product
from partsledger.services.consumption_service import consume
from partsledger.services.cost_service import (
    check_invariants,
    oldest_active_lot,
    reconcile_all,
    reconcile_product,
    recalculate_cost,
)


class TestRecalculateCost:

    def test_oldest_active_lot_is_cost_source(self, two_lots):
        assert oldest_active_lot(two_lots.product.id).id == two_lots.l1.id
        assert recalculate_cost(two_lots.product.id) == 500

    def test_cost_moves_when_oldest_lot_exhausted(self, two_lots):
        consume(two_lots.product.id, 10, reference_type="SALE", reference_id="V-1")
        assert oldest_active_lot(two_lots.product.id).id == two_lots.l2.id
        assert db.session.get(Product, two_lots.product.id).unit_cost_cents == 700

    def test_no_stock_means_zero_cost(self, product):
        assert oldest_active_lot(product.id) is None
        assert recalculate_cost(product.id) == 0

    def test_repairs_stale_cost(self, two_lots):
        product = db.session.get(Product, two_lots.product.id)
        product.unit_cost_cents = 1
        db.session.commit()

        assert recalculate_cost(two_lots.product.id) == 500
        assert db.session.get(Product, two_lots.product.id).unit_cost_cents == 500

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            recalculate_cost(31337)


class TestCheckInvariants:

    def test_clean_ledger(self, two_lots):
        consume(two_lots.product.id, 12, reference_type="SALE", reference_id="V-2")
        assert check_invariants() == []

    def test_reports_drift(self, two_lots):
        product = db.session.get(Product, two_lots.product.id)
        product.stock_quantity = 17
        product.unit_cost_cents = 650
        db.session.commit()

        checks = {v["check"]: v for v in check_invariants(two_lots.product.id)}
        assert checks["stock_aggregate"]["expected"] == 20
        assert checks["stock_aggregate"]["actual"] == 17
        assert checks["unit_cost"]["expected"] == 500

    def test_reports_lot_status_mismatch(self, two_lots):
        lot = db.session.get(Lot, two_lots.l1.id)
        lot.status = "EXHAUSTED"
        db.session.commit()

        violations = check_invariants(two_lots.product.id)
        assert any(
            v["check"] == "lot_status" and v["lot_id"] == two_lots.l1.id for v in violations
        )


class TestReconcile:

    def test_reconcile_product_fixes_aggregate_and_status(self, two_lots):
        lot = db.session.get(Lot, two_lots.l1.id)
        lot.status = "EXHAUSTED"
        product = db.session.get(Product, two_lots.product.id)
        product.stock_quantity = 3
        product.unit_cost_cents = 700
        db.session.commit()

        result = reconcile_product(two_lots.product.id)

        assert result["changed"] is True
        assert result["stock_before"] == 3
        assert result["stock_after"] == 20
        assert result["cost_after_cents"] == 500
        assert result["lot_statuses_fixed"] == [two_lots.l1.id]
        assert check_invariants(two_lots.product.id) == []

    def test_reconcile_product_noop(self, two_lots):
        result = reconcile_product(two_lots.product.id)
        assert result["changed"] is False

    def test_reconcile_all_counts(self, two_lots, other_product):
        product = db.session.get(Product, two_lots.product.id)
        product.stock_quantity = 0
        db.session.commit()

        summary = reconcile_all()

        assert summary == {"products": 2, "updated": 1, "unchanged": 1, "errors": []}
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
