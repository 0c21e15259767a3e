# Overview: Pytest coverage for the FIFO allocator.

"""
FIFO Allocation Tests

Covers:
- Oldest lot first, spilling into the next lot
- Planning is read-only
- Shortfall reporting, nothing mutated
- Input validation and deterministic ordering of same-time lots
"""

from datetime import datetime
from types import SimpleNamespace

import pytest
from partsledger.errors import InsufficientStockError, NotFoundError, ValidationError
from partsledger.extensions import db
from partsledger.models import Consumption, Lot, Product
from partsledger.services.allocation_service import allocate, fifo_order, plan_fifo


def _lot(lot_id, remaining, cost, received_at):
    return SimpleNamespace(
        id=lot_id,
        lot_number=f"L{lot_id}",
        remaining_quantity=remaining,
        unit_cost_cents=cost,
        received_at=received_at,
        version_id=1,
    )


class TestPlanFifo:
    """plan_fifo is a pure function over lot-like objects."""

    def test_takes_oldest_lot_first(self):
        lots = [
            _lot(2, 10, 700, datetime(2024, 1, 2)),
            _lot(1, 10, 500, datetime(2024, 1, 1)),
        ]
        plan = plan_fifo(99, 15, lots)

        assert [(s.lot_id, s.quantity, s.unit_cost_cents) for s in plan.slices] == [
            (1, 10, 500),
            (2, 5, 700),
        ]
        assert plan.quantity == 15
        assert plan.total_cost_cents == 10 * 500 + 5 * 700

    def test_same_received_at_ordered_by_id(self):
        same_time = datetime(2024, 3, 1, 12, 0)
        lots = [_lot(7, 5, 300, same_time), _lot(3, 5, 100, same_time)]

        assert [lot.id for lot in fifo_order(lots)] == [3, 7]
        plan = plan_fifo(1, 6, lots)
        assert plan.lot_ids == [3, 7]

    def test_skips_empty_lots_and_never_exceeds_remaining(self):
        lots = [
            _lot(1, 0, 100, datetime(2024, 1, 1)),
            _lot(2, 3, 200, datetime(2024, 1, 2)),
            _lot(3, 4, 300, datetime(2024, 1, 3)),
        ]
        plan = plan_fifo(1, 7, lots)

        assert plan.lot_ids == [2, 3]
        remaining = {lot.id: lot.remaining_quantity for lot in lots}
        for s in plan.slices:
            assert s.quantity <= remaining[s.lot_id]

    def test_records_lot_version(self):
        lot = _lot(1, 5, 100, datetime(2024, 1, 1))
        lot.version_id = 4
        plan = plan_fifo(1, 2, [lot])
        assert plan.slices[0].lot_version == 4

    def test_shortfall(self):
        lots = [_lot(1, 4, 100, datetime(2024, 1, 1))]
        with pytest.raises(InsufficientStockError) as exc:
            plan_fifo(1, 9, lots)

        assert exc.value.requested == 9
        assert exc.value.available == 4
        assert exc.value.shortfall == 5

    @pytest.mark.parametrize("quantity", [0, -3, 2.5, True, "4"])
    def test_rejects_non_positive_or_non_integer(self, quantity):
        with pytest.raises(ValidationError):
            plan_fifo(1, quantity, [_lot(1, 10, 100, datetime(2024, 1, 1))])


class TestAllocate:
    """allocate() reads the database but never writes."""

    def test_two_lot_scenario(self, two_lots):
        plan = allocate(two_lots.product.id, 15)

        assert [(s.lot_id, s.quantity, s.unit_cost_cents) for s in plan.slices] == [
            (two_lots.l1.id, 10, 500),
            (two_lots.l2.id, 5, 700),
        ]

    def test_allocate_has_no_side_effects(self, two_lots):
        allocate(two_lots.product.id, 15)
        db.session.rollback()

        lots = db.session.query(Lot).filter_by(product_id=two_lots.product.id).order_by(Lot.id).all()
        assert [lot.remaining_quantity for lot in lots] == [10, 10]
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
        assert db.session.query(Consumption).count() == 0

    def test_insufficient_stock_reports_shortfall(self, two_lots):
        with pytest.raises(InsufficientStockError) as exc:
            allocate(two_lots.product.id, 25)

        assert exc.value.shortfall == 5
        assert exc.value.to_dict()["details"]["shortfall"] == 5

        product = db.session.get(Product, two_lots.product.id)
        assert product.stock_quantity == 20
        assert product.unit_cost_cents == 500

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            allocate(424242, 1)

    def test_product_without_lots(self, product):
        with pytest.raises(InsufficientStockError) as exc:
            allocate(product.id, 1)
        assert exc.value.available == 0
