# Overview: Pytest coverage for committing FIFO consumptions.

"""
Consumption Tests

Covers:
- Lot decrements, exhausted transitions, aggregate and cost updates
- Allocation record, per-lot movements and ledger event
- All-or-nothing multi-product documents and price floor
- Stale plans (ConflictError) and re-planning under contention
- Quotations never touching stock
- Lines pinned to an operator-chosen lot
- Random consume/reverse sequences keeping every lot consistent
"""

import random

import pytest
from partsledger.errors import (
    ConflictError,
    InsufficientStockError,
    PriceFloorError,
    ValidationError,
)
from partsledger.extensions import db
from partsledger.models import Consumption, LedgerEvent, Lot, Product, StockMovement
from partsledger.services import consumption_service
from partsledger.services.allocation_service import allocate
from partsledger.services.consumption_service import (
    commit_consumption,
    consume,
    consume_lines,
    quote_lines,
)
from partsledger.services.cost_service import check_invariants
from partsledger.services.reversal_service import reverse_consumption

from conftest import DAY_1, receive


def _lots(product_id):
    return db.session.query(Lot).filter_by(product_id=product_id).order_by(Lot.received_at, Lot.id).all()


class TestCommitConsumption:

    def test_consume_fifteen_across_two_lots(self, two_lots):
        plan = allocate(two_lots.product.id, 15)
        consumption = commit_consumption(plan, reference_type="SALE", reference_id="V-0001", actor="ana")

        l1, l2 = _lots(two_lots.product.id)
        assert (l1.remaining_quantity, l1.status) == (0, "EXHAUSTED")
        assert (l2.remaining_quantity, l2.status) == (5, "ACTIVE")

        product = db.session.get(Product, two_lots.product.id)
        assert product.stock_quantity == 5
        assert product.unit_cost_cents == 700

        assert consumption.quantity == 15
        assert consumption.total_cost_cents == 8500
        assert [(ln.lot_id, ln.quantity, ln.unit_cost_cents) for ln in consumption.lines] == [
            (l1.id, 10, 500),
            (l2.id, 5, 700),
        ]

    def test_writes_one_movement_per_lot_and_one_event(self, two_lots):
        consumption = consume(two_lots.product.id, 15, reference_type="SALE", reference_id="V-0002")

        movements = db.session.query(StockMovement).filter_by(consumption_id=consumption.id).order_by(StockMovement.id).all()
        assert [(m.movement_type, m.quantity) for m in movements] == [("CONSUMPTION", -10), ("CONSUMPTION", -5)]
        assert [(m.lot_remaining_before, m.lot_remaining_after) for m in movements] == [(10, 0), (10, 5)]

        events = db.session.query(LedgerEvent).filter_by(event_type="stock.consumed", consumption_id=consumption.id).all()
        assert len(events) == 1

    def test_consuming_everything_zeroes_cost(self, two_lots):
        consume(two_lots.product.id, 20, reference_type="OUTFLOW", reference_id="S-1")

        product = db.session.get(Product, two_lots.product.id)
        assert product.stock_quantity == 0
        assert product.unit_cost_cents == 0
        assert all(lot.status == "EXHAUSTED" for lot in _lots(product.id))

    def test_insufficient_stock_mutates_nothing(self, two_lots):
        with pytest.raises(InsufficientStockError) as exc:
            consume(two_lots.product.id, 25, reference_type="SALE", reference_id="V-0003")
        assert exc.value.shortfall == 5

        assert [lot.remaining_quantity for lot in _lots(two_lots.product.id)] == [10, 10]
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
        assert db.session.query(Consumption).count() == 0
        assert db.session.query(StockMovement).filter_by(movement_type="CONSUMPTION").count() == 0

    def test_invalid_reference_type(self, two_lots):
        plan = allocate(two_lots.product.id, 1)
        with pytest.raises(ValidationError):
            commit_consumption(plan, reference_type="GIFT", reference_id="X")

    def test_price_floor_enforced_for_sales(self, two_lots):
        # min_sale_price_cents is 600
        with pytest.raises(PriceFloorError) as exc:
            consume(two_lots.product.id, 1, reference_type="SALE", reference_id="V-4", unit_price_cents=599)
        assert exc.value.status_code == 400
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20

    def test_price_floor_not_applied_to_outflows(self, two_lots):
        consumption = consume(
            two_lots.product.id, 1, reference_type="OUTFLOW", reference_id="S-2", unit_price_cents=0
        )
        assert consumption.unit_price_cents == 0


class TestConcurrentAllocation:
    """Two plans against the same lot: only one may commit."""

    def test_second_commit_conflicts_then_replan_fails(self, single_lot):
        pid = single_lot.product.id
        plan_a = allocate(pid, 8)
        plan_b = allocate(pid, 8)

        commit_consumption(plan_a, reference_type="SALE", reference_id="A")

        with pytest.raises(ConflictError):
            commit_consumption(plan_b, reference_type="SALE", reference_id="B")

        lot = _lots(pid)[0]
        assert lot.remaining_quantity == 2
        assert db.session.query(Consumption).count() == 1

        with pytest.raises(InsufficientStockError) as exc:
            consume(pid, 8, reference_type="SALE", reference_id="B")
        assert exc.value.shortfall == 6

        assert _lots(pid)[0].remaining_quantity >= 0

    def test_consume_replans_after_conflict(self, single_lot, monkeypatch):
        pid = single_lot.product.id
        real_allocate = consumption_service.allocate
        raced = []

        def racing_allocate(product_id, quantity):
            plan = real_allocate(product_id, quantity)
            if not raced:
                raced.append(True)
                # Another checkout commits between planning and committing
                commit_consumption(real_allocate(product_id, 2), reference_type="SALE", reference_id="OTHER")
            return plan

        monkeypatch.setattr(consumption_service, "allocate", racing_allocate)

        consumption = consume(pid, 5, reference_type="SALE", reference_id="MINE")

        assert consumption.quantity == 5
        assert _lots(pid)[0].remaining_quantity == 3
        assert db.session.get(Product, pid).stock_quantity == 3


class TestConsumeLines:

    def test_multi_product_document(self, two_lots, other_product):
        receive(two_lots.supplier, other_product, 4, 1200, DAY_1)

        consumptions = consume_lines(
            reference_type="CREDIT",
            reference_id="CR-77",
            lines=[
                {"product_id": two_lots.product.id, "quantity": 12, "unit_price_cents": 1500},
                {"product_id": other_product.id, "quantity": 3},
            ],
            actor="luis",
        )

        assert [c.reference_line for c in consumptions] == ["1", "2"]
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 8
        assert db.session.get(Product, other_product.id).stock_quantity == 1

    def test_all_or_nothing(self, two_lots, other_product):
        receive(two_lots.supplier, other_product, 2, 1200, DAY_1)

        with pytest.raises(InsufficientStockError):
            consume_lines(
                reference_type="SALE",
                reference_id="V-9",
                lines=[
                    {"product_id": two_lots.product.id, "quantity": 5},
                    {"product_id": other_product.id, "quantity": 3},
                ],
            )

        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
        assert db.session.get(Product, other_product.id).stock_quantity == 2
        assert db.session.query(Consumption).count() == 0

    def test_duplicate_product_rejected(self, two_lots):
        with pytest.raises(ValidationError):
            consume_lines(
                reference_type="SALE",
                reference_id="V-10",
                lines=[
                    {"product_id": two_lots.product.id, "quantity": 1},
                    {"product_id": two_lots.product.id, "quantity": 2},
                ],
            )

    def test_empty_lines_rejected(self, two_lots):
        with pytest.raises(ValidationError):
            consume_lines(reference_type="SALE", reference_id="V-11", lines=[])


class TestQuoteLines:

    def test_quote_reports_cost_margin_and_shortfall(self, two_lots, other_product):
        quote = quote_lines([
            {"product_id": two_lots.product.id, "quantity": 15},
            {"product_id": other_product.id, "quantity": 1, "unit_price_cents": 2500},
        ])

        first, second = quote["lines"]
        assert first["cost_cents"] == 8500
        assert first["sale_total_cents"] == 15 * 1500
        assert first["margin_cents"] == 15 * 1500 - 8500
        assert first["shortfall"] == 0

        assert second["available"] == 0
        assert second["shortfall"] == 1
        assert second["allocation"] == []
        assert quote["fulfillable"] is False

    def test_quote_does_not_touch_stock(self, two_lots):
        quote_lines([{"product_id": two_lots.product.id, "quantity": 20}])

        assert [lot.remaining_quantity for lot in _lots(two_lots.product.id)] == [10, 10]
        assert db.session.query(Consumption).count() == 0

    def test_quote_rejects_negative_price(self, two_lots):
        with pytest.raises(ValidationError):
            quote_lines([{"product_id": two_lots.product.id, "quantity": 1, "unit_price_cents": -1}])

    def test_quote_rejects_price_above_maximum(self, two_lots):
        with pytest.raises(ValidationError):
            quote_lines([{"product_id": two_lots.product.id, "quantity": 1, "unit_price_cents": 1_000_000_000}])

    def test_quote_pinned_lot_limits_availability(self, two_lots):
        quote = quote_lines([{"product_id": two_lots.product.id, "quantity": 12, "lot_id": two_lots.l2.id}])

        line = quote["lines"][0]
        assert line["lot_id"] == two_lots.l2.id
        assert line["available"] == 10
        assert line["shortfall"] == 2
        assert line["cost_cents"] == 7000


class TestPinnedLot:
    """A sale line may name the lot it is taken from instead of FIFO."""

    def test_pinned_line_skips_older_lot(self, two_lots):
        (consumption,) = consume_lines(
            reference_type="SALE",
            reference_id="V-P1",
            lines=[{"product_id": two_lots.product.id, "quantity": 3, "lot_id": two_lots.l2.id}],
        )

        l1, l2 = _lots(two_lots.product.id)
        assert l1.remaining_quantity == 10
        assert l2.remaining_quantity == 7
        assert [(ln.lot_id, ln.quantity, ln.unit_cost_cents) for ln in consumption.lines] == [(l2.id, 3, 700)]
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 17
        assert check_invariants(two_lots.product.id) == []

    def test_pinned_and_fifo_lines_in_one_document(self, two_lots, other_product):
        receive(two_lots.supplier, other_product, 4, 1200, DAY_1)

        pinned, fifo = consume_lines(
            reference_type="SALE",
            reference_id="V-P2",
            lines=[
                {"product_id": two_lots.product.id, "quantity": 10, "lot_id": two_lots.l2.id},
                {"product_id": other_product.id, "quantity": 2},
            ],
        )

        assert [ln.lot_id for ln in pinned.lines] == [two_lots.l2.id]
        assert fifo.quantity == 2
        l1, l2 = _lots(two_lots.product.id)
        assert (l2.remaining_quantity, l2.status) == (0, "EXHAUSTED")
        assert db.session.get(Product, two_lots.product.id).unit_cost_cents == 500

    def test_lot_of_another_product_rejected(self, two_lots, other_product):
        other_lot = receive(two_lots.supplier, other_product, 4, 1200, DAY_1)

        with pytest.raises(ValidationError):
            consume_lines(
                reference_type="SALE",
                reference_id="V-P3",
                lines=[{"product_id": two_lots.product.id, "quantity": 1, "lot_id": other_lot.id}],
            )
        assert db.session.query(Consumption).count() == 0

    def test_pinned_lot_short_does_not_spill(self, two_lots):
        with pytest.raises(InsufficientStockError) as exc:
            consume_lines(
                reference_type="SALE",
                reference_id="V-P4",
                lines=[{"product_id": two_lots.product.id, "quantity": 11, "lot_id": two_lots.l1.id}],
            )

        assert exc.value.lot_id == two_lots.l1.id
        assert exc.value.shortfall == 1
        assert exc.value.details()["lot_id"] == two_lots.l1.id
        assert [lot.remaining_quantity for lot in _lots(two_lots.product.id)] == [10, 10]

    def test_exhausted_lot_has_nothing_to_give(self, two_lots):
        consume(two_lots.product.id, 10, reference_type="SALE", reference_id="V-P5")

        with pytest.raises(InsufficientStockError) as exc:
            consume_lines(
                reference_type="SALE",
                reference_id="V-P6",
                lines=[{"product_id": two_lots.product.id, "quantity": 1, "lot_id": two_lots.l1.id}],
            )
        assert exc.value.available == 0

    def test_reversal_returns_units_to_pinned_lot(self, two_lots):
        (consumption,) = consume_lines(
            reference_type="SALE",
            reference_id="V-P7",
            lines=[{"product_id": two_lots.product.id, "quantity": 4, "lot_id": two_lots.l2.id}],
        )

        reverse_consumption(consumption.id)

        assert [lot.remaining_quantity for lot in _lots(two_lots.product.id)] == [10, 10]
        assert check_invariants(two_lots.product.id) == []

    def test_allocate_preview_with_lot(self, two_lots):
        plan = allocate(two_lots.product.id, 4, lot_id=two_lots.l2.id)

        assert [(s.lot_id, s.quantity) for s in plan.slices] == [(two_lots.l2.id, 4)]
        assert plan.total_cost_cents == 2800


class TestRandomSequence:
    """Interleaved consumptions and partial reversals never break a lot."""

    @pytest.mark.parametrize("seed", [7, 1234, 20240101])
    def test_lots_stay_consistent(self, two_lots, seed):
        rng = random.Random(seed)
        pid = two_lots.product.id
        initial = 20
        net_consumed = 0
        open_consumptions = []  # [consumption_id, still reversible]

        for step in range(40):
            available = initial - net_consumed
            reversible = [entry for entry in open_consumptions if entry[1] > 0]

            if available > 0 and (not reversible or rng.random() < 0.6):
                quantity = rng.randint(1, min(available, 7))
                consumption = consume(pid, quantity, reference_type="OUTFLOW", reference_id=f"R-{seed}-{step}")
                open_consumptions.append([consumption.id, quantity])
                net_consumed += quantity
            else:
                entry = rng.choice(reversible)
                quantity = rng.randint(1, entry[1])
                reverse_consumption(entry[0], quantity)
                entry[1] -= quantity
                net_consumed -= quantity

            lots = _lots(pid)
            assert sum(lot.remaining_quantity for lot in lots) == initial - net_consumed
            assert all(0 <= lot.remaining_quantity <= lot.received_quantity for lot in lots)
            assert check_invariants(pid) == []
