# Overview: Pytest coverage for customer returns restoring stock into original lots.

"""
Return Workflow Tests

Covers:
- REQUESTED -> APPROVED restores stock into the lots the sale drew from
- REQUESTED -> REJECTED moves nothing
- Finalized returns are immutable
- Line quantity limits, including units claimed by other open returns
- A failed approval leaves the return REQUESTED and lots untouched
"""

import pytest
from partsledger.errors import InvalidTransitionError, LotOverflowError, NotFoundError, ValidationError
from partsledger.extensions import db
from partsledger.models import LedgerEvent, Lot, Product, Return, StockMovement
from partsledger.services.consumption_service import consume, consume_lines
from partsledger.services.return_service import (
    add_return_line,
    approve_return,
    create_return,
    get_return_summary,
    list_returns,
    reject_return,
)

from conftest import DAY_1, receive


@pytest.fixture
def sale(two_lots):
    """Sale V-500 of 15 units at 1500 (10 from L1, 5 from L2)."""
    consumption = consume(
        two_lots.product.id, 15,
        reference_type="SALE", reference_id="V-500", unit_price_cents=1500,
    )
    two_lots.consumption = consumption
    return two_lots


class TestApproveReturn:

    def test_approval_restores_original_lots(self, sale):
        ret = create_return(reference_type="sale", reference_id="V-500", reason="Wrong part", requested_by="ana")
        assert ret.document_number == "DEV-000001"
        assert ret.status == "REQUESTED"

        line = add_return_line(ret.id, sale.consumption.id, 7)
        assert line.line_refund_cents == 7 * 1500

        approved = approve_return(ret.id, processed_by="jefe")
        assert approved.status == "APPROVED"
        assert approved.processed_at is not None

        # newest slice first: 5 back into L2, 2 into L1
        assert db.session.get(Lot, sale.l2.id).remaining_quantity == 10
        assert db.session.get(Lot, sale.l1.id).remaining_quantity == 2
        product = db.session.get(Product, sale.product.id)
        assert (product.stock_quantity, product.unit_cost_cents) == (12, 500)

        summary = get_return_summary(ret.id)
        assert summary["total_refund_cents"] == 7 * 1500
        assert [(m["lot_id"], m["quantity"]) for m in summary["movements"]] == [
            (sale.l2.id, 5),
            (sale.l1.id, 2),
        ]
        assert db.session.query(LedgerEvent).filter_by(event_type="return.approved").count() == 1

    def test_approved_return_is_immutable(self, sale):
        ret = create_return(reference_type="SALE", reference_id="V-500")
        add_return_line(ret.id, sale.consumption.id, 1)
        approve_return(ret.id)

        with pytest.raises(InvalidTransitionError):
            approve_return(ret.id)
        with pytest.raises(InvalidTransitionError):
            reject_return(ret.id, rejection_reason="late")
        with pytest.raises(InvalidTransitionError):
            add_return_line(ret.id, sale.consumption.id, 1)

        assert db.session.get(Product, sale.product.id).stock_quantity == 6

    def test_approve_without_lines(self, sale):
        ret = create_return(reference_type="SALE", reference_id="V-500")
        with pytest.raises(ValidationError):
            approve_return(ret.id)
        assert db.session.get(Return, ret.id).status == "REQUESTED"

    def test_failed_approval_leaves_return_requested(self, single_lot):
        consumption = consume(single_lot.product.id, 5, reference_type="SALE", reference_id="V-600")
        ret = create_return(reference_type="SALE", reference_id="V-600")
        add_return_line(ret.id, consumption.id, 5)

        lot = db.session.get(Lot, single_lot.lot.id)
        lot.remaining_quantity = 8
        db.session.commit()

        with pytest.raises(LotOverflowError):
            approve_return(ret.id)

        assert db.session.get(Return, ret.id).status == "REQUESTED"
        assert db.session.get(Lot, single_lot.lot.id).remaining_quantity == 8
        assert db.session.query(StockMovement).filter_by(return_id=ret.id).count() == 0


class TestRejectReturn:

    def test_reject_moves_nothing(self, sale):
        ret = create_return(reference_type="SALE", reference_id="V-500")
        add_return_line(ret.id, sale.consumption.id, 3)

        rejected = reject_return(ret.id, rejection_reason="Used part", processed_by="jefe")

        assert rejected.status == "REJECTED"
        assert rejected.rejection_reason == "Used part"
        assert db.session.get(Product, sale.product.id).stock_quantity == 5

    def test_reason_required(self, sale):
        ret = create_return(reference_type="SALE", reference_id="V-500")
        with pytest.raises(ValidationError):
            reject_return(ret.id, rejection_reason=" ")


class TestReturnLines:

    def test_quantity_limited_by_unreversed_units(self, sale):
        ret = create_return(reference_type="SALE", reference_id="V-500")
        with pytest.raises(ValidationError):
            add_return_line(ret.id, sale.consumption.id, 16)

    def test_quantity_limited_by_other_open_returns(self, sale):
        first = create_return(reference_type="SALE", reference_id="V-500")
        add_return_line(first.id, sale.consumption.id, 10)

        second = create_return(reference_type="SALE", reference_id="V-500")
        with pytest.raises(ValidationError):
            add_return_line(second.id, sale.consumption.id, 6)
        add_return_line(second.id, sale.consumption.id, 5)

    def test_rejected_return_releases_claim(self, sale):
        first = create_return(reference_type="SALE", reference_id="V-500")
        add_return_line(first.id, sale.consumption.id, 15)
        reject_return(first.id, rejection_reason="Not ours")

        second = create_return(reference_type="SALE", reference_id="V-500")
        add_return_line(second.id, sale.consumption.id, 15)

    def test_duplicate_consumption_line(self, sale):
        ret = create_return(reference_type="SALE", reference_id="V-500")
        add_return_line(ret.id, sale.consumption.id, 1)
        with pytest.raises(ValidationError):
            add_return_line(ret.id, sale.consumption.id, 1)

    def test_consumption_from_another_document(self, sale):
        other = consume(sale.product.id, 1, reference_type="SALE", reference_id="V-501")
        ret = create_return(reference_type="SALE", reference_id="V-500")
        with pytest.raises(ValidationError):
            add_return_line(ret.id, other.id, 1)

    def test_unknown_consumption(self, sale):
        ret = create_return(reference_type="SALE", reference_id="V-500")
        with pytest.raises(NotFoundError):
            add_return_line(ret.id, 99999, 1)


class TestCreateReturn:

    def test_unknown_reference(self, sale):
        with pytest.raises(ValidationError):
            create_return(reference_type="SALE", reference_id="V-404")

    def test_outflows_are_not_returnable(self, sale):
        consume(sale.product.id, 1, reference_type="OUTFLOW", reference_id="S-1")
        with pytest.raises(ValidationError):
            create_return(reference_type="OUTFLOW", reference_id="S-1")

    def test_credit_document_with_two_products(self, two_lots, other_product):
        receive(two_lots.supplier, other_product, 4, 1200, DAY_1)
        consumptions = consume_lines(
            reference_type="CREDIT",
            reference_id="CR-9",
            lines=[
                {"product_id": two_lots.product.id, "quantity": 2},
                {"product_id": other_product.id, "quantity": 4},
            ],
        )
        ret = create_return(reference_type="CREDIT", reference_id="CR-9")
        for c in consumptions:
            add_return_line(ret.id, c.id, c.quantity)
        approve_return(ret.id)

        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
        assert db.session.get(Product, other_product.id).stock_quantity == 4
        assert [r.id for r in list_returns(status="approved")] == [ret.id]
