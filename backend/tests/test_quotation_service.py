# Overview: Pytest coverage for quotations and their conversion into sales.

"""
Quotation Tests

Covers:
- DRAFT editing: pricing, price floor, pinned lots, duplicate products
- DRAFT -> PENDING -> CONFIRMED consumes stock as SALE <document number>
- A shortage on confirmation leaves the quotation PENDING and lots untouched
- Cancellation moves nothing; finished quotations are immutable
- Returns against a confirmed quotation restore the lots it drew from
"""

import pytest
from partsledger.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PriceFloorError,
    ValidationError,
)
from partsledger.extensions import db
from partsledger.models import Consumption, LedgerEvent, Lot, Product
from partsledger.services.quotation_service import (
    add_quotation_line,
    cancel_quotation,
    confirm_quotation,
    create_quotation,
    get_quotation,
    get_quotation_summary,
    list_quotations,
    remove_quotation_line,
    submit_quotation,
)
from partsledger.services.return_service import add_return_line, approve_return, create_return

from conftest import DAY_1, receive


@pytest.fixture
def pending_quote(two_lots):
    """PENDING quotation for 12 units at the list price (1500)."""
    quotation = create_quotation(customer_name="Taller Ruiz", created_by="ana")
    add_quotation_line(quotation.id, two_lots.product.id, 12)
    submit_quotation(quotation.id, actor="ana")
    two_lots.quotation = get_quotation(quotation.id)
    return two_lots


class TestQuotationEditing:

    def test_create_numbers_document(self, db_session):
        quotation = create_quotation(customer_name="Taller Ruiz", valid_until="2024-02-15")

        assert quotation.document_number == "COT-000001"
        assert quotation.status == "DRAFT"
        assert quotation.valid_until.isoformat() == "2024-02-15"
        assert quotation.total_cents == 0

    def test_bad_valid_until(self, db_session):
        with pytest.raises(ValidationError):
            create_quotation(valid_until="15/02/2024")

    def test_line_defaults_to_sale_price_and_updates_total(self, two_lots, other_product):
        quotation = create_quotation()
        line = add_quotation_line(quotation.id, two_lots.product.id, 3)
        add_quotation_line(quotation.id, other_product.id, 1, unit_price_cents=2500)

        assert line.unit_price_cents == 1500
        assert line.line_total_cents == 4500
        assert get_quotation(quotation.id).total_cents == 4500 + 2500

    def test_price_floor_checked_when_adding(self, two_lots):
        quotation = create_quotation()
        with pytest.raises(PriceFloorError):
            add_quotation_line(quotation.id, two_lots.product.id, 1, unit_price_cents=599)

    def test_product_quoted_once(self, two_lots):
        quotation = create_quotation()
        add_quotation_line(quotation.id, two_lots.product.id, 1)
        with pytest.raises(ValidationError):
            add_quotation_line(quotation.id, two_lots.product.id, 2)

    def test_pinned_lot_must_belong_to_product(self, two_lots, other_product):
        other_lot = receive(two_lots.supplier, other_product, 2, 900, DAY_1)
        quotation = create_quotation()

        with pytest.raises(ValidationError):
            add_quotation_line(quotation.id, two_lots.product.id, 1, lot_id=other_lot.id)
        with pytest.raises(NotFoundError):
            add_quotation_line(quotation.id, two_lots.product.id, 1, lot_id=999999)

    def test_remove_line(self, two_lots):
        quotation = create_quotation()
        line = add_quotation_line(quotation.id, two_lots.product.id, 2)

        updated = remove_quotation_line(quotation.id, line.id)
        assert updated.lines == []
        assert updated.total_cents == 0

    def test_submit_requires_lines(self, db_session):
        quotation = create_quotation()
        with pytest.raises(ValidationError):
            submit_quotation(quotation.id)
        assert get_quotation(quotation.id).status == "DRAFT"

    def test_pending_lines_are_frozen(self, pending_quote):
        q = pending_quote
        with pytest.raises(InvalidTransitionError):
            add_quotation_line(q.quotation.id, q.product.id, 1)
        with pytest.raises(InvalidTransitionError):
            remove_quotation_line(q.quotation.id, q.quotation.lines[0].id)


class TestConfirmQuotation:

    def test_confirm_consumes_as_sale(self, pending_quote):
        q = pending_quote
        result = confirm_quotation(q.quotation.id, processed_by="jefe")

        assert result["quotation"]["status"] == "CONFIRMED"
        assert result["quotation"]["processed_by"] == "jefe"
        (consumption,) = result["consumptions"]
        assert consumption["reference_type"] == "SALE"
        assert consumption["reference_id"] == "COT-000001"
        assert consumption["quantity"] == 12
        assert consumption["unit_price_cents"] == 1500

        assert db.session.get(Lot, q.l1.id).remaining_quantity == 0
        assert db.session.get(Lot, q.l2.id).remaining_quantity == 8
        assert db.session.get(Product, q.product.id).stock_quantity == 8

        events = db.session.query(LedgerEvent).filter_by(event_type="quotation.confirmed").all()
        assert len(events) == 1

    def test_confirm_uses_pinned_lot(self, two_lots):
        quotation = create_quotation()
        add_quotation_line(quotation.id, two_lots.product.id, 4, lot_id=two_lots.l2.id)
        submit_quotation(quotation.id)

        confirm_quotation(quotation.id)

        assert db.session.get(Lot, two_lots.l1.id).remaining_quantity == 10
        assert db.session.get(Lot, two_lots.l2.id).remaining_quantity == 6

    def test_shortage_leaves_quotation_pending(self, two_lots, other_product):
        receive(two_lots.supplier, other_product, 1, 1200, DAY_1)
        quotation = create_quotation()
        add_quotation_line(quotation.id, two_lots.product.id, 5)
        add_quotation_line(quotation.id, other_product.id, 3)
        submit_quotation(quotation.id)

        with pytest.raises(InsufficientStockError):
            confirm_quotation(quotation.id)

        assert get_quotation(quotation.id).status == "PENDING"
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
        assert db.session.query(Consumption).count() == 0

    def test_draft_cannot_be_confirmed(self, two_lots):
        quotation = create_quotation()
        add_quotation_line(quotation.id, two_lots.product.id, 1)

        with pytest.raises(InvalidTransitionError):
            confirm_quotation(quotation.id)

    def test_confirmed_is_final(self, pending_quote):
        q = pending_quote
        confirm_quotation(q.quotation.id)

        with pytest.raises(InvalidTransitionError):
            confirm_quotation(q.quotation.id)
        with pytest.raises(InvalidTransitionError):
            cancel_quotation(q.quotation.id)
        assert db.session.get(Product, q.product.id).stock_quantity == 8

    def test_return_against_confirmed_quotation(self, pending_quote):
        q = pending_quote
        consumption_id = confirm_quotation(q.quotation.id)["consumptions"][0]["id"]

        ret = create_return(reference_type="SALE", reference_id=q.quotation.document_number)
        add_return_line(ret.id, consumption_id, 2)
        approve_return(ret.id)

        assert db.session.get(Lot, q.l2.id).remaining_quantity == 10
        assert db.session.get(Product, q.product.id).stock_quantity == 10


class TestCancelQuotation:

    @pytest.mark.parametrize("submit", [False, True])
    def test_cancel_moves_nothing(self, two_lots, submit):
        quotation = create_quotation()
        add_quotation_line(quotation.id, two_lots.product.id, 3)
        if submit:
            submit_quotation(quotation.id)

        cancelled = cancel_quotation(quotation.id, reason="Bought elsewhere", processed_by="ana")

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancellation_reason == "Bought elsewhere"
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20

        with pytest.raises(InvalidTransitionError):
            submit_quotation(quotation.id)


class TestQuotationQueries:

    def test_summary_reports_availability_while_open(self, pending_quote):
        summary = get_quotation_summary(pending_quote.quotation.id)

        line = summary["availability"]["lines"][0]
        assert line["available"] == 20
        assert line["cost_cents"] == 10 * 500 + 2 * 700
        assert summary["consumptions"] == []

    def test_summary_lists_sale_after_confirmation(self, pending_quote):
        confirm_quotation(pending_quote.quotation.id)
        summary = get_quotation_summary(pending_quote.quotation.id)

        assert summary["availability"] is None
        assert [c["quantity"] for c in summary["consumptions"]] == [12]

    def test_list_filters_by_status(self, pending_quote):
        create_quotation()

        assert [q.status for q in list_quotations(status="pending")] == ["PENDING"]
        assert len(list_quotations()) == 2

    def test_unknown_quotation(self, db_session):
        with pytest.raises(NotFoundError):
            get_quotation(999999)
