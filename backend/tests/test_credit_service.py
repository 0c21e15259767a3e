# Overview: Pytest coverage for credit sales consumed on activation.

"""
Credit Tests

Covers:
- TEMPORARY credits change freely without touching stock
- TEMPORARY -> ACTIVE consumes every line FIFO as CREDIT <document number>
- Activation needs a customer and lines; a shortage keeps the credit TEMPORARY
- Discarded and active credits are final
"""

from datetime import date, timedelta

import pytest
from partsledger.errors import InsufficientStockError, InvalidTransitionError, PriceFloorError, ValidationError
from partsledger.extensions import db
from partsledger.models import Consumption, LedgerEvent, Lot, Product
from partsledger.services.credit_service import (
    DEFAULT_TERM_DAYS,
    activate_credit,
    add_credit_line,
    create_credit,
    discard_credit,
    get_credit,
    get_credit_summary,
    list_credits,
    remove_credit_line,
)
from partsledger.services.return_service import add_return_line, approve_return, create_return
from partsledger.time_utils import utcnow


class TestTemporaryCredit:

    def test_create_defaults_due_date(self, db_session):
        credit = create_credit(created_by="ana")

        assert credit.document_number == "CRE-000001"
        assert credit.status == "TEMPORARY"
        assert credit.due_on == utcnow().date() + timedelta(days=DEFAULT_TERM_DAYS)

    def test_explicit_due_date(self, db_session):
        credit = create_credit(customer_name="Juan Quispe", due_on="2024-03-01")
        assert credit.due_on == date(2024, 3, 1)

    def test_lines_do_not_touch_stock(self, two_lots):
        credit = create_credit()
        line = add_credit_line(credit.id, two_lots.product.id, 5, unit_price_cents=1400)

        assert line.line_total_cents == 7000
        assert get_credit(credit.id).total_cents == 7000
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20

        remove_credit_line(credit.id, line.id)
        assert get_credit(credit.id).total_cents == 0

    def test_price_floor_applies_to_credits(self, two_lots):
        credit = create_credit()
        with pytest.raises(PriceFloorError):
            add_credit_line(credit.id, two_lots.product.id, 1, unit_price_cents=100)

    def test_product_once_per_credit(self, two_lots):
        credit = create_credit()
        add_credit_line(credit.id, two_lots.product.id, 1)
        with pytest.raises(ValidationError):
            add_credit_line(credit.id, two_lots.product.id, 1)


class TestActivateCredit:

    def test_activation_consumes_fifo(self, two_lots):
        credit = create_credit()
        add_credit_line(credit.id, two_lots.product.id, 12)

        active = activate_credit(credit.id, customer_name="Juan Quispe", activated_by="jefe")

        assert active.status == "ACTIVE"
        assert active.customer_name == "Juan Quispe"
        assert active.activated_at is not None
        assert db.session.get(Lot, two_lots.l1.id).remaining_quantity == 0
        assert db.session.get(Lot, two_lots.l2.id).remaining_quantity == 8

        (consumption,) = db.session.query(Consumption).all()
        assert (consumption.reference_type, consumption.reference_id) == ("CREDIT", "CRE-000001")
        assert consumption.unit_price_cents == 1500
        assert db.session.query(LedgerEvent).filter_by(event_type="credit.activated").count() == 1

    def test_customer_required(self, two_lots):
        credit = create_credit()
        add_credit_line(credit.id, two_lots.product.id, 1)

        with pytest.raises(ValidationError):
            activate_credit(credit.id)
        assert get_credit(credit.id).status == "TEMPORARY"

    def test_lines_required(self, db_session):
        credit = create_credit(customer_name="Juan Quispe")
        with pytest.raises(ValidationError):
            activate_credit(credit.id)

    def test_shortage_keeps_credit_temporary(self, two_lots):
        credit = create_credit(customer_name="Juan Quispe")
        add_credit_line(credit.id, two_lots.product.id, 21)

        with pytest.raises(InsufficientStockError):
            activate_credit(credit.id)

        assert get_credit(credit.id).status == "TEMPORARY"
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
        assert db.session.query(Consumption).count() == 0

    def test_active_is_final(self, two_lots):
        credit = create_credit(customer_name="Juan Quispe")
        add_credit_line(credit.id, two_lots.product.id, 2)
        activate_credit(credit.id)

        with pytest.raises(InvalidTransitionError):
            activate_credit(credit.id)
        with pytest.raises(InvalidTransitionError):
            discard_credit(credit.id)
        with pytest.raises(InvalidTransitionError):
            add_credit_line(credit.id, two_lots.product.id, 1)
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 18

    def test_return_against_credit(self, two_lots):
        credit = create_credit(customer_name="Juan Quispe")
        add_credit_line(credit.id, two_lots.product.id, 3)
        activate_credit(credit.id)
        consumption_id = get_credit_summary(credit.id)["consumptions"][0]["id"]

        ret = create_return(reference_type="CREDIT", reference_id=credit.document_number)
        add_return_line(ret.id, consumption_id, 3)
        approve_return(ret.id)

        assert db.session.get(Lot, two_lots.l1.id).remaining_quantity == 10


class TestDiscardCredit:

    def test_discard_moves_nothing(self, two_lots):
        credit = create_credit()
        add_credit_line(credit.id, two_lots.product.id, 4)

        discarded = discard_credit(credit.id, actor="ana")

        assert discarded.status == "DISCARDED"
        assert discarded.discarded_at is not None
        assert db.session.get(Product, two_lots.product.id).stock_quantity == 20
        with pytest.raises(InvalidTransitionError):
            activate_credit(credit.id, customer_name="Juan Quispe")

    def test_list_filters_by_status(self, db_session):
        create_credit()
        discard_credit(create_credit().id)

        assert [c.status for c in list_credits(status="discarded")] == ["DISCARDED"]
        assert len(list_credits()) == 2
