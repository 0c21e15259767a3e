# Overview: Credit sales; assembled while TEMPORARY, consumed FIFO on activation.

"""
Credit Sales

A credit sale is put together over time (parts picked, prices agreed)
while it is TEMPORARY; nothing leaves stock until it is registered.
Activation consumes every line FIFO under reference CREDIT <document number>
in one transaction, so returns can later trace the units back to their lots.

- Default due date: 30 days after creation
- Activation needs a customer name and at least one line
- A TEMPORARY credit can be discarded; ACTIVE and DISCARDED are final
"""

from __future__ import annotations

from datetime import timedelta

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Credit, CreditLine
from ..time_utils import utcnow
from ..validation import MAX_QUANTITY, parse_optional_date
from .allocation_service import get_product, require_positive_quantity
from .concurrency import execute_atomically, lock_for_update
from .consumption_service import _check_unit_price, _consume_lines_inner, list_consumptions
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import CreditStatus, OperationState, transition


DEFAULT_TERM_DAYS = 30


def _get_credit(credit_id: int, *, lock: bool = False) -> Credit:
    query = db.session.query(Credit).filter_by(id=credit_id)
    if lock:
        query = lock_for_update(query)
    credit = query.first()
    if credit is None:
        raise NotFoundError("Credit", credit_id)
    return credit


def _require_temporary(credit: Credit, action: str) -> None:
    if credit.status != CreditStatus.TEMPORARY.value:
        raise InvalidTransitionError(
            f"Can only {action} TEMPORARY credits. "
            f"Credit {credit.id} has status: {credit.status}"
        )


def _update_total(credit: Credit) -> None:
    lines = db.session.query(CreditLine).filter_by(credit_id=credit.id).all()
    credit.total_cents = sum(line.line_total_cents for line in lines)


def create_credit(
    *,
    customer_name: str | None = None,
    customer_document: str | None = None,
    due_on=None,
    notes: str | None = None,
    created_by: str | None = None,
) -> Credit:
    """Open a TEMPORARY credit; the customer may be filled in later."""
    due_on = parse_optional_date(due_on, "due_on") or (utcnow() + timedelta(days=DEFAULT_TERM_DAYS)).date()

    def _work(op) -> Credit:
        op.advance(OperationState.VALIDATING)
        credit = Credit(
            document_number=next_document_number(document_type="credit"),
            customer_name=customer_name,
            customer_document=customer_document,
            due_on=due_on,
            notes=notes,
            status=CreditStatus.TEMPORARY.value,
            total_cents=0,
            created_by=created_by,
        )
        db.session.add(credit)
        db.session.flush()

        append_ledger_event(
            event_type="credit.created",
            entity_type="credit",
            entity_id=credit.id,
            actor=created_by,
            note=f"Credit {credit.document_number}",
        )
        return credit

    return execute_atomically("create_credit", _work)


def add_credit_line(
    credit_id: int,
    product_id: int,
    quantity: int,
    *,
    unit_price_cents: int | None = None,
) -> CreditLine:
    """
    Add a product to a TEMPORARY credit. Stock is NOT reduced until activation.

    Raises:
        InvalidTransitionError: credit no longer TEMPORARY
        PriceFloorError: unit price below the product's floor
        ValidationError: bad quantity or product already on the credit
    """
    require_positive_quantity(quantity)
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")

    def _work(op) -> CreditLine:
        credit = _get_credit(credit_id, lock=True)
        _require_temporary(credit, "add lines to")

        product = get_product(product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product_id} is inactive")
        price = _check_unit_price(
            product,
            unit_price_cents if unit_price_cents is not None else product.sale_price_cents,
            "CREDIT",
        )

        exists = db.session.query(CreditLine.id).filter_by(credit_id=credit.id, product_id=product.id).first()
        if exists is not None:
            raise ValidationError(f"Product {product.id} is already on credit {credit.id}")

        op.advance(OperationState.VALIDATING)

        line = CreditLine(
            credit_id=credit.id,
            product_id=product.id,
            quantity=quantity,
            unit_price_cents=price,
            line_total_cents=price * quantity,
        )
        db.session.add(line)
        db.session.flush()
        _update_total(credit)
        return line

    return execute_atomically("add_credit_line", _work)


def remove_credit_line(credit_id: int, line_id: int) -> Credit:
    def _work(op) -> Credit:
        credit = _get_credit(credit_id, lock=True)
        _require_temporary(credit, "remove lines from")

        line = db.session.query(CreditLine).filter_by(id=line_id, credit_id=credit.id).first()
        if line is None:
            raise NotFoundError("CreditLine", line_id)
        op.advance(OperationState.VALIDATING)

        db.session.delete(line)
        db.session.flush()
        _update_total(credit)
        return credit

    return execute_atomically("remove_credit_line", _work)


def activate_credit(
    credit_id: int,
    *,
    customer_name: str | None = None,
    due_on=None,
    notes: str | None = None,
    activated_by: str | None = None,
) -> Credit:
    """
    Register a TEMPORARY credit (TEMPORARY -> ACTIVE), consuming its stock.

    Every line is consumed FIFO under reference CREDIT <document number>.
    Any shortage leaves the credit TEMPORARY and every lot untouched.

    Raises:
        InvalidTransitionError: credit not TEMPORARY
        ValidationError: no customer or no lines
        InsufficientStockError / PriceFloorError: from consumption
    """
    due_on = parse_optional_date(due_on, "due_on")

    def _work(op) -> Credit:
        credit = _get_credit(credit_id, lock=True)
        new_status = transition(credit.status, CreditStatus.ACTIVE)

        if customer_name:
            credit.customer_name = customer_name
        if not credit.customer_name:
            raise ValidationError(f"Credit {credit_id} needs a customer before activation")
        if not credit.lines:
            raise ValidationError(f"Cannot activate credit {credit_id} with no lines")

        consumptions = _consume_lines_inner(
            op,
            reference_type="CREDIT",
            reference_id=credit.document_number,
            lines=[
                {
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "lot_id": None,
                }
                for line in credit.lines
            ],
            actor=activated_by,
            note=f"Credit {credit.document_number}",
        )

        credit.status = new_status.value
        if due_on is not None:
            credit.due_on = due_on
        if notes is not None:
            credit.notes = notes
        credit.activated_by = activated_by
        credit.activated_at = utcnow()

        append_ledger_event(
            event_type="credit.activated",
            entity_type="credit",
            entity_id=credit.id,
            actor=activated_by,
            occurred_at=credit.activated_at,
            note=f"Credit {credit.document_number} for {credit.customer_name}",
            payload={
                "total_cents": credit.total_cents,
                "consumptions": [c.id for c in consumptions],
            },
        )
        return credit

    return execute_atomically("activate_credit", _work)


def discard_credit(credit_id: int, *, actor: str | None = None) -> Credit:
    """Abandon a TEMPORARY credit (TEMPORARY -> DISCARDED). No stock moves."""
    def _work(op) -> Credit:
        credit = _get_credit(credit_id, lock=True)
        new_status = transition(credit.status, CreditStatus.DISCARDED)
        op.advance(OperationState.VALIDATING)

        credit.status = new_status.value
        credit.discarded_at = utcnow()

        append_ledger_event(
            event_type="credit.discarded",
            entity_type="credit",
            entity_id=credit.id,
            actor=actor,
            occurred_at=credit.discarded_at,
            note=f"Credit {credit.document_number} discarded",
        )
        return credit

    return execute_atomically("discard_credit", _work)


def get_credit(credit_id: int) -> Credit:
    return _get_credit(credit_id)


def list_credits(*, status: str | None = None, limit: int = 100) -> list[Credit]:
    q = db.session.query(Credit)
    if status:
        q = q.filter(Credit.status == status.upper())
    return q.order_by(Credit.created_at.desc(), Credit.id.desc()).limit(limit).all()


def get_credit_summary(credit_id: int) -> dict:
    credit = _get_credit(credit_id)
    consumptions = []
    if credit.status == CreditStatus.ACTIVE.value:
        consumptions = list_consumptions(reference_type="CREDIT", reference_id=credit.document_number)
    return {
        "credit": credit.to_dict(),
        "consumptions": [c.to_dict() for c in sorted(consumptions, key=lambda c: c.id)],
    }
