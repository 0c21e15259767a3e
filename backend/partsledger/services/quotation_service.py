"""
Quotation Service

Price quotes handed to a customer before they commit to buying. A quote
never reserves stock; confirming it turns it into a SALE that consumes
stock through the same path as a counter sale.

DESIGN PRINCIPLES:
- Lines are priced when added (default: the product's sale price) and
  checked against the product's price floor
- A line may pin an operator-chosen lot; other lines are consumed FIFO
- Confirmation consumes every line in ONE transaction under reference
  SALE <document number>; a shortage on any line leaves the quote PENDING
  and every lot untouched
- Confirmed and cancelled quotations are immutable

LIFECYCLE:
1. Create (DRAFT) - lines are added and removed while DRAFT
2. Submit (DRAFT -> PENDING) - lines frozen, quote handed to the customer
3. Confirm (PENDING -> CONFIRMED) - stock consumed
   or Cancel (DRAFT/PENDING -> CANCELLED) - nothing consumed
"""

from __future__ import annotations

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Quotation, QuotationLine
from ..time_utils import utcnow
from ..validation import MAX_QUANTITY, parse_optional_date
from .allocation_service import get_lot, get_product, require_positive_quantity
from .concurrency import execute_atomically, lock_for_update
from .consumption_service import (
    _check_unit_price,
    _consume_lines_inner,
    list_consumptions,
    quote_lines,
)
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import OperationState, QuotationStatus, transition


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _get_quotation(quotation_id: int, *, lock: bool = False) -> Quotation:
    query = db.session.query(Quotation).filter_by(id=quotation_id)
    if lock:
        query = lock_for_update(query)
    quotation = query.first()
    if quotation is None:
        raise NotFoundError("Quotation", quotation_id)
    return quotation


def _require_draft(quotation: Quotation, action: str) -> None:
    if quotation.status != QuotationStatus.DRAFT.value:
        raise InvalidTransitionError(
            f"Can only {action} DRAFT quotations. "
            f"Quotation {quotation.id} has status: {quotation.status}"
        )


def _update_total(quotation: Quotation) -> None:
    lines = db.session.query(QuotationLine).filter_by(quotation_id=quotation.id).all()
    quotation.total_cents = sum(line.line_total_cents for line in lines)


def _as_consumption_lines(quotation: Quotation) -> list[dict]:
    return [
        {
            "product_id": line.product_id,
            "quantity": line.quantity,
            "unit_price_cents": line.unit_price_cents,
            "lot_id": line.lot_id,
        }
        for line in quotation.lines
    ]


# =============================================================================
# QUOTATION EDITING
# =============================================================================

def create_quotation(
    *,
    customer_name: str | None = None,
    customer_document: str | None = None,
    notes: str | None = None,
    valid_until=None,
    created_by: str | None = None,
) -> Quotation:
    """Create an empty quotation (status: DRAFT)."""
    valid_until = parse_optional_date(valid_until, "valid_until")

    def _work(op) -> Quotation:
        op.advance(OperationState.VALIDATING)
        quotation = Quotation(
            document_number=next_document_number(document_type="quotation"),
            customer_name=customer_name,
            customer_document=customer_document,
            notes=notes,
            valid_until=valid_until,
            status=QuotationStatus.DRAFT.value,
            total_cents=0,
            created_by=created_by,
        )
        db.session.add(quotation)
        db.session.flush()

        append_ledger_event(
            event_type="quotation.created",
            entity_type="quotation",
            entity_id=quotation.id,
            actor=created_by,
            note=f"Quotation {quotation.document_number}",
        )
        return quotation

    return execute_atomically("create_quotation", _work)


def add_quotation_line(
    quotation_id: int,
    product_id: int,
    quantity: int,
    *,
    unit_price_cents: int | None = None,
    lot_id: int | None = None,
) -> QuotationLine:
    """
    Add a product to a DRAFT quotation.

    Stock is not checked here; availability is reported by the summary and
    enforced on confirmation.

    Raises:
        NotFoundError: quotation, product or lot missing
        InvalidTransitionError: quotation is no longer DRAFT
        PriceFloorError: unit price below the product's floor
        ValidationError: bad quantity, lot of another product, product already quoted
    """
    require_positive_quantity(quantity)
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")

    def _work(op) -> QuotationLine:
        quotation = _get_quotation(quotation_id, lock=True)
        _require_draft(quotation, "add lines to")

        product = get_product(product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product_id} is inactive")
        price = _check_unit_price(
            product,
            unit_price_cents if unit_price_cents is not None else product.sale_price_cents,
            "SALE",
        )
        if lot_id is not None and get_lot(lot_id).product_id != product.id:
            raise ValidationError(f"Lot {lot_id} does not belong to product {product.id}")

        already_quoted = (
            db.session.query(QuotationLine.id)
            .filter_by(quotation_id=quotation.id, product_id=product.id)
            .first()
        )
        if already_quoted is not None:
            raise ValidationError(f"Product {product.id} is already on quotation {quotation.id}")

        op.advance(OperationState.VALIDATING)

        line = QuotationLine(
            quotation_id=quotation.id,
            product_id=product.id,
            lot_id=lot_id,
            quantity=quantity,
            unit_price_cents=price,
            line_total_cents=price * quantity,
        )
        db.session.add(line)
        db.session.flush()

        _update_total(quotation)
        return line

    return execute_atomically("add_quotation_line", _work)


def remove_quotation_line(quotation_id: int, line_id: int) -> Quotation:
    """
    Remove a line from a DRAFT quotation.

    Raises:
        NotFoundError: quotation or line missing
        InvalidTransitionError: quotation is no longer DRAFT
    """
    def _work(op) -> Quotation:
        quotation = _get_quotation(quotation_id, lock=True)
        _require_draft(quotation, "remove lines from")

        line = db.session.query(QuotationLine).filter_by(id=line_id, quotation_id=quotation.id).first()
        if line is None:
            raise NotFoundError("QuotationLine", line_id)

        op.advance(OperationState.VALIDATING)

        db.session.delete(line)
        db.session.flush()
        _update_total(quotation)
        return quotation

    return execute_atomically("remove_quotation_line", _work)


# =============================================================================
# QUOTATION LIFECYCLE
# =============================================================================

def submit_quotation(quotation_id: int, *, actor: str | None = None) -> Quotation:
    """
    Freeze a DRAFT quotation and hand it to the customer (DRAFT -> PENDING).

    Raises:
        InvalidTransitionError: quotation is not DRAFT
        ValidationError: quotation has no lines
    """
    def _work(op) -> Quotation:
        quotation = _get_quotation(quotation_id, lock=True)
        new_status = transition(quotation.status, QuotationStatus.PENDING)
        if not quotation.lines:
            raise ValidationError(f"Cannot submit quotation {quotation_id} with no lines")
        op.advance(OperationState.VALIDATING)

        quotation.status = new_status.value
        quotation.submitted_at = utcnow()

        append_ledger_event(
            event_type="quotation.submitted",
            entity_type="quotation",
            entity_id=quotation.id,
            actor=actor,
            occurred_at=quotation.submitted_at,
            note=f"Quotation {quotation.document_number} submitted",
            payload={"total_cents": quotation.total_cents},
        )
        return quotation

    return execute_atomically("submit_quotation", _work)


def confirm_quotation(quotation_id: int, *, processed_by: str | None = None) -> dict:
    """
    Convert a PENDING quotation into a sale.

    Every line is consumed (pinned lines from their lot, the rest FIFO)
    under reference SALE <document number>; the consumptions and the status
    change commit together. A shortage or price-floor failure on any line
    leaves the quotation PENDING and every lot untouched.

    Returns:
        Dict with 'quotation' and 'consumptions'

    Raises:
        InvalidTransitionError: quotation is not PENDING
        InsufficientStockError / PriceFloorError: from consumption
    """
    def _work(op):
        quotation = _get_quotation(quotation_id, lock=True)
        new_status = transition(quotation.status, QuotationStatus.CONFIRMED)

        consumptions = _consume_lines_inner(
            op,
            reference_type="SALE",
            reference_id=quotation.document_number,
            lines=_as_consumption_lines(quotation),
            actor=processed_by,
            note=f"Quotation {quotation.document_number}",
        )

        quotation.status = new_status.value
        quotation.processed_by = processed_by
        quotation.processed_at = utcnow()

        append_ledger_event(
            event_type="quotation.confirmed",
            entity_type="quotation",
            entity_id=quotation.id,
            actor=processed_by,
            occurred_at=quotation.processed_at,
            note=f"Quotation {quotation.document_number} converted to sale",
            payload={
                "total_cents": quotation.total_cents,
                "consumptions": [c.id for c in consumptions],
            },
        )
        return quotation, consumptions

    quotation, consumptions = execute_atomically("confirm_quotation", _work)
    return {
        "quotation": quotation.to_dict(),
        "consumptions": [c.to_dict() for c in consumptions],
    }


def cancel_quotation(
    quotation_id: int,
    *,
    reason: str | None = None,
    processed_by: str | None = None,
) -> Quotation:
    """
    Cancel a DRAFT or PENDING quotation. No stock moves.

    Raises:
        InvalidTransitionError: quotation already confirmed or cancelled
    """
    def _work(op) -> Quotation:
        quotation = _get_quotation(quotation_id, lock=True)
        new_status = transition(quotation.status, QuotationStatus.CANCELLED)
        op.advance(OperationState.VALIDATING)

        quotation.status = new_status.value
        quotation.cancellation_reason = reason
        quotation.processed_by = processed_by
        quotation.processed_at = utcnow()

        append_ledger_event(
            event_type="quotation.cancelled",
            entity_type="quotation",
            entity_id=quotation.id,
            actor=processed_by,
            occurred_at=quotation.processed_at,
            note=reason or f"Quotation {quotation.document_number} cancelled",
        )
        return quotation

    return execute_atomically("cancel_quotation", _work)


# =============================================================================
# QUERIES
# =============================================================================

def get_quotation(quotation_id: int) -> Quotation:
    return _get_quotation(quotation_id)


def list_quotations(*, status: str | None = None, limit: int = 100) -> list[Quotation]:
    q = db.session.query(Quotation)
    if status:
        q = q.filter(Quotation.status == status.upper())
    return q.order_by(Quotation.created_at.desc(), Quotation.id.desc()).limit(limit).all()


def get_quotation_summary(quotation_id: int) -> dict:
    """
    Quotation with its stock picture.

    Returns:
        - quotation: Quotation details and lines
        - availability: live FIFO quote of the lines (open quotations only)
        - consumptions: allocation records of the sale (confirmed only)
    """
    quotation = _get_quotation(quotation_id)
    open_statuses = (QuotationStatus.DRAFT.value, QuotationStatus.PENDING.value)

    availability = None
    if quotation.status in open_statuses and quotation.lines:
        availability = quote_lines(_as_consumption_lines(quotation))

    consumptions = []
    if quotation.status == QuotationStatus.CONFIRMED.value:
        consumptions = list_consumptions(reference_type="SALE", reference_id=quotation.document_number)

    return {
        "quotation": quotation.to_dict(),
        "availability": availability,
        "consumptions": [c.to_dict() for c in sorted(consumptions, key=lambda c: c.id)],
    }
