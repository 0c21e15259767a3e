"""
Return Processing Service

Customer returns of parts sold or activated on credit. The critical
constraint is traceability: returned units go back into the exact lots the
sale drew from, at the cost recorded on the allocation record, never into
whichever lot is newest.

DESIGN PRINCIPLES:
- Returns reference the original sale/credit by (reference_type, reference_id)
- Each line points at one Consumption (allocation record) of that reference
- Approval reverses every line through the reversal engine in ONE transaction
- A failed approval leaves the return REQUESTED and every lot untouched
- Finalized returns (APPROVED / REJECTED) are immutable

LIFECYCLE:
1. Create return (REQUESTED) - lines are added while requested
2. Approve (REQUESTED -> APPROVED) - stock restored into original lots
   or Reject (REQUESTED -> REJECTED) - nothing restored
"""

from __future__ import annotations

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Consumption, Return, ReturnLine, StockMovement
from ..time_utils import utcnow
from ..validation import coerce_int
from .allocation_service import require_positive_quantity
from .concurrency import execute_atomically, lock_for_update
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import OperationState, ReturnStatus, transition
from .reversal_service import _reverse_inner


# Only customer-facing documents can be returned
RETURNABLE_REFERENCE_TYPES = ("SALE", "CREDIT")


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _get_return(return_id: int, *, lock: bool = False) -> Return:
    query = db.session.query(Return).filter_by(id=return_id)
    if lock:
        query = lock_for_update(query)
    return_doc = query.first()
    if return_doc is None:
        raise NotFoundError("Return", return_id)
    return return_doc


def _require_requested(return_doc: Return, action: str) -> None:
    if return_doc.status != ReturnStatus.REQUESTED.value:
        raise InvalidTransitionError(
            f"Can only {action} REQUESTED returns. "
            f"Return {return_doc.id} has status: {return_doc.status}"
        )


def _pending_quantity(consumption_id: int, *, exclude_return_id: int | None = None) -> int:
    """Units of a consumption already claimed by other REQUESTED returns."""
    q = (
        db.session.query(ReturnLine)
        .join(Return, ReturnLine.return_id == Return.id)
        .filter(
            ReturnLine.consumption_id == consumption_id,
            Return.status == ReturnStatus.REQUESTED.value,
        )
    )
    if exclude_return_id is not None:
        q = q.filter(Return.id != exclude_return_id)
    return sum(line.quantity for line in q.all())


def _update_return_refund_amount(return_doc: Return) -> None:
    lines = db.session.query(ReturnLine).filter_by(return_id=return_doc.id).all()
    return_doc.refund_amount_cents = sum(line.line_refund_cents for line in lines)


# =============================================================================
# RETURN CREATION
# =============================================================================

def create_return(
    *,
    reference_type: str,
    reference_id,
    reason: str | None = None,
    requested_by: str | None = None,
) -> Return:
    """
    Create a new return document (status: REQUESTED).

    Raises:
        ValidationError: reference type not returnable or reference unknown
    """
    ref_type = (reference_type or "").strip().upper()
    if ref_type not in RETURNABLE_REFERENCE_TYPES:
        raise ValidationError(
            f"reference_type must be one of: {', '.join(RETURNABLE_REFERENCE_TYPES)}"
        )
    ref_id = str(reference_id).strip() if reference_id is not None else ""
    if not ref_id:
        raise ValidationError("reference_id is required")

    def _work(op) -> Return:
        has_consumptions = (
            db.session.query(Consumption.id)
            .filter_by(reference_type=ref_type, reference_id=ref_id)
            .first()
        )
        if has_consumptions is None:
            raise ValidationError(f"No stock was consumed for {ref_type} {ref_id}")

        op.advance(OperationState.VALIDATING)

        return_doc = Return(
            document_number=next_document_number(document_type="return"),
            reference_type=ref_type,
            reference_id=ref_id,
            status=ReturnStatus.REQUESTED.value,
            reason=reason,
            refund_amount_cents=0,
            requested_by=requested_by,
        )
        db.session.add(return_doc)
        db.session.flush()

        append_ledger_event(
            event_type="return.requested",
            entity_type="return",
            entity_id=return_doc.id,
            return_id=return_doc.id,
            actor=requested_by,
            note=f"Return {return_doc.document_number} for {ref_type} {ref_id}",
        )
        return return_doc

    return execute_atomically("create_return", _work)


def add_return_line(
    return_id: int,
    consumption_id: int,
    quantity: int,
    *,
    unit_price_cents: int | None = None,
) -> ReturnLine:
    """
    Add a line item to a return.

    The quantity cannot exceed what is still unreversed on the consumption,
    minus what other REQUESTED returns already claim.

    Raises:
        NotFoundError: return or consumption missing
        InvalidTransitionError: return is no longer REQUESTED
        ValidationError: consumption belongs to another document, or quantity invalid
    """
    require_positive_quantity(quantity)
    if unit_price_cents is not None:
        unit_price_cents = coerce_int(unit_price_cents, "unit_price_cents")
        if unit_price_cents < 0:
            raise ValidationError("unit_price_cents must be >= 0")

    def _work(op) -> ReturnLine:
        return_doc = _get_return(return_id, lock=True)
        _require_requested(return_doc, "add lines to")

        consumption = db.session.get(Consumption, consumption_id)
        if consumption is None:
            raise NotFoundError("Consumption", consumption_id)

        # Verify the consumption belongs to the returned document
        if (consumption.reference_type, consumption.reference_id) != (
            return_doc.reference_type, return_doc.reference_id
        ):
            raise ValidationError(
                f"Consumption {consumption_id} does not belong to "
                f"{return_doc.reference_type} {return_doc.reference_id}"
            )

        already_on_return = (
            db.session.query(ReturnLine.id)
            .filter_by(return_id=return_id, consumption_id=consumption_id)
            .first()
        )
        if already_on_return is not None:
            raise ValidationError(f"Consumption {consumption_id} is already on return {return_id}")

        pending = _pending_quantity(consumption_id, exclude_return_id=return_id)
        available = consumption.reversible_quantity - pending
        if quantity > available:
            raise ValidationError(
                f"Cannot return {quantity} units. Consumed: {consumption.quantity}, "
                f"already reversed: {consumption.reversed_quantity}, "
                f"pending in other returns: {pending}, available: {max(available, 0)}"
            )

        op.advance(OperationState.VALIDATING)

        price = unit_price_cents if unit_price_cents is not None else (consumption.unit_price_cents or 0)
        return_line = ReturnLine(
            return_id=return_doc.id,
            consumption_id=consumption.id,
            product_id=consumption.product_id,
            quantity=quantity,
            unit_price_cents=price,
            line_refund_cents=price * quantity,
        )
        db.session.add(return_line)
        db.session.flush()

        _update_return_refund_amount(return_doc)
        return return_line

    return execute_atomically("add_return_line", _work)


# =============================================================================
# RETURN APPROVAL / REJECTION
# =============================================================================

def approve_return(return_id: int, *, processed_by: str | None = None) -> Return:
    """
    Approve a return and restore its stock into the original lots.

    Every line is reversed against its consumption; the status change and
    all lot credits commit together. If any line fails (overflow, quantity
    already reversed elsewhere) nothing is applied and the return stays
    REQUESTED.

    Raises:
        InvalidTransitionError: return already finalized
        ValidationError: return has no lines
        LotOverflowError / ReversalQuantityError: from the reversal engine
    """
    def _work(op) -> Return:
        return_doc = _get_return(return_id, lock=True)
        new_status = transition(return_doc.status, ReturnStatus.APPROVED)

        lines = db.session.query(ReturnLine).filter_by(return_id=return_doc.id).order_by(ReturnLine.id).all()
        if not lines:
            raise ValidationError(f"Cannot approve return {return_id} with no lines")

        op.advance(OperationState.VALIDATING)

        for line in lines:
            consumption = db.session.get(Consumption, line.consumption_id)
            if consumption is None:
                raise NotFoundError("Consumption", line.consumption_id)
            _reverse_inner(
                consumption,
                line.quantity,
                return_id=return_doc.id,
                actor=processed_by,
                note=f"Return {return_doc.document_number}",
            )

        return_doc.status = new_status.value
        return_doc.processed_by = processed_by
        return_doc.processed_at = utcnow()

        append_ledger_event(
            event_type="return.approved",
            entity_type="return",
            entity_id=return_doc.id,
            return_id=return_doc.id,
            actor=processed_by,
            occurred_at=return_doc.processed_at,
            note=f"Return {return_doc.document_number} approved",
            payload={
                "lines": len(lines),
                "quantity": sum(line.quantity for line in lines),
                "refund_amount_cents": return_doc.refund_amount_cents,
            },
        )
        return return_doc

    return execute_atomically("approve_return", _work)


def reject_return(
    return_id: int,
    *,
    rejection_reason: str,
    processed_by: str | None = None,
) -> Return:
    """
    Reject a return. No stock moves.

    Raises:
        InvalidTransitionError: return already finalized
        ValidationError: missing rejection reason
    """
    rejection_reason = (rejection_reason or "").strip()
    if not rejection_reason:
        raise ValidationError("rejection_reason is required")

    def _work(op) -> Return:
        return_doc = _get_return(return_id, lock=True)
        new_status = transition(return_doc.status, ReturnStatus.REJECTED)
        op.advance(OperationState.VALIDATING)

        return_doc.status = new_status.value
        return_doc.rejection_reason = rejection_reason
        return_doc.processed_by = processed_by
        return_doc.processed_at = utcnow()

        append_ledger_event(
            event_type="return.rejected",
            entity_type="return",
            entity_id=return_doc.id,
            return_id=return_doc.id,
            actor=processed_by,
            occurred_at=return_doc.processed_at,
            note=rejection_reason,
        )
        return return_doc

    return execute_atomically("reject_return", _work)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    return _get_return(return_id)


def list_returns(
    *,
    status: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    limit: int = 100,
) -> list[Return]:
    q = db.session.query(Return)
    if status:
        q = q.filter(Return.status == status.upper())
    if reference_type:
        q = q.filter(Return.reference_type == reference_type.upper())
    if reference_id:
        q = q.filter(Return.reference_id == reference_id)
    return q.order_by(Return.created_at.desc(), Return.id.desc()).limit(limit).all()


def get_return_summary(return_id: int) -> dict:
    """
    Get comprehensive return summary.

    Returns:
        - return: Return details
        - lines: Return line details
        - movements: Lot credits written when the return was approved
        - total_refund_cents: Total refund amount
    """
    return_doc = _get_return(return_id)
    movements = (
        db.session.query(StockMovement)
        .filter_by(return_id=return_doc.id)
        .order_by(StockMovement.id)
        .all()
    )

    return {
        "return": return_doc.to_dict(),
        "lines": [line.to_dict() for line in return_doc.lines],
        "movements": [m.to_dict() for m in movements],
        "total_refund_cents": return_doc.refund_amount_cents,
    }
