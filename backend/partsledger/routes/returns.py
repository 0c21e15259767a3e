# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/partsledger/routes/returns.py
"""
Return Processing API Routes

DESIGN:
- Create returns referencing the original sale or credit
- Add line items pointing at the consumptions being returned
- Approve (stock restored into the original lots) or reject
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import ledger_errors, with_operator
from ..services import return_service
from ..validation import optional_int, optional_str, require_int, require_str


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
@with_operator
@ledger_errors("create return")
def create_return_route():
    """
    Create a new return document (status: REQUESTED).

    Request body:
    {
        "reference_type": "SALE",       // SALE | CREDIT
        "reference_id": "V-000123",
        "reason": "Wrong part"          // optional
    }

    Returns:
        201: Return created with REQUESTED status
    """
    payload = request.get_json(silent=True) or {}
    return_doc = return_service.create_return(
        reference_type=require_str(payload, "reference_type", max_length=32),
        reference_id=require_str(payload, "reference_id", max_length=64),
        reason=optional_str(payload, "reason", max_length=2000),
        requested_by=g.operator,
    )
    return jsonify(return_doc.to_dict()), 201


@returns_bp.post("/<int:return_id>/lines")
@ledger_errors("add return line")
def add_return_line_route(return_id: int):
    """
    Add a line item to a return.

    Request body:
    {
        "consumption_id": 45,
        "quantity": 2,
        "unit_price_cents": 4500   // optional, defaults to the sale price
    }
    """
    payload = request.get_json(silent=True) or {}
    return_line = return_service.add_return_line(
        return_id,
        require_int(payload, "consumption_id", minimum=1),
        require_int(payload, "quantity"),
        unit_price_cents=optional_int(payload, "unit_price_cents", minimum=0),
    )
    return jsonify(return_line.to_dict()), 201


# =============================================================================
# RETURN APPROVAL / REJECTION
# =============================================================================

@returns_bp.post("/<int:return_id>/approve")
@with_operator
@ledger_errors("approve return")
def approve_return_route(return_id: int):
    """Approve a return; every line is credited back to its original lots."""
    return_service.approve_return(return_id, processed_by=g.operator)
    return jsonify(return_service.get_return_summary(return_id))


@returns_bp.post("/<int:return_id>/reject")
@with_operator
@ledger_errors("reject return")
def reject_return_route(return_id: int):
    """Request body: {"rejection_reason": "Part was installed"}"""
    payload = request.get_json(silent=True) or {}
    return_doc = return_service.reject_return(
        return_id,
        rejection_reason=require_str(payload, "rejection_reason", max_length=2000),
        processed_by=g.operator,
    )
    return jsonify(return_doc.to_dict())


# =============================================================================
# QUERIES
# =============================================================================

@returns_bp.get("")
@ledger_errors("list returns")
def list_returns_route():
    """
    Query parameters:
    - status: REQUESTED | APPROVED | REJECTED
    - reference_type, reference_id: original document
    """
    returns = return_service.list_returns(
        status=request.args.get("status"),
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id"),
    )
    return jsonify({"items": [r.to_dict() for r in returns], "count": len(returns)})


@returns_bp.get("/<int:return_id>")
@ledger_errors("get return")
def get_return_route(return_id: int):
    return jsonify(return_service.get_return_summary(return_id))
