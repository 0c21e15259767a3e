# Overview: Flask API routes for quotations; parses input and returns JSON responses.

"""
Quotation API Routes

DESIGN:
- Build a DRAFT quotation line by line (optionally pinning lots)
- Submit it to the customer, then confirm (becomes a SALE) or cancel
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import ledger_errors, with_operator
from ..services import quotation_service
from ..validation import optional_int, optional_str, require_int


quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


@quotations_bp.post("")
@with_operator
@ledger_errors("create quotation")
def create_quotation_route():
    """
    Request body (all optional):
    {
        "customer_name": "Taller Ruiz",
        "customer_document": "20481234567",
        "valid_until": "2024-02-15",
        "notes": "..."
    }
    """
    payload = request.get_json(silent=True) or {}
    quotation = quotation_service.create_quotation(
        customer_name=optional_str(payload, "customer_name"),
        customer_document=optional_str(payload, "customer_document", max_length=32),
        valid_until=payload.get("valid_until"),
        notes=optional_str(payload, "notes", max_length=2000),
        created_by=g.operator,
    )
    return jsonify(quotation.to_dict()), 201


@quotations_bp.post("/<int:quotation_id>/lines")
@ledger_errors("add quotation line")
def add_quotation_line_route(quotation_id: int):
    """
    Request body:
    {
        "product_id": 3,
        "quantity": 2,
        "unit_price_cents": 4500,   // optional, defaults to the sale price
        "lot_id": 12                // optional, sell from this lot instead of FIFO
    }
    """
    payload = request.get_json(silent=True) or {}
    line = quotation_service.add_quotation_line(
        quotation_id,
        require_int(payload, "product_id", minimum=1),
        require_int(payload, "quantity"),
        unit_price_cents=optional_int(payload, "unit_price_cents"),
        lot_id=optional_int(payload, "lot_id", minimum=1),
    )
    return jsonify(line.to_dict()), 201


@quotations_bp.delete("/<int:quotation_id>/lines/<int:line_id>")
@ledger_errors("remove quotation line")
def remove_quotation_line_route(quotation_id: int, line_id: int):
    quotation = quotation_service.remove_quotation_line(quotation_id, line_id)
    return jsonify(quotation.to_dict())


@quotations_bp.post("/<int:quotation_id>/submit")
@with_operator
@ledger_errors("submit quotation")
def submit_quotation_route(quotation_id: int):
    quotation = quotation_service.submit_quotation(quotation_id, actor=g.operator)
    return jsonify(quotation.to_dict())


@quotations_bp.post("/<int:quotation_id>/confirm")
@with_operator
@ledger_errors("confirm quotation")
def confirm_quotation_route(quotation_id: int):
    """Convert the quotation into a sale; stock is consumed here."""
    return jsonify(quotation_service.confirm_quotation(quotation_id, processed_by=g.operator))


@quotations_bp.post("/<int:quotation_id>/cancel")
@with_operator
@ledger_errors("cancel quotation")
def cancel_quotation_route(quotation_id: int):
    """Request body: {"reason": "Customer bought elsewhere"} (optional)"""
    payload = request.get_json(silent=True) or {}
    quotation = quotation_service.cancel_quotation(
        quotation_id,
        reason=optional_str(payload, "reason", max_length=2000),
        processed_by=g.operator,
    )
    return jsonify(quotation.to_dict())


@quotations_bp.get("")
@ledger_errors("list quotations")
def list_quotations_route():
    """Query parameters: status (DRAFT | PENDING | CONFIRMED | CANCELLED)"""
    quotations = quotation_service.list_quotations(status=request.args.get("status"))
    return jsonify({"items": [q.to_dict() for q in quotations], "count": len(quotations)})


@quotations_bp.get("/<int:quotation_id>")
@ledger_errors("get quotation")
def get_quotation_route(quotation_id: int):
    return jsonify(quotation_service.get_quotation_summary(quotation_id))
