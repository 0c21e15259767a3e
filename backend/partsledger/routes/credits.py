# Overview: Flask API routes for credit sales; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import ledger_errors, with_operator
from ..services import credit_service
from ..validation import optional_int, optional_str, require_int


credits_bp = Blueprint("credits", __name__, url_prefix="/api/credits")


@credits_bp.post("")
@with_operator
@ledger_errors("create credit")
def create_credit_route():
    """
    Open a TEMPORARY credit.

    Request body (all optional):
    {
        "customer_name": "Juan Quispe",
        "customer_document": "45678912",
        "due_on": "2024-03-01",      // defaults to 30 days from today
        "notes": "..."
    }
    """
    payload = request.get_json(silent=True) or {}
    credit = credit_service.create_credit(
        customer_name=optional_str(payload, "customer_name"),
        customer_document=optional_str(payload, "customer_document", max_length=32),
        due_on=payload.get("due_on"),
        notes=optional_str(payload, "notes", max_length=2000),
        created_by=g.operator,
    )
    return jsonify(credit.to_dict()), 201


@credits_bp.post("/<int:credit_id>/lines")
@ledger_errors("add credit line")
def add_credit_line_route(credit_id: int):
    """Request body: {"product_id": 3, "quantity": 2, "unit_price_cents": 4500}"""
    payload = request.get_json(silent=True) or {}
    line = credit_service.add_credit_line(
        credit_id,
        require_int(payload, "product_id", minimum=1),
        require_int(payload, "quantity"),
        unit_price_cents=optional_int(payload, "unit_price_cents"),
    )
    return jsonify(line.to_dict()), 201


@credits_bp.delete("/<int:credit_id>/lines/<int:line_id>")
@ledger_errors("remove credit line")
def remove_credit_line_route(credit_id: int, line_id: int):
    return jsonify(credit_service.remove_credit_line(credit_id, line_id).to_dict())


@credits_bp.post("/<int:credit_id>/activate")
@with_operator
@ledger_errors("activate credit")
def activate_credit_route(credit_id: int):
    """
    Register the credit; its lines are consumed FIFO.

    Request body (optional): {"customer_name": "...", "due_on": "2024-03-01", "notes": "..."}
    """
    payload = request.get_json(silent=True) or {}
    credit_service.activate_credit(
        credit_id,
        customer_name=optional_str(payload, "customer_name"),
        due_on=payload.get("due_on"),
        notes=optional_str(payload, "notes", max_length=2000),
        activated_by=g.operator,
    )
    return jsonify(credit_service.get_credit_summary(credit_id))


@credits_bp.post("/<int:credit_id>/discard")
@with_operator
@ledger_errors("discard credit")
def discard_credit_route(credit_id: int):
    return jsonify(credit_service.discard_credit(credit_id, actor=g.operator).to_dict())


@credits_bp.get("")
@ledger_errors("list credits")
def list_credits_route():
    """Query parameters: status (TEMPORARY | ACTIVE | DISCARDED)"""
    credits = credit_service.list_credits(status=request.args.get("status"))
    return jsonify({"items": [c.to_dict() for c in credits], "count": len(credits)})


@credits_bp.get("/<int:credit_id>")
@ledger_errors("get credit")
def get_credit_route(credit_id: int):
    return jsonify(credit_service.get_credit_summary(credit_id))
