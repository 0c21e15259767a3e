# Overview: Flask API routes for stock intakes and stock adjustments; parses input and returns JSON responses.

"""
Intake & Adjustment Routes

Intakes post immediately: the response is the committed intake with its
lots. Adjustments go through the same ledger (lots and FIFO consumption),
never through a direct stock edit.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import ledger_errors, with_operator
from ..services import intake_service
from ..validation import optional_int, optional_str, require_int, require_list, require_str


intakes_bp = Blueprint("intakes", __name__, url_prefix="/api/intakes")
inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@intakes_bp.get("")
@ledger_errors("list intakes")
def list_intakes_route():
    """
    List intakes, newest first.

    Query parameters:
    - supplier_id: Filter by supplier
    - limit: Maximum results (default: 100, max 500)
    """
    supplier_id = request.args.get("supplier_id", type=int)
    limit = max(1, min(request.args.get("limit", 100, type=int), 500))
    intakes = intake_service.list_intakes(supplier_id=supplier_id, limit=limit)
    return jsonify({"items": [i.to_dict() for i in intakes], "count": len(intakes)})


@intakes_bp.post("")
@with_operator
@ledger_errors("create intake")
def create_intake_route():
    """
    Post a stock intake.

    Request body:
    {
        "supplier_id": 1,                       // required
        "reference_number": "F-001-4521",       // optional (invoice / receipt)
        "notes": "...",                         // optional
        "received_at": "2024-01-01T10:00:00Z",  // optional, default now, not in the future
        "lines": [                              // required, non-empty
            {
                "product_id": 10,
                "quantity": 20,
                "unit_cost_cents": 1250,
                "lot_number": "L-2024-01",      // optional, unique per product
                "expires_on": "2026-06-30"      // optional
            }
        ]
    }

    Returns:
        201: Intake with its lots
    """
    payload = request.get_json(silent=True) or {}

    intake = intake_service.create_intake(
        supplier_id=require_int(payload, "supplier_id", minimum=1),
        lines=require_list(payload, "lines"),
        reference_number=optional_str(payload, "reference_number", max_length=128),
        notes=optional_str(payload, "notes", max_length=2000),
        received_at=payload.get("received_at"),
        received_by=g.operator,
    )
    result = intake.to_dict()
    result["lots"] = [lot.to_dict() for lot in intake.lots]
    return jsonify(result), 201


@intakes_bp.get("/<int:intake_id>")
@ledger_errors("get intake")
def get_intake_route(intake_id: int):
    intake = intake_service.get_intake(intake_id)
    result = intake.to_dict()
    result["lots"] = [lot.to_dict() for lot in intake.lots]
    return jsonify(result)


@inventory_bp.post("/adjust")
@with_operator
@ledger_errors("adjust stock")
def adjust_stock_route():
    """
    Correct a product's stock.

    Request body:
    {
        "product_id": 10,           // required
        "quantity_delta": -2,       // required, non-zero
        "reason": "Damaged",        // required
        "unit_cost_cents": 1200,    // optional, positive deltas only
        "occurred_at": "..."        // optional
    }
    """
    payload = request.get_json(silent=True) or {}

    result = intake_service.adjust_stock(
        require_int(payload, "product_id", minimum=1),
        require_int(payload, "quantity_delta"),
        reason=require_str(payload, "reason"),
        unit_cost_cents=optional_int(payload, "unit_cost_cents", minimum=0),
        occurred_at=payload.get("occurred_at"),
        actor=g.operator,
    )
    return jsonify(result), 201
