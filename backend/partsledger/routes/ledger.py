# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import ledger_errors, with_operator
from ..services import consumption_service, cost_service, ledger_service, reversal_service
from ..services.allocation_service import allocate
from ..validation import optional_int, optional_str, require_int, require_list, require_str

"""
Ledger operations:
- allocate:  FIFO plan preview for one product (no writes)
- consume:   allocate + commit for one or more products, all-or-nothing
- quote:     price a quotation against current lots (no writes)
- reverse:   credit a consumption back into its original lots
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.post("/allocate")
@ledger_errors("plan allocation")
def allocate_route():
    """
    Request body: {"product_id": 1, "quantity": 15, "lot_id": 7}  // lot_id optional

    Returns the FIFO plan (lots, quantities, unit costs) without committing,
    or the one-lot plan when lot_id is given.
    """
    payload = request.get_json(silent=True) or {}
    plan = allocate(
        require_int(payload, "product_id", minimum=1),
        require_int(payload, "quantity"),
        lot_id=optional_int(payload, "lot_id", minimum=1),
    )
    return jsonify(plan.to_dict())


@ledger_bp.post("/consume")
@with_operator
@ledger_errors("consume stock")
def consume_route():
    """
    Consume stock for a sale, credit activation, outflow or adjustment.

    Request body:
    {
        "reference_type": "SALE",          // SALE | CREDIT | OUTFLOW | ADJUSTMENT
        "reference_id": "V-000123",        // required
        "note": "...",                     // optional
        "lines": [
            {"product_id": 1, "quantity": 2, "unit_price_cents": 4500},
            {"product_id": 2, "quantity": 1, "lot_id": 7}   // sell from lot 7
        ]
    }

    Returns:
        201: {"consumptions": [...]} one allocation record per line
    """
    payload = request.get_json(silent=True) or {}
    consumptions = consumption_service.consume_lines(
        reference_type=require_str(payload, "reference_type", max_length=32),
        reference_id=require_str(payload, "reference_id", max_length=64),
        lines=require_list(payload, "lines"),
        actor=g.operator,
        note=optional_str(payload, "note"),
    )
    return jsonify({"consumptions": [c.to_dict() for c in consumptions]}), 201


@ledger_bp.post("/quote")
@ledger_errors("quote lines")
def quote_route():
    """Request body: {"lines": [{"product_id": 1, "quantity": 2, "unit_price_cents": 4500}]}"""
    payload = request.get_json(silent=True) or {}
    return jsonify(consumption_service.quote_lines(require_list(payload, "lines")))


@ledger_bp.get("/consumptions")
@ledger_errors("list consumptions")
def list_consumptions_route():
    """
    Query parameters:
    - product_id, reference_type, reference_id: filters
    - limit: Maximum results (default: 200, max 500)
    """
    limit = max(1, min(request.args.get("limit", 200, type=int), 500))
    consumptions = consumption_service.list_consumptions(
        product_id=request.args.get("product_id", type=int),
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id"),
        limit=limit,
    )
    return jsonify({"items": [c.to_dict() for c in consumptions], "count": len(consumptions)})


@ledger_bp.get("/consumptions/<int:consumption_id>")
@ledger_errors("get consumption")
def get_consumption_route(consumption_id: int):
    return jsonify(consumption_service.get_consumption(consumption_id).to_dict())


@ledger_bp.post("/consumptions/<int:consumption_id>/reverse")
@with_operator
@ledger_errors("reverse consumption")
def reverse_consumption_route(consumption_id: int):
    """
    Request body (optional): {"quantity": 3, "note": "..."}

    Omitting quantity reverses everything not yet reversed.
    """
    payload = request.get_json(silent=True) or {}
    result = reversal_service.reverse_consumption(
        consumption_id,
        optional_int(payload, "quantity"),
        actor=g.operator,
        note=optional_str(payload, "note"),
    )
    return jsonify(result.to_dict()), 201


@ledger_bp.post("/products/<int:product_id>/recalculate-cost")
@ledger_errors("recalculate cost")
def recalculate_cost_route(product_id: int):
    return jsonify({
        "product_id": product_id,
        "unit_cost_cents": cost_service.recalculate_cost(product_id),
    })


@ledger_bp.post("/products/<int:product_id>/reconcile")
@ledger_errors("reconcile product")
def reconcile_product_route(product_id: int):
    return jsonify(cost_service.reconcile_product(product_id))


@ledger_bp.get("/check")
@ledger_errors("check ledger invariants")
def check_route():
    """Query parameters: product_id (optional)"""
    violations = cost_service.check_invariants(request.args.get("product_id", type=int))
    return jsonify({"ok": not violations, "violations": violations})


@ledger_bp.get("/events")
@ledger_errors("list ledger events")
def list_events_route():
    """
    Query parameters:
    - product_id, event_type, consumption_id, return_id: filters
    - limit: Maximum results (default: 100, max 500)
    """
    limit = max(1, min(request.args.get("limit", 100, type=int), 500))
    events = ledger_service.list_ledger_events(
        product_id=request.args.get("product_id", type=int),
        event_type=request.args.get("event_type"),
        consumption_id=request.args.get("consumption_id", type=int),
        return_id=request.args.get("return_id", type=int),
        limit=limit,
    )
    return jsonify({"items": [e.to_dict() for e in events], "count": len(events)})
