# Overview: Flask API routes for supplier operations; parses input and returns JSON responses.

"""
Supplier Routes

Suppliers are the source of every stock intake. Only creation and lookup
are exposed; purchase statistics come from intakes.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import ledger_errors, with_operator
from ..models import Supplier
from ..services import products_service
from ..validation import ModelValidationPolicy, validate_payload


SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code", "contact_name", "contact_phone", "contact_email", "address", "is_active"},
    required_on_create={"name"},
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@ledger_errors("list suppliers")
def list_suppliers_route():
    """
    List suppliers.

    Query parameters:
    - include_inactive: Include inactive suppliers (default: false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    suppliers = products_service.list_suppliers(include_inactive=include_inactive)
    return jsonify({
        "items": [s.to_dict() for s in suppliers],
        "count": len(suppliers),
    })


@suppliers_bp.post("")
@with_operator
@ledger_errors("create supplier")
def create_supplier_route():
    """
    Create a new supplier.

    Request body:
    {
        "name": "Supplier Name",  // required
        "code": "SCODE",          // optional, unique
        "contact_name": "...",    // optional
        "contact_email": "...",   // optional
        "contact_phone": "...",   // optional
        "address": "..."          // optional
    }
    """
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    supplier = products_service.create_supplier(patch=patch, actor=g.operator)
    return jsonify(supplier.to_dict()), 201


@suppliers_bp.get("/<int:supplier_id>")
@ledger_errors("get supplier")
def get_supplier_route(supplier_id: int):
    supplier = products_service.get_supplier(supplier_id)
    result = supplier.to_dict()
    result["products"] = [s.to_dict() for s in supplier.product_stats]
    return jsonify(result)
