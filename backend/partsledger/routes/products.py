# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/partsledger/routes/products.py
"""
Product catalog routes.

stock_quantity and unit_cost_cents are not writable here: they only move
through intakes, consumptions, reversals and adjustments.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import ledger_errors, with_operator
from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "brand",
        "description",
        "sale_price_cents",
        "min_sale_price_cents",
        "reorder_threshold",
        "is_active",
    },
    required_on_create={"sku", "name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@ledger_errors("list products")
def list_products():
    """
    List products with optional search and pagination.

    Query params:
    - search: str (optional) - matches sku, name or brand
    - include_inactive: bool (optional, default false)
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive", "false").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("")
@with_operator
@ledger_errors("create product")
def create_product_route():
    """Create a new product (no stock until its first intake)."""
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    created = products_service.create_product(patch=patch, actor=g.operator)
    return jsonify(created.to_dict()), 201


@products_bp.get("/low-stock")
@ledger_errors("list low-stock products")
def low_stock_route():
    """Active products at or below their reorder threshold."""
    rows = products_service.list_low_stock()
    return jsonify({"items": rows, "count": len(rows)})


@products_bp.get("/<int:product_id>")
@ledger_errors("get product")
def get_product_route(product_id: int):
    return jsonify(products_service.get_product_summary(product_id))


@products_bp.put("/<int:product_id>")
@with_operator
@ledger_errors("update product")
def update_product_route(product_id: int):
    """Update catalog fields. Only provided fields are changed."""
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    updated = products_service.update_product(product_id=product_id, patch=patch, actor=g.operator)
    return jsonify(updated.to_dict())


@products_bp.get("/<int:product_id>/lots")
@ledger_errors("list lots")
def list_lots_route(product_id: int):
    """
    Lots of a product in FIFO order.

    Query params:
    - include_exhausted: bool (optional, default false)
    """
    include_exhausted = request.args.get("include_exhausted", "false").lower() == "true"
    lots = products_service.list_lots(product_id, include_exhausted=include_exhausted)
    return jsonify({"items": [lot.to_dict() for lot in lots], "count": len(lots)})
